"""Load distribution metadata documents into DistributionMetadata values."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Mapping

import jsonschema

from pgxn_build.contracts import validate_metadata
from pgxn_build.errors import MetadataError
from pgxn_build.models import DistributionMetadata, PipelineCandidate, StepSpec
from pgxn_build.probe import scan_markers


def _step_from_mapping(payload: Mapping[str, Any]) -> StepSpec:
    return StepSpec(
        name=payload["name"],
        command=payload["command"],
        args=tuple(payload.get("args", ())),
        cwd=payload.get("cwd", "."),
        env=dict(payload.get("env", {})),
        required_env=frozenset(payload.get("required_env", ())),
        privileged=bool(payload.get("privileged", False)),
        timeout=payload.get("timeout"),
    )


def _candidate_from_mapping(payload: Mapping[str, Any]) -> PipelineCandidate:
    steps = payload.get("steps")
    return PipelineCandidate(
        family=payload["family"],
        steps=tuple(_step_from_mapping(step) for step in steps) if steps else None,
        requires=frozenset(payload.get("requires", ())),
        artifacts=tuple(payload.get("artifacts", ())),
    )


def _declared_pipeline(payload: Mapping[str, Any]) -> str | None:
    """Return the explicit pipeline, honoring the PGXN META ``dependencies`` key."""
    if payload.get("pipeline"):
        return str(payload["pipeline"])
    dependencies = payload.get("dependencies")
    if isinstance(dependencies, Mapping) and dependencies.get("pipeline"):
        return str(dependencies["pipeline"])
    return None


def metadata_from_mapping(
    payload: Mapping[str, Any],
    *,
    extra_markers: Iterable[str] = (),
) -> DistributionMetadata:
    """Validate a metadata mapping and convert it into DistributionMetadata."""
    try:
        validate_metadata(payload)
    except jsonschema.ValidationError as exc:
        location = "/".join(str(part) for part in exc.absolute_path) or "<root>"
        raise MetadataError(f"Invalid metadata at {location}: {exc.message}") from exc
    markers = frozenset(payload.get("markers", ())) | frozenset(extra_markers)
    return DistributionMetadata(
        name=payload["name"],
        version=payload["version"],
        markers=markers,
        candidates=tuple(_candidate_from_mapping(item) for item in payload.get("pipelines", ())),
        pipeline=_declared_pipeline(payload),
        artifacts=tuple(payload.get("artifacts", ())),
    )


def load_metadata(path: Path, *, source_dir: Path | None = None) -> DistributionMetadata:
    """Load a metadata JSON file, adding markers probed from ``source_dir``."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise MetadataError(f"Failed to read metadata from {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise MetadataError(f"Metadata must be a JSON object: {path}")
    extra = scan_markers(source_dir) if source_dir is not None else frozenset()
    return metadata_from_mapping(payload, extra_markers=extra)
