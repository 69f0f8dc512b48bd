"""Schema validation helpers for distribution metadata and build reports."""

from __future__ import annotations

import json
from importlib import resources
from typing import Any, Mapping

import jsonschema

SCHEMA_VERSION = "1.0"


def _load_schema(name: str) -> dict[str, Any]:
    """Load a JSON schema bundled in the package."""
    with resources.files("pgxn_build.schemas").joinpath(name).open("r", encoding="utf-8") as handle:
        return json.load(handle)


def validate_metadata(payload: Mapping[str, Any]) -> None:
    """Validate a distribution metadata document against the schema."""
    schema = _load_schema("metadata.schema.json")
    jsonschema.validate(payload, schema)


def validate_build_report(report: Mapping[str, Any]) -> None:
    """Validate a build report payload against the schema."""
    schema = _load_schema("build_report.schema.json")
    jsonschema.validate(report, schema)


def validate_settings(payload: Mapping[str, Any]) -> None:
    """Validate a build settings file against the schema."""
    schema = _load_schema("settings.schema.json")
    jsonschema.validate(payload, schema)
