"""Build report aggregation and serialization helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable

from pgxn_build.contracts import SCHEMA_VERSION
from pgxn_build.models import (
    BuildReport,
    DistributionId,
    PackagedArtifact,
    ReportStatus,
    StepOutcome,
    TargetOutcome,
    TargetStatus,
)


def _utc_now() -> str:
    """Return the current UTC timestamp as ISO8601."""
    return datetime.now(timezone.utc).isoformat()


def aggregate_status(outcomes: Iterable[TargetOutcome]) -> ReportStatus:
    """Reduce target statuses to the report status."""
    statuses = [outcome.status for outcome in outcomes]
    if any(status is TargetStatus.CANCELLED for status in statuses):
        return ReportStatus.CANCELLED
    succeeded = sum(1 for status in statuses if status is TargetStatus.SUCCESS)
    if statuses and succeeded == len(statuses):
        return ReportStatus.SUCCESS
    if succeeded:
        return ReportStatus.PARTIAL_FAILURE
    return ReportStatus.FAILED


def aggregate(
    *,
    distribution: DistributionId,
    pipeline: str,
    outcomes: Iterable[TargetOutcome],
    warnings: Iterable[str] = (),
    artifacts: Iterable[str] = (),
) -> BuildReport:
    """Merge target outcomes into a BuildReport keyed by target."""
    targets: dict[str, TargetOutcome] = {}
    for outcome in outcomes:
        key = outcome.target.key
        if key in targets:
            raise ValueError(f"Duplicate target outcome: {key}")
        targets[key] = outcome
    merged = list(warnings)
    for key in sorted(targets):
        merged.extend(f"{key}: {warning}" for warning in targets[key].warnings)
    return BuildReport(
        distribution=distribution,
        pipeline=pipeline,
        status=aggregate_status(targets.values()),
        targets=targets,
        warnings=tuple(merged),
        artifacts=tuple(artifacts),
    )


def _step_payload(step: StepOutcome) -> dict[str, Any]:
    return {
        "name": step.name,
        "status": step.status.value,
        "returncode": step.returncode,
        "command": list(step.command),
        "duration": round(step.duration, 6),
        "stdout": step.stdout,
        "stderr": step.stderr,
    }


def _target_payload(outcome: TargetOutcome) -> dict[str, Any]:
    target = outcome.target
    return {
        "target": {
            "key": target.key,
            "install_path": str(target.install_path),
            "version": target.version,
            "platform": target.platform,
        },
        "status": outcome.status.value,
        "failed_step": outcome.failed_step,
        "error": outcome.error,
        "duration": round(outcome.duration, 6),
        "steps": [_step_payload(step) for step in outcome.steps],
        "artifacts": list(outcome.artifacts),
        "missing_artifacts": list(outcome.missing_artifacts),
        "warnings": list(outcome.warnings),
    }


def report_payload(
    report: BuildReport,
    *,
    artifact: PackagedArtifact | None = None,
    packaging_error: str | None = None,
) -> dict[str, Any]:
    """Create a JSON-serializable build report dictionary."""
    packaging: dict[str, Any] | None = None
    if artifact is not None:
        packaging = {
            "path": str(artifact.path),
            "sha256": artifact.sha256,
            "targets": list(artifact.targets),
            "files": artifact.files,
        }
    return {
        "schema_version": SCHEMA_VERSION,
        "created_at": _utc_now(),
        "distribution": {
            "name": report.distribution.name,
            "version": report.distribution.version,
        },
        "pipeline": report.pipeline,
        "artifacts": list(report.artifacts),
        "status": report.status.value,
        "targets": {key: _target_payload(report.targets[key]) for key in sorted(report.targets)},
        "warnings": list(report.warnings),
        "packaging": packaging,
        "packaging_error": packaging_error,
    }
