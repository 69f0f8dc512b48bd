"""Build orchestration: matrix execution, packaging, and report output."""

from __future__ import annotations

import json
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping

from pgxn_build.config import BuildSettings
from pgxn_build.contracts import validate_build_report
from pgxn_build.errors import PackagingError
from pgxn_build.matrix import VersionMatrixDriver
from pgxn_build.models import (
    BuildReport,
    BuildTarget,
    DistributionMetadata,
    PackagedArtifact,
    ReportStatus,
)
from pgxn_build.packager import ArchiveCodec, ZipCodec, package
from pgxn_build.reporting import report_payload
from pgxn_build.subprocess_utils import CancelToken

REPORT_NAME = "build_report.json"

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildResult:
    """Build report plus the packaged artifact, when packaging succeeded."""

    report: BuildReport
    artifact: PackagedArtifact | None = None
    packaging_error: str | None = None

    def payload(self) -> dict[str, Any]:
        return report_payload(
            self.report,
            artifact=self.artifact,
            packaging_error=self.packaging_error,
        )


def write_json(path: Path, payload: Mapping[str, Any]) -> None:
    """Write a JSON payload to disk, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def archive_name(metadata: DistributionMetadata, codec: ArchiveCodec) -> str:
    """Return the archive file name; it must not carry path components."""
    name = f"{metadata.name}-{metadata.version}{codec.suffix}"
    if "/" in name or "\\" in name:
        raise PackagingError(f"Unsafe archive name: {name!r}")
    return name


def build_distribution(
    *,
    source_path: Path,
    metadata: DistributionMetadata,
    targets: Iterable[BuildTarget],
    output_dir: Path,
    settings: BuildSettings | None = None,
    driver: VersionMatrixDriver | None = None,
    codec: ArchiveCodec | None = None,
    cancel: CancelToken | None = None,
) -> BuildResult:
    """Build ``metadata`` for every target and package successful results.

    The report is returned whether or not packaging succeeds; packaging
    errors, codec failures included, are recorded on the result. Nothing is
    packaged once the build is cancelled. Metadata defects propagate.
    """
    settings = settings or BuildSettings()
    driver = driver or VersionMatrixDriver.from_settings(settings)
    codec = codec or ZipCodec()
    if settings.sandbox_root is not None:
        settings.sandbox_root.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(prefix="pgxn-build-stage-", dir=settings.sandbox_root) as stage:
        report = driver.build_all(
            source_path,
            metadata,
            targets,
            cancel=cancel,
            staging_dir=Path(stage),
        )
        artifact: PackagedArtifact | None = None
        packaging_error: str | None = None
        if report.status is ReportStatus.CANCELLED or (cancel is not None and cancel.cancelled):
            LOGGER.warning("Build cancelled; skipping packaging.")
        elif report.successful():
            try:
                artifact = package(
                    report,
                    output_dir / archive_name(metadata, codec),
                    codec=codec,
                )
            except (PackagingError, OSError) as exc:
                packaging_error = str(exc)
                LOGGER.error("Packaging failed: %s", exc)
        else:
            LOGGER.warning("No target succeeded; skipping packaging.")

    result = BuildResult(report=report, artifact=artifact, packaging_error=packaging_error)
    payload = result.payload()
    validate_build_report(payload)
    write_json(output_dir / REPORT_NAME, payload)
    return result
