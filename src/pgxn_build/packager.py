"""Collect declared artifacts and package successful targets into one archive."""

from __future__ import annotations

import hashlib
import json
import logging
import shutil
import stat
import tempfile
from pathlib import Path
from typing import Iterable, Protocol, Sequence
from zipfile import ZIP_DEFLATED, ZipFile, ZipInfo

from pgxn_build.errors import (
    ArchiveCodecError,
    ArtifactsNotCollected,
    MissingArtifact,
    NoSuccessfulTarget,
)
from pgxn_build.models import BuildReport, PackagedArtifact
from pgxn_build.sandbox import Sandbox

MANIFEST_NAME = "manifest.json"
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
_GLOB_CHARS = frozenset("*?[")

LOGGER = logging.getLogger(__name__)

ArchiveEntries = Sequence[tuple[str, Path]]


class ArchiveCodec(Protocol):
    """Create archives and checksum them."""

    suffix: str

    def create(self, archive_path: Path, entries: ArchiveEntries) -> None:
        ...

    def checksum(self, archive_path: Path) -> str:
        ...


def sha256_file(path: Path) -> str:
    """Compute the SHA-256 hash for a file."""
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


class ZipCodec:
    """Deterministic zip writer: sorted entries, fixed timestamps, normalized modes."""

    suffix = ".zip"

    def create(self, archive_path: Path, entries: ArchiveEntries) -> None:
        with ZipFile(archive_path, "w", compression=ZIP_DEFLATED) as archive:
            for name, source in sorted(entries, key=lambda entry: entry[0]):
                info = ZipInfo(name, date_time=ZIP_EPOCH)
                info.compress_type = ZIP_DEFLATED
                executable = source.stat().st_mode & stat.S_IXUSR
                info.external_attr = (0o100755 if executable else 0o100644) << 16
                archive.writestr(info, source.read_bytes())

    def checksum(self, archive_path: Path) -> str:
        return sha256_file(archive_path)


def _expand_pattern(base: Path, pattern: str) -> list[Path]:
    """Return files matched by an artifact path or glob, directories expanded."""
    if any(char in _GLOB_CHARS for char in pattern):
        matches = sorted(base.glob(pattern))
    else:
        candidate = base / pattern
        matches = [candidate] if candidate.exists() else []
    files: list[Path] = []
    for match in matches:
        if match.is_dir():
            files.extend(sorted(path for path in match.rglob("*") if path.is_file()))
        elif match.is_file():
            files.append(match)
    return files


def collect_artifacts(
    sandbox: Sandbox,
    patterns: Iterable[str],
    staging_dir: Path,
) -> tuple[list[str], list[str]]:
    """Copy declared artifacts out of a sandbox before it is released.

    Returns the collected paths relative to ``staging_dir`` and the
    patterns that matched nothing.
    """
    base = sandbox.path.resolve()
    collected: list[str] = []
    missing: list[str] = []
    for pattern in patterns:
        try:
            sandbox.resolve(pattern.split("*", 1)[0] or ".")
        except ValueError:
            LOGGER.warning("Ignoring artifact outside the sandbox: %s", pattern)
            missing.append(pattern)
            continue
        files = _expand_pattern(base, pattern)
        if not files:
            missing.append(pattern)
            continue
        for file_path in files:
            relative = file_path.relative_to(base).as_posix()
            if relative in collected:
                continue
            destination = staging_dir / relative
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(file_path, destination)
            collected.append(relative)
    return collected, missing


def _manifest(report: BuildReport, entries: ArchiveEntries) -> dict[str, object]:
    files = [
        {"path": name, "size": source.stat().st_size, "sha256": sha256_file(source)}
        for name, source in sorted(entries, key=lambda entry: entry[0])
    ]
    return {
        "distribution": report.distribution.name,
        "version": report.distribution.version,
        "pipeline": report.pipeline,
        "targets": [outcome.target.key for outcome in report.successful()],
        "files": files,
    }


def package(
    report: BuildReport,
    output_path: Path,
    *,
    codec: ArchiveCodec | None = None,
) -> PackagedArtifact:
    """Write one archive holding each successful target's collected artifacts.

    Codec failures are raised as ArchiveCodecError with the codec's own
    exception as ``__cause__``; a partial archive is removed first.
    """
    successful = report.successful()
    if not successful:
        raise NoSuccessfulTarget(str(report.distribution))
    for outcome in successful:
        if outcome.missing_artifacts:
            raise MissingArtifact(outcome.target.key, outcome.missing_artifacts)

    entries: list[tuple[str, Path]] = []
    for outcome in successful:
        if outcome.artifact_root is None:
            if report.artifacts:
                raise ArtifactsNotCollected(outcome.target.key)
            continue
        for relative in outcome.artifacts:
            entries.append((f"{outcome.target.key}/{relative}", outcome.artifact_root / relative))

    codec = codec or ZipCodec()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(prefix="pgxn-build-manifest-") as tmp:
        manifest_path = Path(tmp) / MANIFEST_NAME
        manifest_path.write_text(
            json.dumps(_manifest(report, entries), indent=2, sort_keys=True),
            encoding="utf-8",
        )
        try:
            codec.create(output_path, [(MANIFEST_NAME, manifest_path), *entries])
            checksum = codec.checksum(output_path)
        except Exception as exc:
            output_path.unlink(missing_ok=True)
            raise ArchiveCodecError(output_path, str(exc) or type(exc).__name__) from exc
    LOGGER.info("Packaged %s (%s files, sha256 %s)", output_path, len(entries), checksum)
    return PackagedArtifact(
        path=output_path,
        sha256=checksum,
        targets=tuple(outcome.target.key for outcome in successful),
        files=len(entries),
    )
