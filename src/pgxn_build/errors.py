"""Exception hierarchy for pipeline selection, sandboxes, and packaging."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable


class BuildError(RuntimeError):
    """Base class for errors raised by pgxn_build."""

    pass


class PipelineSelectionError(BuildError):
    """Raised when distribution metadata cannot be mapped onto a pipeline."""

    pass


class NoSupportedPipeline(PipelineSelectionError):
    """Raised when no declared candidate matches a registered family."""

    def __init__(self, distribution: str, families: Iterable[str] = ()) -> None:
        self.distribution = distribution
        self.families = tuple(families)
        detail = ", ".join(self.families) if self.families else "none declared"
        super().__init__(f"No supported build pipeline for {distribution} (candidates: {detail})")


class AmbiguousPipeline(PipelineSelectionError):
    """Raised when metadata declares contradictory pipeline requirements."""

    def __init__(self, distribution: str, reason: str) -> None:
        self.distribution = distribution
        self.reason = reason
        super().__init__(f"Contradictory pipeline metadata for {distribution}: {reason}")


class UnknownPipeline(PipelineSelectionError):
    """Raised when metadata names a pipeline family that is not registered."""

    def __init__(self, family: str) -> None:
        self.family = family
        super().__init__(f"Unknown build pipeline: {family}")


class SandboxCreationFailed(BuildError):
    """Raised when a sandbox directory cannot be created or populated."""

    def __init__(self, source: Path, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"Failed to create sandbox for {source}: {reason}")


class StepStartError(BuildError):
    """Raised when a step cannot be started inside its sandbox."""

    def __init__(self, step: str, reason: str) -> None:
        self.step = step
        self.reason = reason
        super().__init__(f"Step {step} could not start: {reason}")


class PackagingError(BuildError):
    """Raised when a build report cannot be packaged."""

    pass


class NoSuccessfulTarget(PackagingError):
    """Raised when packaging is requested for a report without a successful target."""

    def __init__(self, distribution: str) -> None:
        self.distribution = distribution
        super().__init__(f"No successful target to package for {distribution}")


class MissingArtifact(PackagingError):
    """Raised when a successful target did not produce a declared artifact."""

    def __init__(self, target: str, patterns: Iterable[str]) -> None:
        self.target = target
        self.patterns = tuple(patterns)
        super().__init__(
            f"Target {target} is missing declared artifacts: {', '.join(self.patterns)}"
        )


class ArtifactsNotCollected(PackagingError):
    """Raised when a successful target has no staged copy of its declared artifacts."""

    def __init__(self, target: str) -> None:
        self.target = target
        super().__init__(f"Artifacts were not collected for {target}")


class ArchiveCodecError(PackagingError):
    """Raised when the archive codec fails; the codec error is the ``__cause__``."""

    def __init__(self, archive_path: Path, reason: str) -> None:
        self.archive_path = archive_path
        self.reason = reason
        super().__init__(f"Failed to write archive {archive_path}: {reason}")


class MetadataError(BuildError):
    """Raised when a distribution metadata document is invalid."""

    pass


class PgConfigError(BuildError):
    """Raised when pg_config cannot be executed or parsed."""

    pass


class ConfigError(BuildError):
    """Raised when build settings cannot be loaded."""

    pass
