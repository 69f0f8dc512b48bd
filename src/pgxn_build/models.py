"""Typed values shared by the selector, runner, matrix driver, and packager."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping

_MAJOR_PATTERN = re.compile(r"^\s*(\d+)")


class StepStatus(str, Enum):
    """Terminal status of a single step invocation."""

    SUCCESS = "success"
    FAILED = "failed"
    SIGNALED = "signaled"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    NOT_RUN = "not_run"


class TargetStatus(str, Enum):
    """Terminal status of one target build."""

    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ReportStatus(str, Enum):
    """Aggregate status across every target in a build report."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StepSpec:
    """One external command invocation within a pipeline.

    ``args`` may reference ``$VAR`` or ``${VAR}`` placeholders; the runner
    expands them from the step environment. ``cwd`` is relative to the
    sandbox root.
    """

    name: str
    command: str
    args: tuple[str, ...] = ()
    cwd: str = "."
    env: Mapping[str, str] = field(default_factory=dict)
    required_env: frozenset[str] = frozenset()
    privileged: bool = False
    timeout: float | None = None

    def argv(self) -> list[str]:
        """Return the unexpanded command line."""
        return [self.command, *self.args]


@dataclass(frozen=True)
class PipelineCandidate:
    """A pipeline declared by distribution metadata."""

    family: str
    steps: tuple[StepSpec, ...] | None = None
    requires: frozenset[str] = frozenset()
    artifacts: tuple[str, ...] = ()


@dataclass(frozen=True)
class DistributionId:
    """Name and version identifying a distribution."""

    name: str
    version: str

    def __str__(self) -> str:
        return f"{self.name}-{self.version}"


@dataclass(frozen=True)
class DistributionMetadata:
    """Validated distribution metadata consumed by the selector.

    ``markers`` lists the marker files and capabilities the metadata
    provider declared for the source tree (for example ``Makefile`` or
    ``pgrx``). ``pipeline`` is the explicitly declared family, if any.
    """

    name: str
    version: str
    markers: frozenset[str] = frozenset()
    candidates: tuple[PipelineCandidate, ...] = ()
    pipeline: str | None = None
    artifacts: tuple[str, ...] = ()

    @property
    def identity(self) -> DistributionId:
        return DistributionId(self.name, self.version)


@dataclass(frozen=True)
class Pipeline:
    """Ordered steps for exactly one build-tool family."""

    family: str
    steps: tuple[StepSpec, ...]
    artifacts: tuple[str, ...] = ()

    @property
    def step_names(self) -> tuple[str, ...]:
        return tuple(step.name for step in self.steps)


@dataclass(frozen=True)
class BuildTarget:
    """One PostgreSQL installation and platform to build against."""

    install_path: Path
    version: str
    platform: str
    pg_config: Path | None = None
    name: str | None = None
    sudo: bool = False

    @property
    def key(self) -> str:
        """Return the report key for this target."""
        if self.name:
            return self.name
        return f"{self.version}-{self.platform}"

    @property
    def major_version(self) -> str:
        match = _MAJOR_PATTERN.match(self.version)
        return match.group(1) if match else self.version

    def pg_config_path(self) -> Path:
        if self.pg_config is not None:
            return self.pg_config
        return Path(self.install_path) / "bin" / "pg_config"

    def environment(self) -> dict[str, str]:
        """Return the environment variables that parameterize each step."""
        return {
            "PG_CONFIG": str(self.pg_config_path()),
            "PG_INSTALL_PATH": str(self.install_path),
            "PG_VERSION": self.version,
            "PG_MAJOR": self.major_version,
            "PG_PLATFORM": self.platform,
        }


@dataclass(frozen=True)
class StepOutcome:
    """Captured result of one step."""

    name: str
    status: StepStatus
    returncode: int | None = None
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    command: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.SUCCESS


@dataclass(frozen=True)
class TargetOutcome:
    """Ordered step outcomes and terminal status for one target.

    ``error`` describes a failure that happened before any process ran, such
    as a sandbox that could not be created or a step that could not start.
    """

    target: BuildTarget
    status: TargetStatus
    steps: tuple[StepOutcome, ...]
    failed_step: str | None = None
    duration: float = 0.0
    error: str | None = None
    artifact_root: Path | None = None
    artifacts: tuple[str, ...] = ()
    missing_artifacts: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status is TargetStatus.SUCCESS


@dataclass(frozen=True)
class BuildReport:
    """Outcome of building one distribution across every requested target.

    ``artifacts`` holds the artifact patterns declared by the pipeline.
    """

    distribution: DistributionId
    pipeline: str
    status: ReportStatus
    targets: Mapping[str, TargetOutcome]
    warnings: tuple[str, ...] = ()
    artifacts: tuple[str, ...] = ()

    def successful(self) -> list[TargetOutcome]:
        """Return successful target outcomes sorted by key."""
        return [self.targets[key] for key in sorted(self.targets) if self.targets[key].ok]


@dataclass(frozen=True)
class PackagedArtifact:
    """Archive written for a successful build report."""

    path: Path
    sha256: str
    targets: tuple[str, ...]
    files: int
