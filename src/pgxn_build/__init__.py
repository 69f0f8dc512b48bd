"""Build PGXN distributions against PostgreSQL installations."""

from pgxn_build.build import BuildResult, build_distribution
from pgxn_build.matrix import VersionMatrixDriver
from pgxn_build.models import (
    BuildReport,
    BuildTarget,
    DistributionMetadata,
    Pipeline,
    PipelineCandidate,
    ReportStatus,
    StepSpec,
    StepStatus,
    TargetStatus,
)
from pgxn_build.selector import select

__version__ = "0.1.0"

__all__ = [
    "BuildReport",
    "BuildResult",
    "BuildTarget",
    "DistributionMetadata",
    "Pipeline",
    "PipelineCandidate",
    "ReportStatus",
    "StepSpec",
    "StepStatus",
    "TargetStatus",
    "VersionMatrixDriver",
    "build_distribution",
    "select",
    "__version__",
]
