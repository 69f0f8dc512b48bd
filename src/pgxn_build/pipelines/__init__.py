"""Build-tool family exports."""

from pgxn_build.pipelines.base import FamilySpec, PipelineFamily
from pgxn_build.pipelines.registry import get_family, list_families, refresh_families

__all__ = [
    "FamilySpec",
    "PipelineFamily",
    "get_family",
    "list_families",
    "refresh_families",
]
