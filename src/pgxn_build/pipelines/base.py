"""Shared types and protocol for build-tool families."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from pgxn_build.models import StepSpec

PG_CONFIG_ARG = "PG_CONFIG=${PG_CONFIG}"


@dataclass(frozen=True)
class FamilySpec:
    """Describe a build-tool family and its selection priority.

    Lower ``priority`` values are more specific and win selection.
    """

    name: str
    priority: int
    description: str
    markers: tuple[str, ...]


class PipelineFamily(Protocol):
    """Protocol implemented by build-tool family strategies."""

    def spec(self) -> FamilySpec:
        ...

    def matches(self, markers: frozenset[str]) -> bool:
        ...

    def steps(self, markers: frozenset[str]) -> tuple[StepSpec, ...]:
        ...
