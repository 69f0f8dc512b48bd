"""Generic configure-script family for autoconf-style source trees."""

from __future__ import annotations

from pgxn_build.models import StepSpec
from pgxn_build.pipelines.base import FamilySpec


class ConfigureFamily:
    """Run ``./configure && make && make install``."""

    def spec(self) -> FamilySpec:
        return FamilySpec(
            name="configure",
            priority=30,
            description="Generic configure script",
            markers=("configure",),
        )

    def matches(self, markers: frozenset[str]) -> bool:
        return "configure" in markers

    def steps(self, markers: frozenset[str]) -> tuple[StepSpec, ...]:
        return (
            StepSpec(name="configure", command="./configure"),
            StepSpec(name="build", command="make"),
            StepSpec(name="install", command="make", args=("install",), privileged=True),
        )
