"""PGXS family: extensions built with the PostgreSQL extension makefiles.

See https://www.postgresql.org/docs/current/extend-pgxs.html
"""

from __future__ import annotations

from pgxn_build.models import StepSpec
from pgxn_build.pipelines.base import PG_CONFIG_ARG, FamilySpec

MAKEFILE_NAMES = ("GNUmakefile", "makefile", "Makefile")


class PgxsFamily:
    """Run ``make`` against a PGXS makefile."""

    def spec(self) -> FamilySpec:
        return FamilySpec(
            name="pgxs",
            priority=20,
            description="PostgreSQL PGXS makefile",
            markers=MAKEFILE_NAMES,
        )

    def matches(self, markers: frozenset[str]) -> bool:
        return "pgxs" in markers or any(name in markers for name in MAKEFILE_NAMES)

    def steps(self, markers: frozenset[str]) -> tuple[StepSpec, ...]:
        steps: list[StepSpec] = []
        if "configure" in markers:
            steps.append(StepSpec(name="configure", command="./configure"))
        steps.extend(
            [
                StepSpec(name="build", command="make", args=("all", PG_CONFIG_ARG)),
                StepSpec(name="test", command="make", args=("installcheck", PG_CONFIG_ARG)),
                StepSpec(
                    name="install",
                    command="make",
                    args=("install", PG_CONFIG_ARG),
                    privileged=True,
                ),
            ]
        )
        return tuple(steps)
