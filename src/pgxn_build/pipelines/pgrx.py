"""pgrx family: Rust extensions built with cargo-pgrx.

See https://github.com/pgcentralfoundation/pgrx
"""

from __future__ import annotations

from pgxn_build.models import StepSpec
from pgxn_build.pipelines.base import FamilySpec

_PG_CONFIG_FLAG = ("--pg-config", "${PG_CONFIG}")


class PgrxFamily:
    """Run ``cargo pgrx`` subcommands for the target Postgres."""

    def spec(self) -> FamilySpec:
        return FamilySpec(
            name="pgrx",
            priority=10,
            description="Rust extension built with cargo-pgrx",
            markers=("Cargo.toml", "pgrx"),
        )

    def matches(self, markers: frozenset[str]) -> bool:
        # A bare Cargo.toml is not enough; the crate must depend on pgrx.
        return "pgrx" in markers

    def steps(self, markers: frozenset[str]) -> tuple[StepSpec, ...]:
        return (
            StepSpec(
                name="configure",
                command="cargo",
                args=("pgrx", "init", "--pg${PG_MAJOR}=${PG_CONFIG}"),
            ),
            StepSpec(name="build", command="cargo", args=("pgrx", "package", *_PG_CONFIG_FLAG)),
            StepSpec(name="test", command="cargo", args=("pgrx", "test", "pg${PG_MAJOR}")),
            StepSpec(
                name="install",
                command="cargo",
                args=("pgrx", "install", *_PG_CONFIG_FLAG),
                privileged=True,
            ),
        )
