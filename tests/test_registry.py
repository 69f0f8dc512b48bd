from __future__ import annotations

import logging

import pytest

from pgxn_build.errors import UnknownPipeline
from pgxn_build.models import DistributionMetadata, StepSpec
from pgxn_build.pipelines.base import FamilySpec
from pgxn_build.pipelines.pgxs import PgxsFamily
from pgxn_build.pipelines.registry import get_family, list_families, refresh_families
from pgxn_build.selector import select


class MesonFamily:
    def spec(self) -> FamilySpec:
        return FamilySpec(
            name="meson",
            priority=5,
            description="Meson build",
            markers=("meson.build",),
        )

    def matches(self, markers: frozenset[str]) -> bool:
        return "meson.build" in markers

    def steps(self, markers: frozenset[str]) -> tuple[StepSpec, ...]:
        return (StepSpec(name="build", command="meson", args=("compile",)),)


def _entry_point(name: str, target):
    class DummyEntryPoint:
        def load(self):
            return target

    entry_point = DummyEntryPoint()
    entry_point.name = name
    return entry_point


def test_builtin_families_in_priority_order() -> None:
    names = [family.spec().name for family in list_families()]

    assert names == ["pgrx", "pgxs", "configure"]


def test_get_family_unknown() -> None:
    with pytest.raises(UnknownPipeline):
        get_family("scons")


def test_family_entrypoints(monkeypatch) -> None:
    monkeypatch.setattr(
        "pgxn_build.pipelines.registry.metadata.entry_points",
        lambda group: [_entry_point("meson", MesonFamily)],
    )
    refresh_families()

    names = [family.spec().name for family in list_families()]
    assert names[0] == "meson"

    metadata = DistributionMetadata(
        name="widget",
        version="1.0.0",
        markers=frozenset({"meson.build", "Makefile"}),
    )
    assert select(metadata).family == "meson"


def test_family_entrypoint_duplicate_skipped(monkeypatch) -> None:
    class ShadowPgxs(MesonFamily):
        def spec(self) -> FamilySpec:
            return FamilySpec(name="pgxs", priority=0, description="Shadow", markers=("Makefile",))

    monkeypatch.setattr(
        "pgxn_build.pipelines.registry.metadata.entry_points",
        lambda group: [_entry_point("pgxs", ShadowPgxs)],
    )
    refresh_families()

    assert isinstance(get_family("pgxs"), PgxsFamily)


def test_family_entrypoint_load_failure_skipped(monkeypatch) -> None:
    class BrokenEntryPoint:
        name = "broken"

        def load(self):
            raise ImportError("missing module")

    monkeypatch.setattr(
        "pgxn_build.pipelines.registry.metadata.entry_points",
        lambda group: [BrokenEntryPoint(), _entry_point("not_callable", "meson")],
    )
    refresh_families()

    names = [family.spec().name for family in list_families()]
    assert names == ["pgrx", "pgxs", "configure"]


def test_family_entrypoint_name_must_match_spec(monkeypatch, caplog) -> None:
    monkeypatch.setattr(
        "pgxn_build.pipelines.registry.metadata.entry_points",
        lambda group: [_entry_point("ninja", MesonFamily)],
    )
    refresh_families()

    with caplog.at_level(logging.WARNING, logger="pgxn_build.pipelines.registry"):
        names = [family.spec().name for family in list_families()]

    assert names == ["pgrx", "pgxs", "configure"]
    with pytest.raises(UnknownPipeline):
        get_family("ninja")
    assert any("declares the name 'meson'" in record.getMessage() for record in caplog.records)


def test_family_entrypoint_must_implement_family(monkeypatch) -> None:
    class SpecOnly:
        def spec(self) -> FamilySpec:
            return FamilySpec(name="scons", priority=5, description="SCons", markers=("SConstruct",))

    monkeypatch.setattr(
        "pgxn_build.pipelines.registry.metadata.entry_points",
        lambda group: [_entry_point("scons", SpecOnly)],
    )
    refresh_families()

    with pytest.raises(UnknownPipeline):
        get_family("scons")
