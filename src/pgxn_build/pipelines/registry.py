"""Registry of build-tool families, built-ins plus entrypoint plugins.

A plugin is registered under its entrypoint name and must describe a family
of the same name; plugins cannot replace a built-in family.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from importlib import metadata
from typing import Any, Callable, Iterator

from pgxn_build.errors import UnknownPipeline
from pgxn_build.pipelines.base import PipelineFamily
from pgxn_build.pipelines.configure import ConfigureFamily
from pgxn_build.pipelines.pgrx import PgrxFamily
from pgxn_build.pipelines.pgxs import PgxsFamily

FamilyFactory = Callable[[], PipelineFamily]
FAMILY_ENTRYPOINT_GROUP = "pgxn_build.pipelines"
_FAMILY_METHODS = ("spec", "matches", "steps")

LOGGER = logging.getLogger(__name__)

_BUILTIN_FAMILIES: dict[str, FamilyFactory] = {
    "pgrx": PgrxFamily,
    "pgxs": PgxsFamily,
    "configure": ConfigureFamily,
}


def _plugin_problem(name: str, factory: Any) -> str | None:
    """Return why ``factory`` cannot serve family ``name``, or None."""
    if not callable(factory):
        return "entrypoint is not callable"
    family = factory()
    missing = [method for method in _FAMILY_METHODS if not callable(getattr(family, method, None))]
    if missing:
        return f"family is missing {', '.join(missing)}()"
    declared = family.spec().name
    if declared != name:
        return f"family declares the name '{declared}'"
    return None


def _plugin_factories() -> Iterator[tuple[str, FamilyFactory]]:
    """Yield validated plugin factories in entrypoint order."""
    try:
        entry_points = metadata.entry_points(group=FAMILY_ENTRYPOINT_GROUP)
    except Exception as exc:  # pragma: no cover - entrypoint discovery failures are rare
        LOGGER.warning("Failed to read pipeline entrypoints: %s", exc)
        return
    for entry_point in entry_points:
        try:
            factory = entry_point.load()
            problem = _plugin_problem(entry_point.name, factory)
        except Exception as exc:
            problem = f"failed to load: {exc}"
        if problem:
            LOGGER.warning("Skipping pipeline plugin '%s': %s", entry_point.name, problem)
            continue
        yield entry_point.name, factory


@lru_cache(maxsize=1)
def _family_factories() -> dict[str, FamilyFactory]:
    factories = dict(_BUILTIN_FAMILIES)
    for name, factory in _plugin_factories():
        if name in factories:
            LOGGER.warning("Pipeline family '%s' already registered; ignoring plugin.", name)
        else:
            factories[name] = factory
    return factories


def refresh_families() -> None:
    """Forget loaded plugins so the next lookup reads entrypoints again."""
    _family_factories.cache_clear()


def get_family(name: str) -> PipelineFamily:
    """Return a family strategy for the given name."""
    factory = _family_factories().get(name)
    if factory is None:
        raise UnknownPipeline(name)
    return factory()


def list_families() -> list[PipelineFamily]:
    """Return registered families ordered by selection priority, then name."""
    families: list[PipelineFamily] = []
    for name, factory in _family_factories().items():
        try:
            families.append(factory())
        except Exception as exc:
            LOGGER.warning("Skipping pipeline family '%s' because it failed to initialize: %s", name, exc)
    return sorted(families, key=lambda family: (family.spec().priority, family.spec().name))
