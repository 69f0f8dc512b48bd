"""Discover marker files and build capabilities in an unpacked source tree.

Used by the metadata provider to fill in declared markers; pipeline
selection never calls this module.
"""

from __future__ import annotations

import logging
import re
import tomllib
from pathlib import Path

from pgxn_build.pipelines.pgxs import MAKEFILE_NAMES

LOGGER = logging.getLogger(__name__)

_PG_CONFIG_PATTERN = re.compile(r"^PG_CONFIG\s*[:?]?=\s*")
_PGXS_VAR_PATTERN = re.compile(r"^(MODULE(?:S|_big)|PROGRAM|EXTENSION|DATA(?:_built)?)\s*[:?]?=")
_PGXS_INCLUDE_PATTERN = re.compile(r"^include\s+\$\(PGXS\)")


def find_makefile(source_dir: Path) -> Path | None:
    """Return the first makefile make would read, if any."""
    for name in MAKEFILE_NAMES:
        candidate = source_dir / name
        if candidate.is_file():
            return candidate
    return None


def makefile_declares_pgxs(path: Path) -> bool:
    """Return True when a makefile looks like a PGXS makefile."""
    try:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError:
        return False
    for line in lines:
        if (
            _PG_CONFIG_PATTERN.match(line)
            or _PGXS_VAR_PATTERN.match(line)
            or _PGXS_INCLUDE_PATTERN.match(line)
        ):
            return True
    return False


def cargo_depends_on_pgrx(path: Path) -> bool:
    """Return True when Cargo.toml lists pgrx as a dependency."""
    try:
        manifest = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        LOGGER.debug("Could not parse %s: %s", path, exc)
        return False
    for section in ("dependencies", "dev-dependencies", "build-dependencies"):
        deps = manifest.get(section)
        if isinstance(deps, dict) and "pgrx" in deps:
            return True
    workspace = manifest.get("workspace")
    if isinstance(workspace, dict):
        deps = workspace.get("dependencies")
        if isinstance(deps, dict) and "pgrx" in deps:
            return True
    return False


def scan_markers(source_dir: Path) -> frozenset[str]:
    """Return the marker files and capabilities found at the top of a source tree."""
    markers: set[str] = set()
    makefile = find_makefile(source_dir)
    if makefile is not None:
        markers.add(makefile.name)
        if makefile_declares_pgxs(makefile):
            markers.add("pgxs")
    if (source_dir / "configure").is_file():
        markers.add("configure")
    cargo = source_dir / "Cargo.toml"
    if cargo.is_file():
        markers.add("Cargo.toml")
        if cargo_depends_on_pgrx(cargo):
            markers.add("pgrx")
    if (source_dir / "META.json").is_file():
        markers.add("META.json")
    return frozenset(markers)
