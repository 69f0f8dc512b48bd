from __future__ import annotations

import json
import os
import sys
from pathlib import Path

from pgxn_build.models import (
    BuildTarget,
    DistributionMetadata,
    PipelineCandidate,
    StepSpec,
)


def python_step(name: str, code: str, **kwargs) -> StepSpec:
    """Return a step that runs an inline Python snippet."""
    extra_args = tuple(kwargs.pop("args", ()))
    return StepSpec(name=name, command=sys.executable, args=("-c", code, *extra_args), **kwargs)


def make_target(version: str, platform: str = "linux-x86_64", root: Path | None = None) -> BuildTarget:
    install = (root or Path("/opt/pg")) / version
    return BuildTarget(install_path=install, version=version, platform=platform)


def make_metadata(*steps: StepSpec, artifacts: tuple[str, ...] = ()) -> DistributionMetadata:
    return DistributionMetadata(
        name="widget",
        version="1.0.0",
        markers=frozenset({"Makefile"}),
        candidates=(PipelineCandidate(family="pgxs", steps=steps or None, artifacts=artifacts),),
    )


def write_source(root: Path) -> Path:
    """Create a small PGXS-looking source tree."""
    root.mkdir(parents=True, exist_ok=True)
    (root / "Makefile").write_text(
        "EXTENSION = widget\nPG_CONFIG ?= pg_config\ninclude $(PGXS)\n",
        encoding="utf-8",
    )
    (root / "widget.c").write_text("int widget(void) { return 1; }\n", encoding="utf-8")
    return root


def write_pg_config(path: Path, version: str, bindir: Path) -> Path:
    """Write an executable stand-in for pg_config that prints fixed values."""
    output = f"BINDIR = {bindir}\nPKGLIBDIR = {bindir.parent / 'lib'}\nVERSION = PostgreSQL {version}\n"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        f"#!{sys.executable}\nimport sys\nsys.stdout.write({json.dumps(output)})\n",
        encoding="utf-8",
    )
    os.chmod(path, 0o755)
    return path
