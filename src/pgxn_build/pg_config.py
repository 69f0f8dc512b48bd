"""Describe PostgreSQL installations by running pg_config."""

from __future__ import annotations

import platform
import re
import subprocess
import sys
from pathlib import Path
from typing import Iterator, Mapping

from pgxn_build.errors import PgConfigError
from pgxn_build.models import BuildTarget

_VERSION_PATTERN = re.compile(r"(\d+(?:\.\d+)*)")


def parse_pg_config(output: str) -> dict[str, str]:
    """Parse ``KEY = value`` lines into a mapping with lowercase keys."""
    values: dict[str, str] = {}
    for line in output.splitlines():
        key, sep, value = line.partition(" = ")
        if not sep:
            continue
        values[key.strip().lower()] = value
    return values


class PgConfig(Mapping[str, str]):
    """Key/value pairs reported by a pg_config executable."""

    def __init__(self, path: Path, values: Mapping[str, str]) -> None:
        self.path = path
        self._values = {key.lower(): value for key, value in values.items()}

    @classmethod
    def load(cls, path: Path, *, timeout: float | None = 30.0) -> PgConfig:
        """Execute ``pg_config`` and parse its output."""
        try:
            result = subprocess.run(
                [str(path)],
                capture_output=True,
                text=True,
                check=False,
                timeout=timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise PgConfigError(f"Failed to run {path}: {exc}") from exc
        if result.returncode != 0:
            detail = result.stderr.strip() or result.stdout.strip() or f"exit {result.returncode}"
            raise PgConfigError(f"{path} failed: {detail}")
        return cls(path, parse_pg_config(result.stdout))

    def __getitem__(self, key: str) -> str:
        return self._values[key.lower()]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    @property
    def version(self) -> str:
        """Return the numeric server version, e.g. ``16.2`` for ``PostgreSQL 16.2``."""
        raw = self._values.get("version", "")
        match = _VERSION_PATTERN.search(raw)
        if not match:
            raise PgConfigError(f"{self.path} did not report a version")
        return match.group(1)

    @property
    def install_path(self) -> Path:
        bindir = self._values.get("bindir")
        if bindir:
            return Path(bindir).parent
        return self.path.resolve().parent.parent


def default_platform() -> str:
    """Return a platform tag such as ``linux-x86_64``."""
    return f"{sys.platform}-{platform.machine().lower() or 'unknown'}"


def target_from_pg_config(
    path: Path,
    *,
    platform_tag: str | None = None,
    name: str | None = None,
    sudo: bool = False,
) -> BuildTarget:
    """Build a BuildTarget describing the installation behind ``path``."""
    config = PgConfig.load(path)
    return BuildTarget(
        install_path=config.install_path,
        version=config.version,
        platform=platform_tag or default_platform(),
        pg_config=path,
        name=name,
        sudo=sudo,
    )
