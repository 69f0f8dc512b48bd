"""Build settings loaded from JSON config files and environment overrides."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping

import jsonschema

from pgxn_build.contracts import validate_settings
from pgxn_build.errors import ConfigError
from pgxn_build.runner import DEFAULT_STEP_TIMEOUT

ENV_CONFIG_PATH = "PGXN_BUILD_CONFIG"
ENV_MAX_WORKERS = "PGXN_BUILD_MAX_WORKERS"
ENV_STEP_TIMEOUT = "PGXN_BUILD_STEP_TIMEOUT"
DEFAULT_CONFIG_NAME = "pgxn-build.json"


@dataclass(frozen=True)
class BuildSettings:
    """Execution settings shared by every target in a build."""

    max_workers: int = 1
    step_timeout: float | None = DEFAULT_STEP_TIMEOUT
    sandbox_root: Path | None = None
    use_sudo: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "max_workers": self.max_workers,
            "step_timeout": self.step_timeout,
            "sandbox_root": str(self.sandbox_root) if self.sandbox_root else None,
            "use_sudo": self.use_sudo,
        }


def settings_from_mapping(payload: Mapping[str, Any]) -> BuildSettings:
    """Validate a settings mapping and convert it into BuildSettings."""
    try:
        validate_settings(payload)
    except jsonschema.ValidationError as exc:
        raise ConfigError(f"Invalid settings: {exc.message}") from exc
    defaults = BuildSettings()
    sandbox_root = payload.get("sandbox_root")
    return BuildSettings(
        max_workers=int(payload.get("max_workers", defaults.max_workers)),
        step_timeout=payload.get("step_timeout", defaults.step_timeout),
        sandbox_root=Path(sandbox_root).expanduser() if sandbox_root else None,
        use_sudo=bool(payload.get("use_sudo", defaults.use_sudo)),
    )


def _load_candidate(candidate: Path) -> BuildSettings | None:
    """Load settings from a single candidate path, or None when absent."""
    if not candidate.exists():
        return None
    try:
        data = json.loads(candidate.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Failed to read settings from {candidate}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Settings file must contain a JSON object: {candidate}")
    return settings_from_mapping(data)


def _apply_env_overrides(settings: BuildSettings, environ: Mapping[str, str]) -> BuildSettings:
    max_workers = environ.get(ENV_MAX_WORKERS)
    if max_workers:
        try:
            value = int(max_workers)
        except ValueError as exc:
            raise ConfigError(f"{ENV_MAX_WORKERS} must be an integer: {max_workers}") from exc
        if value < 1:
            raise ConfigError(f"{ENV_MAX_WORKERS} must be at least 1.")
        settings = replace(settings, max_workers=value)
    step_timeout = environ.get(ENV_STEP_TIMEOUT)
    if step_timeout:
        try:
            timeout = float(step_timeout)
        except ValueError as exc:
            raise ConfigError(f"{ENV_STEP_TIMEOUT} must be a number: {step_timeout}") from exc
        settings = replace(settings, step_timeout=timeout if timeout > 0 else None)
    return settings


def load_settings(
    path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> BuildSettings:
    """Load settings from an explicit path, $PGXN_BUILD_CONFIG, or ./pgxn-build.json."""
    env = os.environ if environ is None else environ
    if path is not None:
        settings = _load_candidate(path)
        if settings is None:
            raise ConfigError(f"Settings file not found: {path}")
    else:
        env_path = env.get(ENV_CONFIG_PATH)
        candidate = Path(env_path) if env_path else Path.cwd() / DEFAULT_CONFIG_NAME
        settings = _load_candidate(candidate) or BuildSettings()
    return _apply_env_overrides(settings, env)
