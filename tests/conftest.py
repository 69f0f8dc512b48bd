from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

import pytest  # noqa: E402

from pgxn_build import config  # noqa: E402
from pgxn_build.pipelines.registry import refresh_families  # noqa: E402


def pytest_collection_modifyitems(config, items) -> None:
    """Skip integration tests unless explicitly selected via -m integration."""
    markexpr = config.option.markexpr or ""
    if "integration" in markexpr:
        return
    skip_integration = pytest.mark.skip(reason="integration tests run only with -m integration")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch, tmp_path) -> None:
    """Prevent local settings files and overrides from bleeding into tests."""
    monkeypatch.setenv(config.ENV_CONFIG_PATH, str(tmp_path / "missing_settings.json"))
    monkeypatch.delenv(config.ENV_MAX_WORKERS, raising=False)
    monkeypatch.delenv(config.ENV_STEP_TIMEOUT, raising=False)


@pytest.fixture(autouse=True)
def _fresh_families():
    refresh_families()
    yield
    refresh_families()
