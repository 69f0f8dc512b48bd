from __future__ import annotations

import json
from pathlib import Path

import pytest

from pgxn_build.errors import MetadataError
from pgxn_build.metadata import load_metadata, metadata_from_mapping
from tests.utils import write_source


def test_metadata_from_mapping() -> None:
    metadata = metadata_from_mapping(
        {
            "name": "widget",
            "version": "1.0.0",
            "markers": ["Makefile"],
            "artifacts": ["*.so"],
            "pipelines": [
                {
                    "family": "pgxs",
                    "requires": ["Makefile", "!Cargo.toml"],
                    "steps": [
                        {
                            "name": "build",
                            "command": "make",
                            "args": ["all", "PG_CONFIG=${PG_CONFIG}"],
                            "env": {"USE_PGXS": "1"},
                            "required_env": ["PG_CONFIG"],
                            "timeout": 600,
                        },
                        {"name": "install", "command": "make", "args": ["install"], "privileged": True},
                    ],
                }
            ],
        }
    )

    assert str(metadata.identity) == "widget-1.0.0"
    assert metadata.markers == frozenset({"Makefile"})
    assert metadata.artifacts == ("*.so",)
    candidate = metadata.candidates[0]
    assert candidate.requires == frozenset({"Makefile", "!Cargo.toml"})
    build, install = candidate.steps
    assert build.argv() == ["make", "all", "PG_CONFIG=${PG_CONFIG}"]
    assert build.env == {"USE_PGXS": "1"}
    assert build.required_env == frozenset({"PG_CONFIG"})
    assert build.timeout == 600
    assert install.privileged
    assert install.cwd == "."


def test_candidate_without_steps_uses_family_defaults() -> None:
    metadata = metadata_from_mapping(
        {"name": "widget", "version": "1.0.0", "pipelines": [{"family": "pgrx"}]}
    )

    assert metadata.candidates[0].steps is None


def test_pipeline_declared_under_dependencies() -> None:
    metadata = metadata_from_mapping(
        {"name": "widget", "version": "1.0.0", "dependencies": {"pipeline": "pgrx"}}
    )

    assert metadata.pipeline == "pgrx"


def test_top_level_pipeline_wins() -> None:
    metadata = metadata_from_mapping(
        {
            "name": "widget",
            "version": "1.0.0",
            "pipeline": "pgxs",
            "dependencies": {"pipeline": "pgrx"},
        }
    )

    assert metadata.pipeline == "pgxs"


def test_invalid_metadata_reports_location() -> None:
    with pytest.raises(MetadataError, match="pipelines/0/steps/0"):
        metadata_from_mapping(
            {
                "name": "widget",
                "version": "1.0.0",
                "pipelines": [{"family": "pgxs", "steps": [{"name": "build"}]}],
            }
        )


def test_missing_version_rejected() -> None:
    with pytest.raises(MetadataError):
        metadata_from_mapping({"name": "widget"})


@pytest.mark.parametrize(
    "payload",
    [
        {"name": "../evil", "version": "1.0.0"},
        {"name": "widget", "version": "1.0/../../x"},
        {"name": "", "version": "1.0.0"},
    ],
)
def test_names_that_are_not_file_safe_rejected(payload: dict[str, str]) -> None:
    with pytest.raises(MetadataError):
        metadata_from_mapping(payload)


def test_load_metadata_adds_probed_markers(tmp_path: Path) -> None:
    source = write_source(tmp_path / "widget")
    meta = source / "META.json"
    meta.write_text(json.dumps({"name": "widget", "version": "1.0.0", "markers": ["docs"]}), encoding="utf-8")

    metadata = load_metadata(meta, source_dir=source)

    assert {"docs", "Makefile", "pgxs", "META.json"} <= metadata.markers


def test_load_metadata_errors(tmp_path: Path) -> None:
    with pytest.raises(MetadataError):
        load_metadata(tmp_path / "META.json")
    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")
    with pytest.raises(MetadataError):
        load_metadata(broken)
    listed = tmp_path / "list.json"
    listed.write_text("[]", encoding="utf-8")
    with pytest.raises(MetadataError):
        load_metadata(listed)
