from __future__ import annotations

import signal
import sys
from dataclasses import replace
from pathlib import Path

import pytest

from pgxn_build.errors import StepStartError
from pgxn_build.models import Pipeline, StepSpec, StepStatus, TargetStatus
from pgxn_build.runner import PipelineRunner, expand, step_environment
from pgxn_build.sandbox import acquire
from pgxn_build.subprocess_utils import CancelToken
from tests.utils import make_target, python_step, write_source


@pytest.fixture
def sandbox(tmp_path: Path):
    source = write_source(tmp_path / "widget")
    with acquire(source, root=tmp_path / "boxes") as box:
        yield box


def test_expand_leaves_unknown_names() -> None:
    env = {"PG_CONFIG": "/opt/pg/16/bin/pg_config"}

    assert expand("PG_CONFIG=${PG_CONFIG}", env) == "PG_CONFIG=/opt/pg/16/bin/pg_config"
    assert expand("$PG_CONFIG", env) == "/opt/pg/16/bin/pg_config"
    assert expand("${MISSING}", env) == "${MISSING}"


def test_step_environment_layers_target_and_step() -> None:
    target = make_target("16.2")
    step = StepSpec(name="build", command="make", env={"PGVER": "pg$PG_MAJOR", "PATH": "/x"})

    env = step_environment(step, target, {"PATH": "/usr/bin", "HOME": "/root"})

    assert env["PG_VERSION"] == "16.2"
    assert env["PG_MAJOR"] == "16"
    assert env["PG_CONFIG"] == "/opt/pg/16.2/bin/pg_config"
    assert env["PGVER"] == "pg16"
    assert env["PATH"] == "/x"
    assert env["HOME"] == "/root"


def test_run_all_steps_succeed(sandbox) -> None:
    pipeline = Pipeline(
        family="pgxs",
        steps=(
            python_step("configure", "print('configured')"),
            python_step("build", "import sys; print(sys.argv[1])", args=("${PG_VERSION}",)),
        ),
    )

    outcome = PipelineRunner().run(pipeline, sandbox, make_target("15.6"))

    assert outcome.status is TargetStatus.SUCCESS
    assert outcome.failed_step is None
    assert [step.status for step in outcome.steps] == [StepStatus.SUCCESS, StepStatus.SUCCESS]
    assert outcome.steps[1].stdout.strip() == "15.6"
    assert outcome.steps[1].command[-1] == "15.6"


def test_first_failure_stops_pipeline(sandbox) -> None:
    pipeline = Pipeline(
        family="pgxs",
        steps=(
            python_step("build", "pass"),
            python_step("test", "import sys; print('regression', file=sys.stderr); sys.exit(3)"),
            python_step("install", "open('installed', 'w').close()"),
        ),
    )

    outcome = PipelineRunner().run(pipeline, sandbox, make_target("16.2"))

    assert outcome.status is TargetStatus.FAILED
    assert outcome.failed_step == "test"
    assert [step.status for step in outcome.steps] == [
        StepStatus.SUCCESS,
        StepStatus.FAILED,
        StepStatus.NOT_RUN,
    ]
    assert outcome.steps[1].returncode == 3
    assert "regression" in outcome.steps[1].stderr
    assert not (sandbox.path / "installed").exists()


def test_steps_run_inside_sandbox(sandbox, tmp_path: Path) -> None:
    pipeline = Pipeline(
        family="pgxs",
        steps=(python_step("build", "open('widget.so', 'w').write('so')"),),
    )

    PipelineRunner().run(pipeline, sandbox, make_target("16.2"))

    assert (sandbox.path / "widget.so").exists()
    assert not (tmp_path / "widget" / "widget.so").exists()


def test_step_cwd_is_relative_to_sandbox(sandbox) -> None:
    (sandbox.path / "sub").mkdir()
    pipeline = Pipeline(
        family="pgxs",
        steps=(python_step("build", "open('here', 'w').close()", cwd="sub"),),
    )

    PipelineRunner().run(pipeline, sandbox, make_target("16.2"))

    assert (sandbox.path / "sub" / "here").exists()


def test_step_cwd_outside_sandbox_fails(sandbox) -> None:
    pipeline = Pipeline(
        family="pgxs",
        steps=(python_step("build", "pass"), python_step("install", "pass", cwd="../..")),
    )

    outcome = PipelineRunner().run(pipeline, sandbox, make_target("16.2"))

    assert outcome.status is TargetStatus.FAILED
    assert outcome.failed_step == "install"
    assert [step.status for step in outcome.steps] == [StepStatus.SUCCESS, StepStatus.NOT_RUN]
    assert "escapes" in outcome.error


def test_step_timeout_fails_target(sandbox) -> None:
    pipeline = Pipeline(
        family="pgxs",
        steps=(
            python_step("build", "import time; time.sleep(30)"),
            python_step("install", "pass"),
        ),
    )

    outcome = PipelineRunner(step_timeout=0.5).run(pipeline, sandbox, make_target("16.2"))

    assert outcome.status is TargetStatus.FAILED
    assert outcome.failed_step == "build"
    assert outcome.steps[0].status is StepStatus.TIMED_OUT
    assert outcome.steps[1].status is StepStatus.NOT_RUN


def test_step_timeout_overrides_runner_default(sandbox) -> None:
    pipeline = Pipeline(
        family="pgxs",
        steps=(python_step("build", "import time; time.sleep(30)", timeout=0.5),),
    )

    outcome = PipelineRunner(step_timeout=None).run(pipeline, sandbox, make_target("16.2"))

    assert outcome.steps[0].status is StepStatus.TIMED_OUT


def test_missing_required_env_fails_without_spawning(sandbox) -> None:
    pipeline = Pipeline(
        family="pgxs",
        steps=(
            python_step("build", "open('ran', 'w').close()", required_env=frozenset({"WIDGET_KEY"})),
            python_step("install", "pass"),
        ),
    )

    outcome = PipelineRunner(base_env={"PATH": "/usr/bin"}).run(
        pipeline, sandbox, make_target("16.2")
    )

    assert outcome.status is TargetStatus.FAILED
    assert outcome.failed_step == "build"
    assert [step.status for step in outcome.steps] == [StepStatus.NOT_RUN, StepStatus.NOT_RUN]
    assert "WIDGET_KEY" in outcome.error
    assert not (sandbox.path / "ran").exists()


def test_required_env_satisfied_by_target(sandbox) -> None:
    pipeline = Pipeline(
        family="pgxs",
        steps=(python_step("build", "pass", required_env=frozenset({"PG_CONFIG"})),),
    )

    outcome = PipelineRunner().run(pipeline, sandbox, make_target("16.2"))

    assert outcome.ok


def test_spawn_failure_fails_target_without_step_outcome(sandbox, tmp_path: Path) -> None:
    pipeline = Pipeline(
        family="pgxs",
        steps=(StepSpec(name="build", command=str(tmp_path / "no-such-make")),),
    )

    outcome = PipelineRunner().run(pipeline, sandbox, make_target("16.2"))

    assert outcome.status is TargetStatus.FAILED
    assert outcome.failed_step == "build"
    assert outcome.steps[0].status is StepStatus.NOT_RUN
    assert outcome.steps[0].returncode is None
    assert "no-such-make" in outcome.error


def test_run_step_raises_when_command_cannot_start(sandbox, tmp_path: Path) -> None:
    step = StepSpec(name="build", command=str(tmp_path / "no-such-make"))

    with pytest.raises(StepStartError) as excinfo:
        PipelineRunner().run_step(step, sandbox, make_target("16.2"))
    assert excinfo.value.step == "build"
    assert isinstance(excinfo.value.__cause__, OSError)


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals only")
def test_signaled_step_stops_pipeline(sandbox) -> None:
    pipeline = Pipeline(
        family="pgxs",
        steps=(
            python_step("build", "import os, signal; os.kill(os.getpid(), signal.SIGTERM)"),
            python_step("install", "open('installed', 'w').close()"),
        ),
    )

    outcome = PipelineRunner().run(pipeline, sandbox, make_target("16.2"))

    assert outcome.status is TargetStatus.FAILED
    assert outcome.failed_step == "build"
    assert outcome.error is None
    assert [step.status for step in outcome.steps] == [StepStatus.SIGNALED, StepStatus.NOT_RUN]
    assert outcome.steps[0].returncode == -signal.SIGTERM
    assert not (sandbox.path / "installed").exists()


def test_cancelled_before_start_runs_nothing(sandbox) -> None:
    cancel = CancelToken()
    cancel.cancel()
    pipeline = Pipeline(family="pgxs", steps=(python_step("build", "open('ran', 'w').close()"),))

    outcome = PipelineRunner().run(pipeline, sandbox, make_target("16.2"), cancel)

    assert outcome.status is TargetStatus.CANCELLED
    assert outcome.steps == ()
    assert not (sandbox.path / "ran").exists()


def test_privileged_steps_use_sudo_only_when_requested() -> None:
    runner = PipelineRunner()
    step = StepSpec(name="install", command="make", args=("install",), privileged=True)
    target = make_target("16.2")

    assert runner.command_for(step, target, {}) == ["make", "install"]
    sudo_target = replace(target, sudo=True)
    assert runner.command_for(step, sudo_target, {}) == ["sudo", "make", "install"]
    plain = StepSpec(name="build", command="make")
    assert runner.command_for(plain, sudo_target, {}) == ["make"]
