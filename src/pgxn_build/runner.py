"""Execute a pipeline's steps inside a sandbox for one target."""

from __future__ import annotations

import logging
import os
from string import Template
from time import perf_counter
from typing import Mapping, Sequence

from pgxn_build.errors import StepStartError
from pgxn_build.models import (
    BuildTarget,
    Pipeline,
    StepOutcome,
    StepSpec,
    StepStatus,
    TargetOutcome,
    TargetStatus,
)
from pgxn_build.sandbox import Sandbox
from pgxn_build.subprocess_utils import POLL_INTERVAL, CancelToken, CommandResult, run_command

DEFAULT_STEP_TIMEOUT = 3600.0
SUDO_COMMAND = "sudo"

LOGGER = logging.getLogger(__name__)


def expand(value: str, env: Mapping[str, str]) -> str:
    """Expand ``$VAR`` and ``${VAR}`` placeholders, leaving unknown names intact."""
    return Template(value).safe_substitute(env)


def step_environment(
    step: StepSpec, target: BuildTarget, base_env: Mapping[str, str] | None = None
) -> dict[str, str]:
    """Merge host, target, and step variables for one step."""
    env = dict(os.environ if base_env is None else base_env)
    env.update(target.environment())
    for key, value in step.env.items():
        env[key] = expand(str(value), env)
    return env


def not_run(steps: Sequence[StepSpec]) -> list[StepOutcome]:
    """Return ``not_run`` outcomes for steps that never started."""
    return [StepOutcome(name=step.name, status=StepStatus.NOT_RUN) for step in steps]


def _status_for(result: CommandResult) -> StepStatus:
    if result.cancelled:
        return StepStatus.CANCELLED
    if result.timed_out:
        return StepStatus.TIMED_OUT
    if result.returncode == 0:
        return StepStatus.SUCCESS
    if result.signal is not None:
        return StepStatus.SIGNALED
    return StepStatus.FAILED


class PipelineRunner:
    """Run steps in order and stop at the first unsuccessful one."""

    def __init__(
        self,
        *,
        step_timeout: float | None = DEFAULT_STEP_TIMEOUT,
        base_env: Mapping[str, str] | None = None,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        self.step_timeout = step_timeout
        self.base_env = base_env
        self.poll_interval = poll_interval

    def command_for(self, step: StepSpec, target: BuildTarget, env: Mapping[str, str]) -> list[str]:
        """Return the expanded command line for a step."""
        argv = [expand(item, env) for item in step.argv()]
        if step.privileged and target.sudo:
            argv.insert(0, SUDO_COMMAND)
        return argv

    def run_step(
        self,
        step: StepSpec,
        sandbox: Sandbox,
        target: BuildTarget,
        cancel: CancelToken | None = None,
    ) -> StepOutcome:
        """Run one step and reduce its result to a StepOutcome.

        Raises StepStartError when no process could be started: a required
        variable is unset, the working directory escapes the sandbox, or
        spawning the command fails.
        """
        env = step_environment(step, target, self.base_env)
        argv = self.command_for(step, target, env)
        missing = sorted(name for name in step.required_env if not env.get(name))
        if missing:
            raise StepStartError(
                step.name, f"missing required environment variables: {', '.join(missing)}"
            )
        try:
            cwd = sandbox.resolve(step.cwd)
        except ValueError as exc:
            raise StepStartError(step.name, str(exc)) from exc

        timeout = step.timeout if step.timeout is not None else self.step_timeout
        LOGGER.info("Running %s: %s", step.name, " ".join(argv), extra={"target": target.key})
        try:
            result = run_command(
                argv,
                cwd=cwd,
                env=env,
                timeout=timeout,
                cancel=cancel,
                poll_interval=self.poll_interval,
            )
        except OSError as exc:
            raise StepStartError(step.name, f"failed to start {argv[0]}: {exc}") from exc
        return StepOutcome(
            name=step.name,
            status=_status_for(result),
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            duration=result.duration,
            command=tuple(argv),
        )

    def run(
        self,
        pipeline: Pipeline,
        sandbox: Sandbox,
        target: BuildTarget,
        cancel: CancelToken | None = None,
    ) -> TargetOutcome:
        """Execute ``pipeline`` for ``target`` inside ``sandbox``.

        A step that cannot start fails the target with ``error`` set; it and
        every later step are recorded as ``not_run``.
        """
        start = perf_counter()
        outcomes: list[StepOutcome] = []
        failed_step: str | None = None
        error: str | None = None
        status = TargetStatus.SUCCESS

        for index, step in enumerate(pipeline.steps):
            if cancel is not None and cancel.cancelled:
                status = TargetStatus.CANCELLED
                break
            try:
                outcome = self.run_step(step, sandbox, target, cancel)
            except StepStartError as exc:
                status = TargetStatus.FAILED
                failed_step = step.name
                error = str(exc)
                LOGGER.error("%s", exc, extra={"target": target.key})
                outcomes.extend(not_run(pipeline.steps[index:]))
                break
            outcomes.append(outcome)
            if outcome.ok:
                continue
            if outcome.status is StepStatus.CANCELLED:
                status = TargetStatus.CANCELLED
                LOGGER.warning("Cancelled during %s", step.name, extra={"target": target.key})
                break
            status = TargetStatus.FAILED
            failed_step = step.name
            LOGGER.error(
                "Step %s finished with %s (exit %s)",
                step.name,
                outcome.status.value,
                outcome.returncode,
                extra={"target": target.key},
            )
            outcomes.extend(not_run(pipeline.steps[index + 1 :]))
            break

        return TargetOutcome(
            target=target,
            status=status,
            steps=tuple(outcomes),
            failed_step=failed_step,
            duration=perf_counter() - start,
            error=error,
        )
