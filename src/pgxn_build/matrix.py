"""Run one resolved pipeline across every requested build target."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Sequence

from pgxn_build.config import BuildSettings
from pgxn_build.errors import SandboxCreationFailed
from pgxn_build.models import (
    BuildReport,
    BuildTarget,
    DistributionMetadata,
    Pipeline,
    TargetOutcome,
    TargetStatus,
)
from pgxn_build.packager import collect_artifacts
from pgxn_build.reporting import aggregate
from pgxn_build.runner import PipelineRunner, not_run
from pgxn_build.sandbox import Sandbox, acquire
from pgxn_build.selector import select
from pgxn_build.subprocess_utils import CancelToken

LOGGER = logging.getLogger(__name__)


def _check_targets(targets: Sequence[BuildTarget]) -> None:
    if not targets:
        raise ValueError("At least one build target is required.")
    seen: set[str] = set()
    for target in targets:
        if target.key in seen:
            raise ValueError(f"Duplicate build target: {target.key}")
        seen.add(target.key)


def _cancelled(target: BuildTarget) -> TargetOutcome:
    return TargetOutcome(target=target, status=TargetStatus.CANCELLED, steps=())


def _sandbox_failure(
    target: BuildTarget, pipeline: Pipeline, exc: SandboxCreationFailed
) -> TargetOutcome:
    return TargetOutcome(
        target=target,
        status=TargetStatus.FAILED,
        steps=tuple(not_run(pipeline.steps)),
        error=str(exc),
    )


class VersionMatrixDriver:
    """Build a distribution for each target in its own sandbox.

    Targets run sequentially when ``max_workers`` is 1, otherwise on a
    thread pool. ``limiter`` bounds simultaneous target builds and may be
    shared between drivers.
    """

    def __init__(
        self,
        *,
        runner: PipelineRunner | None = None,
        max_workers: int = 1,
        sandbox_root: Path | None = None,
        use_sudo: bool = False,
        limiter: threading.BoundedSemaphore | None = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1.")
        self.runner = runner or PipelineRunner()
        self.max_workers = max_workers
        self.sandbox_root = sandbox_root
        self.use_sudo = use_sudo
        self.limiter = limiter or threading.BoundedSemaphore(max_workers)

    @classmethod
    def from_settings(cls, settings: BuildSettings, **kwargs) -> VersionMatrixDriver:
        """Create a driver configured from BuildSettings."""
        runner = kwargs.pop("runner", None) or PipelineRunner(step_timeout=settings.step_timeout)
        return cls(
            runner=runner,
            max_workers=settings.max_workers,
            sandbox_root=settings.sandbox_root,
            use_sudo=settings.use_sudo,
            **kwargs,
        )

    def _collect(
        self,
        outcome: TargetOutcome,
        sandbox: Sandbox,
        pipeline: Pipeline,
        staging_dir: Path,
    ) -> TargetOutcome:
        target_dir = staging_dir / outcome.target.key
        try:
            collected, missing = collect_artifacts(sandbox, pipeline.artifacts, target_dir)
        except OSError as exc:
            message = f"Failed to collect artifacts: {exc}"
            LOGGER.error(message, extra={"target": outcome.target.key})
            return replace(
                outcome,
                missing_artifacts=tuple(pipeline.artifacts),
                warnings=outcome.warnings + (message,),
            )
        warnings = tuple(f"Declared artifact not found: {pattern}" for pattern in missing)
        return replace(
            outcome,
            artifact_root=target_dir,
            artifacts=tuple(collected),
            missing_artifacts=tuple(missing),
            warnings=outcome.warnings + warnings,
        )

    def build_target(
        self,
        source_path: Path,
        pipeline: Pipeline,
        target: BuildTarget,
        *,
        cancel: CancelToken,
        staging_dir: Path | None = None,
    ) -> TargetOutcome:
        """Acquire a sandbox, run the pipeline, collect artifacts, release."""
        if self.use_sudo and not target.sudo:
            target = replace(target, sudo=True)
        with self.limiter:
            if cancel.cancelled:
                return _cancelled(target)
            LOGGER.info("Building with %s pipeline", pipeline.family, extra={"target": target.key})
            try:
                with acquire(source_path, root=self.sandbox_root) as sandbox:
                    outcome = self.runner.run(pipeline, sandbox, target, cancel)
                    if outcome.ok and staging_dir is not None:
                        outcome = self._collect(outcome, sandbox, pipeline, staging_dir)
            except SandboxCreationFailed as exc:
                LOGGER.error("%s", exc, extra={"target": target.key})
                return _sandbox_failure(target, pipeline, exc)
        if sandbox.warnings:
            outcome = replace(outcome, warnings=outcome.warnings + tuple(sandbox.warnings))
        LOGGER.info("Finished: %s", outcome.status.value, extra={"target": target.key})
        return outcome

    def _run_sequential(
        self,
        source_path: Path,
        pipeline: Pipeline,
        targets: Sequence[BuildTarget],
        cancel: CancelToken,
        staging_dir: Path | None,
    ) -> list[TargetOutcome]:
        outcomes: list[TargetOutcome] = []
        for target in targets:
            try:
                outcome = self.build_target(
                    source_path, pipeline, target, cancel=cancel, staging_dir=staging_dir
                )
            except KeyboardInterrupt:
                LOGGER.warning("Interrupted; cancelling remaining targets.")
                cancel.cancel()
                outcome = _cancelled(target)
            outcomes.append(outcome)
        return outcomes

    def _run_parallel(
        self,
        source_path: Path,
        pipeline: Pipeline,
        targets: Sequence[BuildTarget],
        cancel: CancelToken,
        staging_dir: Path | None,
    ) -> list[TargetOutcome]:
        outcomes: dict[str, TargetOutcome] = {}
        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="pgxn-build"
        ) as executor:
            futures = {
                executor.submit(
                    self.build_target,
                    source_path,
                    pipeline,
                    target,
                    cancel=cancel,
                    staging_dir=staging_dir,
                ): target
                for target in targets
            }
            try:
                for future in as_completed(futures):
                    outcome = future.result()
                    outcomes[outcome.target.key] = outcome
            except KeyboardInterrupt:
                LOGGER.warning("Interrupted; cancelling in-flight targets.")
                cancel.cancel()
                for future, target in futures.items():
                    if target.key not in outcomes:
                        outcomes[target.key] = future.result()
        return list(outcomes.values())

    def build_all(
        self,
        source_path: Path,
        metadata: DistributionMetadata,
        targets: Iterable[BuildTarget],
        *,
        cancel: CancelToken | None = None,
        staging_dir: Path | None = None,
    ) -> BuildReport:
        """Build every target and return the aggregated report.

        Metadata defects raise before any target starts. When
        ``staging_dir`` is given, artifacts of successful targets are copied
        there before their sandboxes are released.
        """
        target_list = list(targets)
        _check_targets(target_list)
        pipeline = select(metadata)
        cancel = cancel or CancelToken()
        LOGGER.info(
            "Building %s with %s across %s target(s)",
            metadata.identity,
            pipeline.family,
            len(target_list),
        )
        if self.max_workers <= 1 or len(target_list) == 1:
            outcomes = self._run_sequential(source_path, pipeline, target_list, cancel, staging_dir)
        else:
            outcomes = self._run_parallel(source_path, pipeline, target_list, cancel, staging_dir)
        return aggregate(
            distribution=metadata.identity,
            pipeline=pipeline.family,
            outcomes=outcomes,
            artifacts=pipeline.artifacts,
        )
