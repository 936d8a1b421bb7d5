"""
compat-matrix — matrix runner

File: src/compat_matrix/matrix/runner.py

Purpose
- Drive every selected environment through
  ``pending -> resolving -> auditing -> executing -> completed`` and produce
  exactly one ``Outcome`` per environment, in declaration order.

Behavior
- Environments are independent: resolution, audit, attachment, and
  execution failures are contained and recorded as that environment's
  outcome; they never abort the matrix unless fail-fast is on.
- The per-environment timeout covers all phases. Exceeding it cancels the
  execution task, which kills the child process.
- Fail-fast and external cancellation stop new environments from starting
  and cancel in-flight ones; everything that did not complete is recorded as
  ``errored`` with ``error_kind=aborted`` so the report stays total.
- Resolution and audit do blocking IO and run in worker threads.
"""

from __future__ import annotations

import asyncio
import dataclasses
import functools
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from compat_matrix.attachment.controller import AttachmentController
from compat_matrix.audit.auditor import SymbolAuditor
from compat_matrix.constants import DEFAULT_MAX_PARALLEL, DEFAULT_TIMEOUT_SECONDS
from compat_matrix.domain.errors import (
    ConfigurationError,
    HarnessError,
    ResolutionError,
)
from compat_matrix.domain.models import (
    ArtifactCoordinate,
    EnvironmentPhase,
    EnvironmentSpec,
    ErrorKind,
    ExecutionResult,
    Outcome,
    OutcomeStatus,
    ResolvedArtifact,
)
from compat_matrix.execution.executor import VerificationExecutor
from compat_matrix.matrix.registry import EnvironmentRegistry
from compat_matrix.resolution.resolver import ArtifactResolver
from compat_matrix.utils.concurrency import CancellationToken, run_bounded, run_with_timeout


@dataclass(frozen=True, slots=True)
class RunnerOptions:
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_parallel: int = DEFAULT_MAX_PARALLEL
    fail_fast: bool = False

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.max_parallel <= 0:
            raise ValueError("max_parallel must be > 0")


class _Progress:
    """Tracks the phase one environment has reached; logs each transition."""

    def __init__(self, logger: Any) -> None:
        self.phase = EnvironmentPhase.PENDING
        self._logger = logger

    def enter(self, phase: EnvironmentPhase) -> None:
        self._logger.info("environment_phase", phase=phase.value, previous=self.phase.value)
        self.phase = phase


class MatrixRunner:
    """Run declared environments against injected collaborators.

    The registry is passed in explicitly and only read. Collaborators are
    shared across concurrent environments and must be safe for that.
    """

    def __init__(
        self,
        registry: EnvironmentRegistry,
        *,
        resolver: ArtifactResolver,
        executor: VerificationExecutor,
        controller: AttachmentController | None = None,
        auditor: SymbolAuditor | None = None,
        shared_artifacts: Sequence[ArtifactCoordinate] = (),
        options: RunnerOptions | None = None,
        logger: Any | None = None,
    ) -> None:
        self._registry = registry
        self._resolver = resolver
        self._executor = executor
        self._controller = controller if controller is not None else AttachmentController()
        self._auditor = auditor if auditor is not None else SymbolAuditor()
        self._shared_artifacts = tuple(shared_artifacts)
        self._options = options if options is not None else RunnerOptions()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def options(self) -> RunnerOptions:
        return self._options

    async def run(
        self,
        environment_ids: Sequence[str] | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> tuple[Outcome, ...]:
        """Run the selected environments and return outcomes in declaration order."""

        specs = self._registry.select(environment_ids)
        token = CancellationToken()
        if cancel_token is not None and cancel_token.is_cancelled:
            token.cancel(cancel_token.reason or "cancelled")
        watcher = (
            asyncio.create_task(_forward_cancellation(cancel_token, token))
            if cancel_token is not None
            else None
        )
        self._logger.info(
            "matrix_started",
            environments=[spec.id for spec in specs],
            max_parallel=self._options.max_parallel,
            timeout_seconds=self._options.timeout_seconds,
            fail_fast=self._options.fail_fast,
        )

        outcomes: dict[str, Outcome] = {}
        jobs = [functools.partial(self._run_environment, spec, token) for spec in specs]
        finished = run_bounded(jobs, limit=self._options.max_parallel, cancel_token=token)
        try:
            async for outcome in finished:
                outcomes[outcome.environment_id] = outcome
                if self._options.fail_fast and not outcome.passed:
                    token.cancel(f"fail-fast after {outcome.environment_id} {outcome.status.value}")
        finally:
            if watcher is not None:
                watcher.cancel()
                await asyncio.gather(watcher, return_exceptions=True)

        ordered = tuple(
            outcomes.get(spec.id) or self._not_started(spec, token.reason) for spec in specs
        )
        self._logger.info(
            "matrix_finished",
            passed=sum(1 for item in ordered if item.passed),
            total=len(ordered),
            cancelled=token.is_cancelled,
        )
        return ordered

    def run_sync(
        self,
        environment_ids: Sequence[str] | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> tuple[Outcome, ...]:
        return asyncio.run(self.run(environment_ids, cancel_token=cancel_token))

    async def _run_environment(self, spec: EnvironmentSpec, token: CancellationToken) -> Outcome:
        logger = self._logger.bind(environment_id=spec.id)
        progress = _Progress(logger)
        started_ns = time.monotonic_ns()
        timeout = self._options.timeout_seconds

        try:
            outcome = await run_with_timeout(self._advance(spec, progress, logger), timeout, token)
        except TimeoutError:
            diagnostics = [f"timeout after {timeout:g}s"]
            if progress.phase is EnvironmentPhase.EXECUTING:
                diagnostics.append("termination of the test process was requested")
            outcome = _errored(
                spec,
                ErrorKind.INFRASTRUCTURE,
                progress.phase,
                *diagnostics,
            )
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            outcome = _errored(
                spec,
                ErrorKind.ABORTED,
                progress.phase,
                f"aborted during {progress.phase.value}: {token.reason or 'cancelled'}",
            )

        outcome = dataclasses.replace(outcome, duration_ms=_elapsed_ms(started_ns))
        logger.info(
            "environment_completed",
            status=outcome.status.value,
            error_kind=None if outcome.error_kind is None else outcome.error_kind.value,
            phase_reached=outcome.phase_reached.value,
            duration_ms=outcome.duration_ms,
        )
        return outcome

    async def _advance(self, spec: EnvironmentSpec, progress: _Progress, logger: Any) -> Outcome:
        try:
            return await self._advance_phases(spec, progress)
        except ConfigurationError as exc:
            return _errored(spec, ErrorKind.CONFIGURATION, progress.phase, exc.diagnostic)
        except ResolutionError as exc:
            return _errored(spec, ErrorKind.RESOLUTION, progress.phase, exc.diagnostic)
        except HarnessError as exc:
            return _errored(spec, ErrorKind.INFRASTRUCTURE, progress.phase, exc.diagnostic)
        except Exception as exc:
            logger.exception("environment_crashed", phase=progress.phase.value)
            return _errored(
                spec,
                ErrorKind.INFRASTRUCTURE,
                progress.phase,
                f"unexpected {type(exc).__name__}: {exc}",
            )

    async def _advance_phases(self, spec: EnvironmentSpec, progress: _Progress) -> Outcome:
        self._controller.check_compatibility(spec)

        progress.enter(EnvironmentPhase.RESOLVING)
        resolved = await asyncio.to_thread(self._resolve_all, spec.artifacts)
        shared = await asyncio.to_thread(self._resolve_all, self._shared_artifacts)

        if spec.audit is not None and not spec.audit.is_empty:
            progress.enter(EnvironmentPhase.AUDITING)
            reports = await asyncio.to_thread(self._auditor.audit_all, resolved, spec.audit)
            violations = tuple(line for report in reports for line in report.diagnostics)
            if violations:
                return Outcome(
                    environment_id=spec.id,
                    status=OutcomeStatus.FAILED,
                    diagnostics=violations,
                    error_kind=ErrorKind.AUDIT,
                    phase_reached=EnvironmentPhase.AUDITING,
                )

        _, launch_context = self._controller.prepare(spec, resolved, shared)

        progress.enter(EnvironmentPhase.EXECUTING)
        result = await self._executor.execute(spec.id, launch_context)
        progress.enter(EnvironmentPhase.COMPLETED)
        return _from_execution(spec, result)

    def _resolve_all(
        self, coordinates: Sequence[ArtifactCoordinate]
    ) -> tuple[ResolvedArtifact, ...]:
        return tuple(self._resolver.resolve(coordinate) for coordinate in coordinates)

    def _not_started(self, spec: EnvironmentSpec, reason: str | None) -> Outcome:
        self._logger.info("environment_skipped", environment_id=spec.id, reason=reason)
        return _errored(
            spec,
            ErrorKind.ABORTED,
            EnvironmentPhase.PENDING,
            f"not started: {reason or 'cancelled'}",
        )


def _from_execution(spec: EnvironmentSpec, result: ExecutionResult) -> Outcome:
    status = OutcomeStatus(result.status)
    # Failed means the tests ran and failed; errored means the launch itself broke.
    error_kind = {
        OutcomeStatus.PASSED: None,
        OutcomeStatus.FAILED: ErrorKind.EXECUTION,
        OutcomeStatus.ERRORED: ErrorKind.INFRASTRUCTURE,
    }[status]
    return Outcome(
        environment_id=spec.id,
        status=status,
        diagnostics=result.details,
        error_kind=error_kind,
        phase_reached=EnvironmentPhase.COMPLETED,
    )


def _errored(
    spec: EnvironmentSpec,
    kind: ErrorKind,
    phase: EnvironmentPhase,
    *diagnostics: str,
) -> Outcome:
    return Outcome(
        environment_id=spec.id,
        status=OutcomeStatus.ERRORED,
        diagnostics=diagnostics,
        error_kind=kind,
        phase_reached=phase,
    )


async def _forward_cancellation(source: CancellationToken, target: CancellationToken) -> None:
    await source.wait()
    target.cancel(source.reason or "cancelled")


def _elapsed_ms(started_ns: int) -> int:
    delta_ns = time.monotonic_ns() - started_ns
    if delta_ns < 0:
        return 0
    return delta_ns // 1_000_000


__all__ = ["MatrixRunner", "RunnerOptions"]
