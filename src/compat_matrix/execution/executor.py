"""
compat-matrix — test-execution collaborator

File: src/compat_matrix/execution/executor.py

Purpose
- Define the async contract the matrix runner uses to run the target
  verification in a prepared ``LaunchContext``, and provide an executor that
  launches the JUnit Platform console launcher in a child JVM.

Functional requirements
- Exit code 0 is ``passed``; configured failure codes (default ``1``, the
  console launcher's "tests failed" code) are ``failed``; anything else, a
  spawn error, or death by signal is ``errored``.
- Cancellation of the awaiting task kills the child process before the
  cancellation propagates, so timeouts and fail-fast never leak JVMs.

Non-functional requirements
- Captured output is truncated; only a bounded tail is kept in details.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Callable, Mapping, Sequence
from contextlib import suppress
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import structlog

from compat_matrix.domain.models import BytecodeLevel, ExecutionResult, LaunchContext, OutcomeStatus

CommandBuilder = Callable[[LaunchContext], Sequence[str]]

_DEFAULT_TAIL_LINES = 20


@runtime_checkable
class VerificationExecutor(Protocol):
    """Runs the target verification for one environment."""

    async def execute(
        self, environment_id: str, launch_context: LaunchContext
    ) -> ExecutionResult: ...


class JvmProcessExecutor:
    """Launch ``java -jar junit-platform-console-standalone.jar`` per environment."""

    def __init__(
        self,
        *,
        launcher_jar: str | Path | None = None,
        java_homes: Mapping[BytecodeLevel, str | Path] | None = None,
        default_java: str = "java",
        failure_exit_codes: Sequence[int] = (1,),
        launcher_args: Sequence[str] = (),
        cwd: str | Path | None = None,
        inherit_env: bool = True,
        tail_lines: int = _DEFAULT_TAIL_LINES,
        command_builder: CommandBuilder | None = None,
        logger: Any | None = None,
    ) -> None:
        if launcher_jar is None and command_builder is None:
            raise ValueError("launcher_jar is required unless a command_builder is supplied")
        if 0 in failure_exit_codes:
            raise ValueError("exit code 0 cannot be a failure code")
        if tail_lines < 0:
            raise ValueError("tail_lines must be >= 0")
        self._launcher_jar = None if launcher_jar is None else Path(launcher_jar)
        self._java_homes = {
            BytecodeLevel.parse(level): Path(home) for level, home in (java_homes or {}).items()
        }
        self._default_java = default_java
        self._failure_exit_codes = frozenset(failure_exit_codes)
        self._launcher_args = tuple(launcher_args)
        self._cwd = None if cwd is None else str(cwd)
        self._inherit_env = inherit_env
        self._tail_lines = tail_lines
        self._command_builder = command_builder
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def java_for(self, level: BytecodeLevel) -> str:
        home = self._java_homes.get(level)
        if home is None:
            return self._default_java
        return str(home / "bin" / "java")

    def build_command(self, launch_context: LaunchContext) -> tuple[str, ...]:
        if self._command_builder is not None:
            return tuple(self._command_builder(launch_context))

        argv = [self.java_for(launch_context.bytecode_level), *launch_context.jvm_flags]
        if launch_context.module_path:
            argv.extend(
                [
                    "--module-path",
                    _join_paths(launch_context.module_path),
                    "--add-modules",
                    "ALL-MODULE-PATH",
                ]
            )
        argv.extend(["-jar", str(self._launcher_jar), "execute"])
        if launch_context.classpath:
            argv.extend(["--class-path", _join_paths(launch_context.classpath)])
        # With roots, only this environment's test classes are selected.
        argv.append("--scan-class-path")
        if launch_context.test_roots:
            argv.append(_join_paths(launch_context.test_roots))
        argv.extend(self._launcher_args)
        return tuple(argv)

    def build_env(self, launch_context: LaunchContext) -> dict[str, str]:
        env = dict(os.environ) if self._inherit_env else {}
        env.update(launch_context.environment)
        return env

    async def execute(self, environment_id: str, launch_context: LaunchContext) -> ExecutionResult:
        started_ns = time.monotonic_ns()
        argv = self.build_command(launch_context)
        self._logger.debug("execution_spawn", environment_id=environment_id, argv=list(argv))

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=self._cwd,
                env=self.build_env(launch_context),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            return ExecutionResult(
                status=OutcomeStatus.ERRORED,
                details=(f"failed to start {argv[0]}: {exc}",),
                duration_ms=_elapsed_ms(started_ns),
            )

        try:
            output, _ = await process.communicate()
        except asyncio.CancelledError:
            await _terminate(process)
            self._logger.warning(
                "execution_terminated", environment_id=environment_id, pid=process.pid
            )
            raise

        exit_code = process.returncode
        status = self.classify(exit_code)
        details = self._summarize(exit_code, output)
        self._logger.debug(
            "execution_exit",
            environment_id=environment_id,
            exit_code=exit_code,
            status=status.value,
        )
        return ExecutionResult(
            status=status,
            details=details,
            exit_code=exit_code,
            duration_ms=_elapsed_ms(started_ns),
        )

    def classify(self, exit_code: int | None) -> OutcomeStatus:
        if exit_code == 0:
            return OutcomeStatus.PASSED
        if exit_code is not None and exit_code in self._failure_exit_codes:
            return OutcomeStatus.FAILED
        return OutcomeStatus.ERRORED

    def _summarize(self, exit_code: int | None, output: bytes) -> tuple[str, ...]:
        if exit_code == 0:
            return ()
        if exit_code is None:
            headline = "process did not report an exit code"
        elif exit_code < 0:
            headline = f"terminated by signal {-exit_code}"
        elif exit_code in self._failure_exit_codes:
            headline = f"tests failed (exit code {exit_code})"
        else:
            headline = f"launcher exited with code {exit_code}"
        return (headline, *_tail(output, self._tail_lines))


async def _terminate(process: asyncio.subprocess.Process) -> None:
    with suppress(ProcessLookupError):
        process.kill()
    await process.communicate()


def _join_paths(paths: Sequence[Path]) -> str:
    return os.pathsep.join(str(item) for item in paths)


def _tail(output: bytes, limit: int) -> tuple[str, ...]:
    if limit == 0 or not output:
        return ()
    text = output.decode("utf-8", errors="replace").replace("\r\n", "\n").replace("\r", "\n")
    lines = [line for line in text.split("\n") if line.strip()]
    return tuple(lines[-limit:])


def _elapsed_ms(started_ns: int) -> int:
    delta_ns = time.monotonic_ns() - started_ns
    if delta_ns < 0:
        return 0
    return delta_ns // 1_000_000


__all__ = [
    "CommandBuilder",
    "JvmProcessExecutor",
    "VerificationExecutor",
]
