"""
compat-matrix — process entry point

File: src/compat_matrix/main.py

Purpose
- Map a CLI run onto the exit-code contract: 0 when every selected
  environment passed, 1 when any failed, 2 for errored runs and for
  configuration or harness errors.
- Report errors the harness raises on purpose as a single ``error:`` line;
  anything else is a crash and keeps its traceback.
"""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    PASSED = 0
    FAILED = 1
    ERRORED = 2


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Console-script and ``python -m compat_matrix`` entry point."""

    try:
        from compat_matrix.ui.cli import run_cli

        code: object = run_cli(argv)
    except SystemExit as exc:
        code = exc.code
    except KeyboardInterrupt:
        _write_stderr("interrupted")
        return int(ExitCode.ERRORED)
    except Exception as exc:  # noqa: BLE001 - every failure becomes exit code 2.
        if any(isinstance(item, _expected_errors()) for item in _causes(exc)):
            _write_stderr(f"error: {str(exc).strip() or type(exc).__name__}")
        else:
            traceback.print_exception(exc, file=sys.stderr)
        return int(ExitCode.ERRORED)
    return _exit_code(code)


def _exit_code(code: object) -> int:
    if code is None:
        return int(ExitCode.PASSED)
    if isinstance(code, int) and code in set(ExitCode):
        return int(code)
    if isinstance(code, str) and code.strip():
        _write_stderr(code.strip())
    return int(ExitCode.ERRORED)


def _expected_errors() -> tuple[type[BaseException], ...]:
    from compat_matrix.config import ConfigLoadError, ConfigValidationError
    from compat_matrix.domain.errors import HarnessError

    return (
        ConfigLoadError,
        ConfigValidationError,
        HarnessError,
        FileNotFoundError,
        NotADirectoryError,
        PermissionError,
    )


def _causes(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None or current.__suppress_context__:
            current = current.__cause__
        else:
            current = current.__context__


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "cli_entrypoint"]
