"""
compat-matrix — terminal output

File: src/compat_matrix/ui/render.py

Purpose
- Print the environment listing and the run report through ``rich``.
- Colour is off with ``--no-color`` or a non-empty ``NO_COLOR``; diagnostics
  are printed literally, never as console markup.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Final

from rich.console import Console
from rich.table import Table
from rich.text import Text

from compat_matrix.domain.models import OutcomeStatus

if TYPE_CHECKING:
    from collections.abc import Sequence

    from compat_matrix.domain.models import EnvironmentSpec, Report

_STATUS_STYLES: Final[dict[OutcomeStatus, str]] = {
    OutcomeStatus.PASSED: "green",
    OutcomeStatus.FAILED: "red",
    OutcomeStatus.ERRORED: "bold magenta",
}


def _color_allowed(no_color_flag: bool) -> bool:
    if no_color_flag:
        return False
    return not os.environ.get("NO_COLOR", "")


class CLIRenderer:
    """Thin CLI output renderer backed by a ``rich`` console."""

    def __init__(
        self,
        *,
        no_color: bool = False,
        verbose: bool = False,
        console: Console | None = None,
    ) -> None:
        self.verbose = verbose
        self._color = _color_allowed(no_color)
        self._console = (
            console
            if console is not None
            else Console(
                no_color=not self._color,
                highlight=False,
                markup=False,
                emoji=False,
                soft_wrap=True,
            )
        )

    def text(self, line: str) -> None:
        self._console.print(line)

    def kv(self, key: str, value: object) -> None:
        self._console.print(f"{key}: {value}")

    def section(self, title: str) -> None:
        self._console.print()
        self._console.print(Text(title, style="bold"))

    def warning(self, text: str) -> None:
        self._console.print(Text(f"Warning: {text}", style="yellow"))

    def environments(self, specs: Sequence[EnvironmentSpec]) -> None:
        """Print the declared environments in declaration order."""

        table = Table(title="Declared environments", title_justify="left")
        table.add_column("id", no_wrap=True)
        table.add_column("attachment")
        table.add_column("layout")
        table.add_column("bytecode")
        table.add_column("artifacts")
        for spec in specs:
            table.add_row(
                spec.id,
                spec.attachment_mode.value,
                spec.layout.value,
                spec.bytecode_level.value,
                ", ".join(coordinate.name for coordinate in spec.artifacts),
            )
        self._console.print(table)
        if self.verbose:
            for spec in specs:
                if spec.description:
                    self.kv(spec.id, spec.description)

    def report(self, report: Report) -> None:
        """Print one row per outcome, then diagnostics and the release gate."""

        table = Table(title="Compatibility matrix", title_justify="left")
        table.add_column("environment", no_wrap=True)
        table.add_column("status", no_wrap=True)
        table.add_column("error kind")
        table.add_column("phase")
        table.add_column("duration", justify="right")
        for outcome in report.outcomes:
            table.add_row(
                outcome.environment_id,
                Text(outcome.status.value, style=_STATUS_STYLES[outcome.status]),
                "" if outcome.error_kind is None else outcome.error_kind.value,
                outcome.phase_reached.value,
                f"{outcome.duration_ms / 1000:.1f}s",
            )
        self._console.print(table)

        if report.diagnostics:
            self.section("Diagnostics")
            for line in report.diagnostics:
                self._console.print(f"  {line}")

        counts = report.counts()
        summary = ", ".join(f"{counts[status.value]} {status.value}" for status in OutcomeStatus)
        self._console.print()
        self._console.print(
            Text(
                f"{report.overall_status.value.upper()}: {summary}",
                style=_STATUS_STYLES[report.overall_status],
            )
        )


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    return CLIRenderer(no_color=no_color, verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer"]
