"""
compat-matrix — command-line interface

File: src/compat_matrix/ui/cli.py

Purpose
- ``check`` runs the selected environments and writes the outcome records.
- ``list`` shows the declared environments; ``config`` the effective config.
- Every declared environment also gets its own subcommand, so
  ``compat-matrix jvmCoreTest`` verifies just that environment.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import re
import signal
import sys
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from compat_matrix import __version__
from compat_matrix.attachment import AttachmentController
from compat_matrix.config import (
    dump_effective_config,
    effective_config,
    effective_repositories,
    env_var_name,
    load_config,
    matrix_variables,
    release_version,
)
from compat_matrix.domain.models import BytecodeLevel, Outcome, OutcomeStatus
from compat_matrix.execution import JvmProcessExecutor
from compat_matrix.matrix import (
    EnvironmentRegistry,
    MatrixDeclaration,
    MatrixRunner,
    RunnerOptions,
    aggregate,
    default_matrix,
    load_matrix_file,
    utc_now,
    write_outcome_records,
)
from compat_matrix.observability import correlation_scope, setup_logging, shutdown_logging
from compat_matrix.resolution import CachingResolver, LocalRepositoryResolver
from compat_matrix.ui.render import CLIRenderer, create_renderer
from compat_matrix.utils.concurrency import CancellationToken

RESERVED_COMMANDS: Final[frozenset[str]] = frozenset({"check", "list", "config"})

_DURATION_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS: Final[dict[str, float]] = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Usage problem reported as ``error: ...`` with ``exit_code``."""

    message: str
    exit_code: int = 2

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True, slots=True)
class _Session:
    """Config and matrix loaded before the full parser is built."""

    config: dict[str, Any]
    declaration: MatrixDeclaration


def parse_duration(text: str) -> float:
    """Parse ``90``, ``90s``, ``1500ms``, ``5m`` or ``1h`` into seconds."""

    match = _DURATION_PATTERN.match(text)
    if match is None:
        raise argparse.ArgumentTypeError(f"invalid duration {text!r}; use e.g. 90s, 1500ms, 5m")
    seconds = float(match.group(1)) * _DURATION_UNITS[match.group(2) or "s"]
    if seconds <= 0:
        raise argparse.ArgumentTypeError(f"duration must be positive, got {text!r}")
    return seconds


def _positive_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got {text!r}") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value}")
    return value


def _common_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to matrix TOML config (default: ./matrix.toml if present).",
    )
    common.add_argument("--profile", default=None, help="Optional config profile overlay name.")
    common.add_argument(
        "--matrix",
        dest="matrix_path",
        default=None,
        help="Matrix declaration YAML (default: paths.matrix_file, else the built-in matrix).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )
    return common


def _add_run_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--timeout",
        type=parse_duration,
        default=None,
        help="Per-environment timeout, e.g. 90s, 1500ms, 5m (default: runner.timeout_seconds).",
    )
    parser.add_argument(
        "--fail-fast",
        action="store_true",
        default=None,
        help="Stop starting environments after the first non-passing outcome.",
    )
    parser.add_argument(
        "--parallel",
        type=_positive_int,
        default=None,
        help="Maximum environments run concurrently (default: runner.max_parallel).",
    )
    parser.add_argument(
        "--report",
        dest="report_path",
        default=None,
        help="Write outcome records as JSON lines to this path (default: paths.report_path).",
    )
    parser.add_argument("--json", action="store_true", help="Emit the report as JSON on stdout")


def build_parser(environment_ids: Sequence[str] = ()) -> argparse.ArgumentParser:
    """Build the argparse router; every declared environment gets its own subcommand."""

    parser = argparse.ArgumentParser(
        prog="compat-matrix",
        description=(
            "compat-matrix — release-verification compatibility matrix.\n\n"
            "Common workflows:\n"
            "  compat-matrix check                       Run every declared environment\n"
            "  compat-matrix check --environment jpmsTest  Run a subset\n"
            "  compat-matrix jvmCoreTest                 Run one environment\n"
            "  compat-matrix list                        Show declared environments\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    common = _common_parser()
    subparsers = parser.add_subparsers(dest="command", required=True)

    # check ---------------------------------------------------------------
    check_parser = subparsers.add_parser(
        "check",
        parents=[common],
        help="Run the compatibility matrix and gate the release",
        description=(
            "Run every declared environment (or a subset) and report the release gate.\n\n"
            "Exit codes: 0 all passed, 1 a test or audit failed, 2 harness error.\n\n"
            "Examples:\n"
            "  compat-matrix check\n"
            "  compat-matrix check --environment jvmCoreTest --environment mavenTest\n"
            "  compat-matrix check --timeout=5m --parallel 2 --fail-fast\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    check_parser.add_argument(
        "--environment",
        "-e",
        dest="environments",
        action="append",
        default=None,
        metavar="ID",
        help="Restrict the run to this environment id (repeatable).",
    )
    _add_run_flags(check_parser)
    check_parser.set_defaults(handler=_cmd_check)

    # list ----------------------------------------------------------------
    list_parser = subparsers.add_parser(
        "list",
        parents=[common],
        help="Show declared environments",
    )
    list_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    list_parser.set_defaults(handler=_cmd_list)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show effective configuration (secrets redacted)",
    )
    config_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    config_parser.set_defaults(handler=_cmd_config)

    # <environment id> ----------------------------------------------------
    for environment_id in environment_ids:
        if environment_id in RESERVED_COMMANDS:
            continue
        env_parser = subparsers.add_parser(
            environment_id,
            parents=[common],
            help=f"Run only {environment_id}",
        )
        _add_run_flags(env_parser)
        env_parser.set_defaults(handler=_cmd_check, environments=[environment_id])

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code.

    Config and the matrix are loaded first from the common flags so the
    environment subcommands can be registered before the full parse.
    """

    args = list(argv) if argv is not None else sys.argv[1:]
    if not args or args[0] in {"-h", "--help", "--version"}:
        build_parser().parse_args(args)

    pre_namespace, _ = _common_parser().parse_known_args(args)
    session = _load_session(pre_namespace)
    parser = build_parser([spec.id for spec in session.declaration.environments])
    namespace = parser.parse_args(args)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace, session)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


def _cmd_check(args: argparse.Namespace, session: _Session) -> int:
    config = _load_effective_config(args, _run_overrides(args))
    declaration = session.declaration
    registry = declaration.build_registry()
    selected = list(args.environments) if args.environments else None
    # Unknown ids fail before anything is resolved or launched.
    registry.select(selected)

    renderer = _get_renderer(args)
    version = release_version(config)
    drift_notes: list[str] = []
    if declaration.release_group is not None:
        drift_notes = [
            drift.describe()
            for drift in registry.version_drift(version, group=declaration.release_group)
        ]
    if not _flag(args, "json"):
        for note in drift_notes:
            renderer.warning(note)

    runner = _build_runner(config, session, registry)
    run_id = _new_run_id()
    handle = setup_logging(config["observability"], run_id=run_id)
    try:
        with correlation_scope(run_id=run_id, release_version=version):
            started_at = utc_now()
            outcomes = asyncio.run(_run_matrix(runner, selected))
            finished_at = utc_now()
    finally:
        shutdown_logging(handle)

    report = aggregate(
        outcomes,
        release_version=version,
        started_at=started_at,
        finished_at=finished_at,
    )
    report_path = write_outcome_records(
        report, args.report_path or config["paths"]["report_path"]
    )

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "check",
                "report_path": str(report_path),
                "version_drift": drift_notes,
                **report.to_dict(),
            }
        )
    else:
        renderer.report(report)
        renderer.kv("Report", report_path)
        if renderer.verbose:
            renderer.kv("Log", handle.log_path)
    return exit_code_for(report.outcomes)


def _cmd_list(args: argparse.Namespace, session: _Session) -> int:
    specs = session.declaration.environments
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "list",
                "source": session.declaration.source,
                "environments": [spec.to_dict() for spec in specs],
            }
        )
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Matrix", session.declaration.source)
    renderer.environments(specs)
    return 0


def _cmd_config(args: argparse.Namespace, session: _Session) -> int:
    profile = getattr(args, "profile", None)
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "config",
                "active_profile": profile,
                "config": effective_config(session.config),
            }
        )
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Active profile", profile or "(default)")
    renderer.text(dump_effective_config(session.config))
    return 0


def exit_code_for(outcomes: Sequence[Outcome]) -> int:
    """0 when everything passed, 2 when anything errored, otherwise 1."""

    statuses = {outcome.status for outcome in outcomes}
    if OutcomeStatus.ERRORED in statuses:
        return 2
    if OutcomeStatus.FAILED in statuses:
        return 1
    return 0


def _load_session(args: argparse.Namespace) -> _Session:
    config = _load_effective_config(args, {})
    return _Session(config=config, declaration=_load_declaration(args, config))


def _load_effective_config(
    args: argparse.Namespace, overrides: Mapping[str, object]
) -> dict[str, Any]:
    return load_config(
        getattr(args, "config_path", None),
        profile=getattr(args, "profile", None),
        cli_overrides=overrides,
    )


def _load_declaration(args: argparse.Namespace, config: Mapping[str, Any]) -> MatrixDeclaration:
    variables = matrix_variables(config)
    explicit = getattr(args, "matrix_path", None)
    if explicit is not None:
        return load_matrix_file(explicit, variables)
    configured = Path(config["paths"]["matrix_file"])
    if configured.is_file():
        return load_matrix_file(configured, variables)
    # The built-in matrix sits where matrix.yaml would.
    return default_matrix(variables, base_dir=configured.parent)


def _run_overrides(args: argparse.Namespace) -> dict[str, object]:
    return {
        "runner.timeout_seconds": getattr(args, "timeout", None),
        "runner.max_parallel": getattr(args, "parallel", None),
        "runner.fail_fast": getattr(args, "fail_fast", None),
    }


def _build_runner(
    config: Mapping[str, Any], session: _Session, registry: EnvironmentRegistry
) -> MatrixRunner:
    execution = config["execution"]
    launcher_jar = execution.get("launcher_jar")
    if not launcher_jar:
        raise CLIError(
            "execution.launcher_jar is not configured; point it at the JUnit Platform "
            f"console launcher (or set {env_var_name('execution', 'launcher_jar')})"
        )

    runner_config = config["runner"]
    jvm = config["jvm"]
    executor = JvmProcessExecutor(
        launcher_jar=launcher_jar,
        java_homes={BytecodeLevel.parse(level): home for level, home in jvm["java_homes"].items()},
        default_java=jvm["default_java"],
        failure_exit_codes=execution["failure_exit_codes"],
        launcher_args=execution["launcher_args"],
    )
    controller = AttachmentController(
        shared_classpath=execution["test_classpath"],
        release_version=release_version(config),
        inject_version=bool(runner_config["inject_version"]),
    )
    return MatrixRunner(
        registry,
        resolver=CachingResolver(LocalRepositoryResolver(effective_repositories(config))),
        executor=executor,
        controller=controller,
        shared_artifacts=session.declaration.shared_artifacts,
        options=RunnerOptions(
            timeout_seconds=float(runner_config["timeout_seconds"]),
            max_parallel=int(runner_config["max_parallel"]),
            fail_fast=bool(runner_config["fail_fast"]),
        ),
    )


async def _run_matrix(runner: MatrixRunner, selected: Sequence[str] | None) -> tuple[Outcome, ...]:
    """Run the matrix; Ctrl-C aborts in-flight environments but still yields a full report."""

    token = CancellationToken()
    loop = asyncio.get_running_loop()
    installed = False
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted")
        installed = True
    try:
        return await runner.run(selected, cancel_token=token)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def _new_run_id() -> str:
    return f"{utc_now().strftime('%Y%m%dT%H%M%SZ')}-{uuid.uuid4().hex[:8]}"


def _emit_json(payload: Mapping[str, object]) -> None:
    """One compact JSON document per command, keys sorted."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = [
    "CLIError",
    "build_parser",
    "exit_code_for",
    "parse_duration",
    "run_cli",
]
