"""
compat-matrix — unit tests for the CLI router

File: tests/unit/ui/test_cli.py

Purpose
- Validate argument parsing, per-environment subcommands, exit-code policy,
  JSON output contracts, and report rendering.
- Run ``check`` in-process against a throwaway repository and a fake ``java``.
"""

from __future__ import annotations

import argparse
import io
import json
import os
import stat
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog
from rich.console import Console

from compat_matrix.domain.models import ErrorKind, Outcome, OutcomeStatus
from compat_matrix.main import cli_entrypoint
from compat_matrix.matrix import aggregate
from compat_matrix.ui.cli import build_parser, exit_code_for, parse_duration, run_cli
from compat_matrix.ui.render import CLIRenderer

FAKE_JAVA = """#!/bin/sh
for arg in "$@"; do
  case "$arg" in
    -javaagent:*) echo "DebugAgentTest > installs agent FAILED"; exit 1 ;;
  esac
done
echo "2 tests successful"
exit 0
"""

MATRIX_YAML = """
schema_version: 1
release_group: org.example
environments:
  - id: coreTest
    artifacts:
      - org.example:core:${coroutines_version}
  - id: agentTest
    artifacts:
      - org.example:core:${coroutines_version}
      - org.example:agent:${coroutines_version}
    attachment_mode: static_agent
    agent_artifact: agent
""".lstrip()


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("NO_COLOR", "1")
    for name in [key for key in os.environ if key.startswith("COMPAT_MATRIX_")]:
        monkeypatch.delenv(name)


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()


def _publish(repo: Path, name: str, version: str = "1.9.0") -> None:
    target = repo / "org" / "example" / name / version
    target.mkdir(parents=True, exist_ok=True)
    (target / f"{name}-{version}.jar").write_bytes(b"PK")


def _project(root: Path) -> Path:
    repo = root / "repo"
    _publish(repo, "core")
    _publish(repo, "agent")
    java = root / "fake-java"
    java.write_text(FAKE_JAVA, encoding="utf-8")
    java.chmod(java.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    (root / "console.jar").write_bytes(b"PK")
    (root / "matrix.yaml").write_text(MATRIX_YAML, encoding="utf-8")
    (root / "matrix.toml").write_text(
        f"""
[resolution]
repositories = ["repo"]

[execution]
launcher_jar = "console.jar"

[jvm]
default_java = "{java.as_posix()}"

[paths]
matrix_file = "matrix.yaml"
report_path = "out/report.jsonl"

[observability]
log_dir = "out/logs"
""".lstrip(),
        encoding="utf-8",
    )
    return root


@pytest.mark.parametrize(
    ("text", "seconds"),
    [("90", 90.0), ("90s", 90.0), ("1500ms", 1.5), ("5m", 300.0), ("1h", 3600.0), (" 2.5 s", 2.5)],
)
def test_parse_duration_accepts_units(text: str, seconds: float) -> None:
    assert parse_duration(text) == pytest.approx(seconds)


@pytest.mark.parametrize("text", ["", "0", "0s", "-5s", "ten", "5d"])
def test_parse_duration_rejects_invalid_values(text: str) -> None:
    with pytest.raises(argparse.ArgumentTypeError):
        parse_duration(text)


def test_exit_code_policy() -> None:
    passed = Outcome(environment_id="a", status=OutcomeStatus.PASSED)
    failed = Outcome(environment_id="b", status=OutcomeStatus.FAILED, error_kind=ErrorKind.AUDIT)
    errored = Outcome(
        environment_id="c", status=OutcomeStatus.ERRORED, error_kind=ErrorKind.RESOLUTION
    )

    assert exit_code_for([]) == 0
    assert exit_code_for([passed]) == 0
    assert exit_code_for([passed, failed]) == 1
    assert exit_code_for([failed, errored]) == 2


def test_environment_ids_become_subcommands() -> None:
    parser = build_parser(["jvmCoreTest", "check"])

    namespace = parser.parse_args(["jvmCoreTest", "--timeout", "5m", "--fail-fast"])
    check = parser.parse_args(["check", "-e", "jpmsTest", "-e", "mavenTest", "--parallel", "2"])

    assert namespace.environments == ["jvmCoreTest"]
    assert namespace.timeout == 300.0
    assert namespace.fail_fast is True
    assert check.environments == ["jpmsTest", "mavenTest"]
    assert check.parallel == 2
    assert check.fail_fast is None
    assert namespace.handler is check.handler


def test_list_json_reports_builtin_matrix(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["list", "--json"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["command"] == "list"
    assert payload["source"] == "<builtin>"
    assert [item["id"] for item in payload["environments"]][:3] == [
        "jvmCoreTest",
        "debugDynamicAgentTest",
        "mavenTest",
    ]


def test_list_renders_table(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["list"]) == 0

    out = capsys.readouterr().out
    assert "Matrix: <builtin>" in out
    assert "jpmsTest" in out


def test_config_json_shows_profile_and_redacts(capsys: pytest.CaptureFixture[str]) -> None:
    Path("matrix.toml").write_text('[properties]\n"sign.password" = "hunter2"\n', encoding="utf-8")

    assert run_cli(["config", "--profile", "local", "--json"]) == 0

    out = capsys.readouterr().out
    payload = json.loads(out)
    assert payload["active_profile"] == "local"
    assert payload["config"]["runner"]["fail_fast"] is True
    assert "hunter2" not in out


def test_check_without_launcher_is_a_harness_error(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["check"]) == 2

    assert "execution.launcher_jar is not configured" in capsys.readouterr().err


def test_unknown_environment_is_reported_by_entrypoint(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["check", "--environment", "nope"]) == 2

    err = capsys.readouterr().err
    assert err.startswith("error: unknown environment ids ['nope']")


def test_invalid_config_is_reported_by_entrypoint(capsys: pytest.CaptureFixture[str]) -> None:
    Path("matrix.toml").write_text("[runner]\nmax_parallel = 0\n", encoding="utf-8")

    assert cli_entrypoint(["list"]) == 2

    err = capsys.readouterr().err
    assert "runner.max_parallel: must be >= 1" in err
    assert "Traceback" not in err


def test_version_flag_exits_cleanly(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["--version"]) == 0
    assert capsys.readouterr().out.startswith("compat-matrix ")


@pytest.mark.skipif(sys.platform == "win32", reason="fake java is a POSIX shell script")
def test_check_runs_matrix_and_writes_report(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    root = _project(tmp_path)

    code = run_cli(["check", "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert code == 1
    assert payload["overall_status"] == "failed"
    assert payload["version_drift"] == []
    statuses = {item["environment_id"]: item["status"] for item in payload["outcomes"]}
    assert statuses == {"coreTest": "passed", "agentTest": "failed"}
    records = (root / "out" / "report.jsonl").read_text(encoding="utf-8").splitlines()
    assert json.loads(records[-1])["record"] == "summary"
    assert list((root / "out" / "logs").glob("*/matrix.jsonl"))


@pytest.mark.skipif(sys.platform == "win32", reason="fake java is a POSIX shell script")
def test_environment_subcommand_runs_single_environment(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _project(tmp_path)

    code = run_cli(["coreTest", "--json", "--report", "single.jsonl"])

    payload = json.loads(capsys.readouterr().out)
    assert code == 0
    assert [item["environment_id"] for item in payload["outcomes"]] == ["coreTest"]
    assert Path("single.jsonl").is_file()


def test_renderer_prints_report_and_gate() -> None:
    buffer = io.StringIO()
    renderer = CLIRenderer(console=Console(file=buffer, width=120, no_color=True, markup=False))
    report = aggregate(
        [
            Outcome(environment_id="jvmCoreTest", status=OutcomeStatus.PASSED, duration_ms=1500),
            Outcome(
                environment_id="mavenTest",
                status=OutcomeStatus.FAILED,
                diagnostics=("forbidden symbol: kotlinx/atomicfu/[AtomicFU].class",),
                error_kind=ErrorKind.AUDIT,
            ),
        ]
    )

    renderer.report(report)

    out = buffer.getvalue()
    assert "Compatibility matrix" in out
    assert "1.5s" in out
    assert "mavenTest: forbidden symbol: kotlinx/atomicfu/[AtomicFU].class" in out
    assert "FAILED: 1 passed, 1 failed, 0 errored" in out
