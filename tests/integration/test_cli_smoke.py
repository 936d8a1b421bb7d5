"""
compat-matrix — CLI subprocess smoke contracts

File: tests/integration/test_cli_smoke.py

Purpose
- Enforce CLI behavior for `python -m compat_matrix` list/config/check as a real process.
- Verify exit codes, JSON output, and the persisted report side effect.
"""

from __future__ import annotations

import json
import os
import stat
import subprocess
import sys
from pathlib import Path

import pytest

pytestmark = pytest.mark.integration

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"


def _run_cli(cwd: Path, *args: str) -> subprocess.CompletedProcess[str]:
    env = {key: value for key, value in os.environ.items() if not key.startswith("COMPAT_MATRIX_")}
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath
        if not existing_pythonpath
        else f"{src_pythonpath}{os.pathsep}{existing_pythonpath}"
    )
    env["NO_COLOR"] = "1"
    return subprocess.run(
        [sys.executable, "-m", "compat_matrix", *args],
        cwd=cwd,
        text=True,
        capture_output=True,
        check=False,
        env=env,
        timeout=120,
    )


def _write(path: Path, contents: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(contents, encoding="utf-8")


def _seed_project(root: Path, *, java_exit: int) -> None:
    for name in ("core", "debug"):
        _write(root / "repo" / "org" / "example" / name / "1.9.0" / f"{name}-1.9.0.jar", "PK")
    java = root / "bin" / "java"
    _write(java, f"#!/bin/sh\necho \"launched $#\"\nexit {java_exit}\n")
    java.chmod(java.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    _write(root / "console.jar", "PK")
    _write(
        root / "matrix.yaml",
        """
schema_version: 1
release_group: org.example
environments:
  - id: coreTest
    artifacts: ["org.example:core:${coroutines_version}"]
  - id: debugAgentTest
    artifacts:
      - org.example:core:${coroutines_version}
      - org.example:debug:${coroutines_version}
    attachment_mode: static_agent
    agent_artifact: debug
    bytecode_level: "1.8"
""".lstrip(),
    )
    _write(
        root / "matrix.toml",
        f"""
[resolution]
repositories = ["repo"]

[execution]
launcher_jar = "console.jar"

[jvm]
default_java = "{java.as_posix()}"

[paths]
matrix_file = "matrix.yaml"
report_path = "build/report.jsonl"
""".lstrip(),
    )


def test_version_and_help(tmp_path: Path) -> None:
    version = _run_cli(tmp_path, "--version")
    help_text = _run_cli(tmp_path, "--help")

    assert version.returncode == 0
    assert version.stdout.startswith("compat-matrix ")
    assert help_text.returncode == 0
    assert "check" in help_text.stdout


def test_list_json_uses_builtin_matrix_without_config(tmp_path: Path) -> None:
    completed = _run_cli(tmp_path, "list", "--json")

    assert completed.returncode == 0, completed.stderr
    payload = json.loads(completed.stdout)
    assert payload["source"] == "<builtin>"
    assert "jpmsTest" in [item["id"] for item in payload["environments"]]


def test_config_json_reflects_file(tmp_path: Path) -> None:
    _write(tmp_path / "matrix.toml", "[runner]\nmax_parallel = 3\n")

    completed = _run_cli(tmp_path, "config", "--json")

    assert completed.returncode == 0, completed.stderr
    assert json.loads(completed.stdout)["config"]["runner"]["max_parallel"] == 3


def test_check_without_launcher_exits_two(tmp_path: Path) -> None:
    completed = _run_cli(tmp_path, "check")

    assert completed.returncode == 2
    assert "execution.launcher_jar is not configured" in completed.stderr


def test_invalid_config_exits_two_without_traceback(tmp_path: Path) -> None:
    _write(tmp_path / "matrix.toml", "[versions]\nbuild_snapshot_train = true\n")

    completed = _run_cli(tmp_path, "list")

    assert completed.returncode == 2
    assert "kotlin_snapshot_version" in completed.stderr
    assert "Traceback" not in completed.stderr


@pytest.mark.skipif(sys.platform == "win32", reason="fake java is a POSIX shell script")
def test_check_passes_and_writes_report(tmp_path: Path) -> None:
    _seed_project(tmp_path, java_exit=0)

    completed = _run_cli(tmp_path, "check", "--parallel", "2")

    assert completed.returncode == 0, completed.stderr
    assert "PASSED: 2 passed, 0 failed, 0 errored" in completed.stdout
    lines = (tmp_path / "build" / "report.jsonl").read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["record"] for line in lines] == ["outcome", "outcome", "summary"]


@pytest.mark.skipif(sys.platform == "win32", reason="fake java is a POSIX shell script")
def test_check_failure_and_environment_subcommand(tmp_path: Path) -> None:
    _seed_project(tmp_path, java_exit=1)

    completed = _run_cli(tmp_path, "debugAgentTest", "--json")

    assert completed.returncode == 1, completed.stderr
    payload = json.loads(completed.stdout)
    (outcome,) = payload["outcomes"]
    assert outcome["environment_id"] == "debugAgentTest"
    assert outcome["status"] == "failed"
    assert outcome["error_kind"] == "execution"
    assert outcome["diagnostics"][0] == "tests failed (exit code 1)"
