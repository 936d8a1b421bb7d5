"""Stable constants shared across the harness."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
MATRIX_SCHEMA_VERSION: Final[int] = 1
REPORT_SCHEMA_VERSION: Final[int] = 1

# Default runtime paths (relative to the config file unless overridden).
DEFAULT_MATRIX_FILE: Final[PurePosixPath] = PurePosixPath("matrix.yaml")
DEFAULT_REPORT_PATH: Final[PurePosixPath] = PurePosixPath("build/compat-matrix/report.jsonl")
DEFAULT_LOG_DIR: Final[PurePosixPath] = PurePosixPath("build/compat-matrix/logs")

# Runner defaults.
DEFAULT_TIMEOUT_SECONDS: Final[float] = 900.0
DEFAULT_MAX_PARALLEL: Final[int] = 1

# Environment variable carrying the release version into the test process.
VERSION_ENV_VAR: Final[str] = "version"

# Artifact file handling.
JAR_SUFFIX: Final[str] = ".jar"
MULTI_RELEASE_PREFIX: Final[str] = "META-INF/versions/"
SNAPSHOT_SUFFIX: Final[str] = "-SNAPSHOT"

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_LOG_DIR",
    "DEFAULT_MATRIX_FILE",
    "DEFAULT_MAX_PARALLEL",
    "DEFAULT_REPORT_PATH",
    "DEFAULT_TIMEOUT_SECONDS",
    "JAR_SUFFIX",
    "MATRIX_SCHEMA_VERSION",
    "MULTI_RELEASE_PREFIX",
    "REPORT_SCHEMA_VERSION",
    "SNAPSHOT_SUFFIX",
    "VERSION_ENV_VAR",
]
