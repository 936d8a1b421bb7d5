"""
compat-matrix — ``matrix.toml`` schema

File: src/compat_matrix/config/schema.py

Purpose
- Built-in defaults for every table of ``matrix.toml``.
- Table-driven validation: every problem is reported with its dotted path, and
  a valid payload comes back normalized (canonical bytecode keys for
  ``jvm.java_homes``, sorted unique ``execution.failure_exit_codes``).
- ``[profiles.<name>]`` overlays and the deep merge used by every config layer.

The field table ``CONFIG_FIELDS`` is also what the loader walks to bind
``COMPAT_MATRIX_*`` variables and to resolve relative paths.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final

from compat_matrix.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_LOG_DIR,
    DEFAULT_MATRIX_FILE,
    DEFAULT_MAX_PARALLEL,
    DEFAULT_REPORT_PATH,
    DEFAULT_TIMEOUT_SECONDS,
)
from compat_matrix.domain.models import BytecodeLevel
from compat_matrix.observability.logging import redact_mapping

LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

# Kinds whose values are filesystem locations, resolved against the config file.
PATH_KINDS: Final[frozenset[str]] = frozenset({"path", "paths", "java_homes"})
# Kinds that can be set from a single environment variable, with their coercion.
SCALAR_KINDS: Final[dict[str, type]] = {
    "text": str,
    "path": str,
    "level": str,
    "flag": bool,
    "count": int,
    "seconds": float,
    "schema": int,
}


@dataclass(frozen=True, slots=True)
class Field:
    kind: str
    required: bool = True


CONFIG_FIELDS: Final[dict[str, dict[str, Field]]] = {
    "meta": {"schema_version": Field("schema")},
    "versions": {
        "coroutines_version": Field("text"),
        "kotlin_version": Field("text"),
        "asm_version": Field("text"),
        "build_snapshot_train": Field("flag"),
        "kotlin_snapshot_version": Field("text", required=False),
    },
    "runner": {
        "timeout_seconds": Field("seconds"),
        "max_parallel": Field("count"),
        "fail_fast": Field("flag"),
        "inject_version": Field("flag"),
    },
    "resolution": {
        "repositories": Field("paths"),
        "snapshot_repositories": Field("paths"),
    },
    "execution": {
        "launcher_jar": Field("path", required=False),
        "launcher_args": Field("args"),
        "test_classpath": Field("paths"),
        "failure_exit_codes": Field("exit_codes"),
    },
    "jvm": {
        # A command name as often as a path, so it is not resolved.
        "default_java": Field("text"),
        "java_homes": Field("java_homes"),
    },
    "paths": {
        "matrix_file": Field("path"),
        "report_path": Field("path"),
    },
    "observability": {
        "log_level": Field("level"),
        "log_dir": Field("path"),
        "log_to_stdout": Field("flag"),
        "redact_secrets": Field("flag"),
    },
}
# ``properties`` is free-form: any name, string values only.
_SECTIONS: Final[tuple[str, ...]] = ("properties", *CONFIG_FIELDS)
_OVERLAY_SECTIONS: Final[frozenset[str]] = frozenset(_SECTIONS) - {"meta"}

_DEFAULTS: Final[dict[str, Any]] = {
    "meta": {"schema_version": CONFIG_SCHEMA_VERSION},
    "versions": {
        "coroutines_version": "1.9.0",
        "kotlin_version": "2.0.0",
        "asm_version": "9.3",
        "build_snapshot_train": False,
    },
    "properties": {},
    "runner": {
        "timeout_seconds": DEFAULT_TIMEOUT_SECONDS,
        "max_parallel": DEFAULT_MAX_PARALLEL,
        "fail_fast": False,
        "inject_version": False,
    },
    "resolution": {"repositories": ["~/.m2/repository"], "snapshot_repositories": []},
    "execution": {"launcher_args": [], "test_classpath": [], "failure_exit_codes": [1]},
    "jvm": {"default_java": "java", "java_homes": {}},
    "paths": {
        "matrix_file": str(DEFAULT_MATRIX_FILE),
        "report_path": str(DEFAULT_REPORT_PATH),
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": str(DEFAULT_LOG_DIR),
        "log_to_stdout": False,
        "redact_secrets": True,
    },
    "profiles": {
        "ci": {"runner": {"max_parallel": 2}},
        "local": {"runner": {"fail_fast": True}, "observability": {"log_level": "DEBUG"}},
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


class ConfigValidationError(ValueError):
    """Raised with every issue found in a config payload."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + "\n".join(lines or ["- <root>: unknown"]))


class _IssueCollector:
    __slots__ = ("items",)

    def __init__(self) -> None:
        self.items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self.items.append(ConfigValidationIssue(path, message))


def default_config() -> dict[str, Any]:
    """A fresh copy of the built-in defaults, including the ``ci`` and ``local`` profiles."""

    return copy.deepcopy(_DEFAULTS)


def merge_config(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; tables merge, everything else replaces."""

    merged = copy.deepcopy(dict(base))
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def apply_profile_overlay(config: Mapping[str, Any], profile: str | None) -> dict[str, Any]:
    """Merge ``[profiles.<profile>]`` onto ``config`` and re-validate."""

    selected = (profile or "").strip()
    if not selected:
        return copy.deepcopy(dict(config))
    overlay = dict(config.get("profiles") or {}).get(selected)
    if not isinstance(overlay, Mapping):
        raise ConfigValidationError(
            [ConfigValidationIssue("profiles", f"profile {selected!r} is not defined")]
        )
    return assert_valid_config(merge_config(config, overlay), active_profile=selected)


def validate_config(
    payload: object, *, active_profile: str | None = None
) -> tuple[ConfigValidationIssue, ...]:
    """Every issue in ``payload``, in table order; empty when it is valid."""

    return _normalize(payload, active_profile)[1]


def assert_valid_config(payload: object, *, active_profile: str | None = None) -> dict[str, Any]:
    """Return the normalized config or raise ``ConfigValidationError``."""

    normalized, issues = _normalize(payload, active_profile)
    if issues:
        raise ConfigValidationError(issues)
    return normalized


def redact_config(config: object) -> dict[str, Any]:
    """Config with credential-like keys and repository URL userinfo masked."""

    if not isinstance(config, Mapping):
        return {}
    return redact_mapping(config)


def _normalize(
    payload: object, active_profile: str | None
) -> tuple[dict[str, Any], tuple[ConfigValidationIssue, ...]]:
    issues = _IssueCollector()
    if not isinstance(payload, Mapping):
        issues.add("<root>", f"expected table, got {type(payload).__name__}")
        return {}, tuple(issues.items)

    _check_keys(payload, set(_SECTIONS) | {"profiles"}, set(_SECTIONS), "", issues)
    out: dict[str, Any] = {}
    for section in _SECTIONS:
        if isinstance(payload.get(section), Mapping):
            out[section] = _section(section, payload[section], section, issues, partial=False)
        elif section in payload:
            issues.add(section, f"expected table, got {type(payload[section]).__name__}")

    profiles = payload.get("profiles")
    if profiles is not None:
        out["profiles"] = _profiles(profiles, issues)
    selected = (active_profile or "").strip()
    if selected and selected not in out.get("profiles", {}):
        issues.add("profiles", f"profile {selected!r} is not defined")

    versions = out.get("versions", {})
    if versions.get("build_snapshot_train") and not versions.get("kotlin_snapshot_version"):
        issues.add(
            "versions.kotlin_snapshot_version",
            "must be defined when building with the snapshot compiler (build_snapshot_train)",
        )
    return out, tuple(issues.items)


def _section(
    name: str, raw: Mapping[str, Any], path: str, issues: _IssueCollector, *, partial: bool
) -> dict[str, Any]:
    if name == "properties":
        out: dict[str, Any] = {}
        for key, value in raw.items():
            if isinstance(value, str):
                out[str(key)] = value
            else:
                issues.add(f"{path}.{key}", f"expected string, got {type(value).__name__}")
        return out

    fields = CONFIG_FIELDS[name]
    required = set() if partial else {key for key, spec in fields.items() if spec.required}
    _check_keys(raw, set(fields), required, path, issues)
    out = {}
    for key, spec in fields.items():
        if key in raw:
            value = _CHECKS[spec.kind](raw[key], f"{path}.{key}", issues)
            if value is not None:
                out[key] = value
    if name == "resolution" and not partial and out.get("repositories") == []:
        issues.add(f"{path}.repositories", "at least one repository is required")
    return out


def _profiles(raw: object, issues: _IssueCollector) -> dict[str, Any]:
    if not isinstance(raw, Mapping):
        issues.add("profiles", f"expected table, got {type(raw).__name__}")
        return {}
    out: dict[str, Any] = {}
    for name in sorted(raw):
        path = f"profiles.{name}"
        overlay = raw[name]
        if not isinstance(overlay, Mapping):
            issues.add(path, f"expected table, got {type(overlay).__name__}")
            continue
        _check_keys(overlay, set(_OVERLAY_SECTIONS), set(), path, issues)
        out[name] = {
            section: _section(section, overlay[section], f"{path}.{section}", issues, partial=True)
            for section in _SECTIONS
            if section in _OVERLAY_SECTIONS and isinstance(overlay.get(section), Mapping)
        }
    return out


def _check_keys(
    raw: Mapping[str, Any],
    allowed: set[str],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    prefix = f"{path}." if path else ""
    for key in sorted(set(raw) - allowed):
        issues.add(f"{prefix}{key}", "unknown field")
    for key in sorted(required - set(raw)):
        issues.add(f"{prefix}{key}", "missing required field")


def _text(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    if not value.strip():
        issues.add(path, "must not be empty")
        return None
    if "\x00" in value:
        issues.add(path, "must not contain NUL bytes")
        return None
    return value.strip()


def _text_list(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if not isinstance(value, list):
        issues.add(path, f"expected array, got {type(value).__name__}")
        return None
    items = [_text(item, f"{path}[{index}]", issues) for index, item in enumerate(value)]
    return [item for item in items if item is not None]


def _flag(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _count(value: object, path: str, issues: _IssueCollector) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if value < 1:
        issues.add(path, "must be >= 1")
        return None
    return value


def _seconds(value: object, path: str, issues: _IssueCollector) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    if not math.isfinite(value) or value <= 0:
        issues.add(path, "must be > 0")
        return None
    return float(value)


def _schema(value: object, path: str, issues: _IssueCollector) -> int | None:
    version = _count(value, path, issues)
    if version is None or version == CONFIG_SCHEMA_VERSION:
        return version
    if version < CONFIG_SCHEMA_VERSION:
        hint = "upgrade matrix.toml to the current schema"
    else:
        hint = "upgrade compat-matrix"
    issues.add(path, f"schema version {version} is not {CONFIG_SCHEMA_VERSION}; {hint}")
    return None


def _level(value: object, path: str, issues: _IssueCollector) -> str | None:
    level = _text(value, path, issues)
    if level is not None and level.upper() not in LOG_LEVELS:
        issues.add(path, f"invalid value {level!r}; expected one of: {', '.join(LOG_LEVELS)}")
        return None
    return level.upper() if level is not None else None


def _exit_codes(value: object, path: str, issues: _IssueCollector) -> list[int] | None:
    if not isinstance(value, list):
        issues.add(path, f"expected array, got {type(value).__name__}")
        return None
    codes = [_count(item, f"{path}[{index}]", issues) for index, item in enumerate(value)]
    return sorted({code for code in codes if code is not None})


def _java_homes(value: object, path: str, issues: _IssueCollector) -> dict[str, str] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected table, got {type(value).__name__}")
        return None
    homes: dict[str, str] = {}
    for key in sorted(value):
        try:
            level = BytecodeLevel.parse(str(key))
        except ValueError as exc:
            issues.add(f"{path}.{key}", str(exc))
            continue
        home = _text(value[key], f"{path}.{key}", issues)
        if home is not None:
            homes[level.value] = home
    return homes


_CHECKS: Final[dict[str, Callable[[object, str, _IssueCollector], Any]]] = {
    "text": _text,
    "path": _text,
    "args": _text_list,
    "paths": _text_list,
    "flag": _flag,
    "count": _count,
    "seconds": _seconds,
    "schema": _schema,
    "level": _level,
    "exit_codes": _exit_codes,
    "java_homes": _java_homes,
}

__all__ = [
    "CONFIG_FIELDS",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "Field",
    "LOG_LEVELS",
    "PATH_KINDS",
    "SCALAR_KINDS",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "redact_config",
    "validate_config",
]
