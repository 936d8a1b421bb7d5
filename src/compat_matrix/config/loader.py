"""
compat-matrix — config loader

File: src/compat_matrix/config/loader.py

Purpose
- Build the effective run configuration: built-in defaults, then
  ``matrix.toml``, then the selected profile, then ``COMPAT_MATRIX_*``
  variables, then command-line overrides.
- Resolve relative paths against the directory holding ``matrix.toml``.
- Derive what a run needs from the versions table: the release under test, the
  Kotlin compiler (snapshot train aware), repository lookup order and the
  ``${name}`` variables offered to matrix declarations.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from compat_matrix.config.schema import (
    CONFIG_FIELDS,
    PATH_KINDS,
    SCALAR_KINDS,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)
from compat_matrix.constants import SNAPSHOT_SUFFIX

DEFAULT_CONFIG_FILE: Final[str] = "matrix.toml"
ENV_PREFIX: Final[str] = "COMPAT_MATRIX_"

_TRUE_WORDS: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})


class ConfigLoadError(ValueError):
    """``matrix.toml`` or an override could not be read."""


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective configuration.

    ``config_path`` defaults to ``./matrix.toml``, which may be absent; an
    explicit path must exist. ``cli_overrides`` maps dotted keys such as
    ``runner.max_parallel`` to values, and ``None`` values are skipped. The
    profile comes from ``profile``, then ``cli_overrides["profile"]``, then
    ``COMPAT_MATRIX_PROFILE``.
    """

    path = _config_path(config_path)
    environ = os.environ if environ is None else environ
    overrides = dict(cli_overrides or {})
    selected = profile
    if selected is None:
        selected = str(overrides.pop("profile", None) or environ.get(f"{ENV_PREFIX}PROFILE", ""))
    overrides.pop("profile", None)
    selected = selected.strip() or None

    config = assert_valid_config(
        merge_config(default_config(), _read_toml(path, required=config_path is not None))
    )
    config = apply_profile_overlay(config, selected)
    config = merge_config(config, _env_overrides(environ))
    config = merge_config(config, _dotted_overrides(overrides))
    config = assert_valid_config(config, active_profile=selected)
    return _resolve_paths(config, path.parent)


def effective_config(config: Mapping[str, object]) -> dict[str, Any]:
    """Redacted copy of ``config`` for logs and ``--json`` output."""

    return redact_config(config)


def dump_effective_config(config: Mapping[str, object]) -> str:
    return json.dumps(effective_config(config), sort_keys=True, indent=2, ensure_ascii=False)


def release_version(config: Mapping[str, Any]) -> str:
    return str(config["versions"]["coroutines_version"])


def kotlin_version(config: Mapping[str, Any]) -> str:
    """Kotlin version in effect; the snapshot train swaps in the snapshot compiler."""

    versions = config["versions"]
    if not versions.get("build_snapshot_train"):
        return str(versions["kotlin_version"])
    snapshot = versions.get("kotlin_snapshot_version")
    if not snapshot:
        raise ConfigLoadError(
            "'kotlin_snapshot_version' should be defined when building with snapshot compiler"
        )
    return str(snapshot)


def snapshot_versions(config: Mapping[str, Any]) -> tuple[str, ...]:
    """Names of ``*_version`` settings that point at a snapshot build."""

    candidates = {**dict(config.get("properties", {})), **dict(config["versions"])}
    return tuple(
        sorted(
            key
            for key, value in candidates.items()
            if key.endswith("_version")
            and isinstance(value, str)
            and value.endswith(SNAPSHOT_SUFFIX)
        )
    )


def uses_snapshot_versions(config: Mapping[str, Any]) -> bool:
    return bool(config["versions"].get("build_snapshot_train")) or bool(snapshot_versions(config))


def effective_repositories(config: Mapping[str, Any]) -> list[str]:
    """Repository roots in lookup order; snapshot roots go first when snapshots are in use."""

    resolution = config["resolution"]
    roots = list(resolution["repositories"])
    if uses_snapshot_versions(config):
        roots = [*resolution["snapshot_repositories"], *roots]
    return list(dict.fromkeys(roots))


def matrix_variables(config: Mapping[str, Any]) -> dict[str, str | None]:
    """``${name}`` values for matrix declarations; versions win over ``[properties]``."""

    variables: dict[str, str | None] = dict(config.get("properties", {}))
    variables["coroutines_version"] = release_version(config)
    variables["kotlin_version"] = kotlin_version(config)
    variables["asm_version"] = str(config["versions"]["asm_version"])
    return variables


def env_var_name(section: str, key: str) -> str:
    return f"{ENV_PREFIX}{section.upper()}_{key.upper()}"


def _config_path(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _scalar_fields() -> Iterator[tuple[str, str, type]]:
    for section, fields in CONFIG_FIELDS.items():
        for key, spec in fields.items():
            if spec.kind in SCALAR_KINDS:
                yield section, key, SCALAR_KINDS[spec.kind]


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for section, key, target in _scalar_fields():
        name = env_var_name(section, key)
        if name in environ:
            value = _coerce(environ[name].strip(), target, name)
            overrides.setdefault(section, {})[key] = value
    return overrides


def _coerce(raw: str, target: type, name: str) -> object:
    if target is bool:
        if raw.lower() in _TRUE_WORDS:
            return True
        if raw.lower() in _FALSE_WORDS:
            return False
        raise ConfigLoadError(f"{name} must be a boolean (true/false/1/0/yes/no/on/off)")
    try:
        return target(raw)
    except ValueError as exc:
        raise ConfigLoadError(f"{name}: cannot parse {raw!r} as {target.__name__}") from exc


def _dotted_overrides(overrides: Mapping[str, object]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for dotted, value in overrides.items():
        if value is None:
            continue
        *parents, leaf = dotted.split(".")
        if not leaf or not all(parents):
            raise ConfigLoadError(f"invalid override key {dotted!r}")
        node = payload
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value
    return payload


def _resolve_paths(config: dict[str, Any], base_dir: Path) -> dict[str, Any]:
    for section, fields in CONFIG_FIELDS.items():
        table = config.get(section, {})
        for key, spec in fields.items():
            if spec.kind not in PATH_KINDS or key not in table:
                continue
            value = table[key]
            if isinstance(value, str):
                table[key] = _resolve_path(value, base_dir)
            elif isinstance(value, list):
                table[key] = [_resolve_path(item, base_dir) for item in value]
            else:
                table[key] = {name: _resolve_path(item, base_dir) for name, item in value.items()}
    return config


def _resolve_path(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "effective_config",
    "effective_repositories",
    "env_var_name",
    "kotlin_version",
    "load_config",
    "matrix_variables",
    "release_version",
    "snapshot_versions",
    "uses_snapshot_versions",
]
