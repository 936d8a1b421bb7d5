"""
compat-matrix — matrix declarations

File: src/compat_matrix/matrix/declarations.py

Purpose
- Build ``EnvironmentSpec`` values from a YAML matrix file or from the
  built-in kotlinx.coroutines matrix.

Declaration format
- ``release_group``: Maven group of the library under test (version drift
  is reported for this group only).
- ``shared_artifacts``: coordinates placed on every environment's runtime
  classpath (test framework, bytecode tooling).
- ``environments``: list of mappings with ``id``, ``artifacts`` and optional
  ``attachment_mode``, ``agent_artifact``, ``bytecode_level``, ``jvm_flags``,
  ``environment``, ``system_properties``, ``layout``, ``test_classes``,
  ``audit``, ``description``.
- ``test_classes``: directories or jars holding the environment's compiled
  tests. They lead its classpath and are the only roots scanned for tests.
  Relative entries resolve against the matrix file's directory.
- ``${name}`` placeholders are replaced from the version variables. A value
  that is exactly one placeholder whose variable is unset becomes null, which
  drops an optional system property.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import yaml

from compat_matrix.constants import MATRIX_SCHEMA_VERSION
from compat_matrix.domain.errors import MatrixDeclarationError
from compat_matrix.domain.models import (
    ArtifactCoordinate,
    AttachmentMode,
    AuditRules,
    BytecodeLevel,
    ClassLayout,
    EnvironmentSpec,
)
from compat_matrix.matrix.registry import EnvironmentRegistry

_PLACEHOLDER_RE: Final[re.Pattern[str]] = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_.]*)\}")
_ENVIRONMENT_KEYS: Final[frozenset[str]] = frozenset(
    {
        "id",
        "description",
        "artifacts",
        "attachment_mode",
        "agent_artifact",
        "bytecode_level",
        "jvm_flags",
        "environment",
        "system_properties",
        "layout",
        "test_classes",
        "audit",
    }
)
_AUDIT_KEYS: Final[frozenset[str]] = frozenset(
    {"artifacts", "forbidden_symbol_prefixes", "required_resources"}
)

_COROUTINES = "org.jetbrains.kotlinx"

DEFAULT_MATRIX: Final[dict[str, Any]] = {
    "schema_version": MATRIX_SCHEMA_VERSION,
    "release_group": _COROUTINES,
    "shared_artifacts": [
        "org.jetbrains.kotlin:kotlin-stdlib:${kotlin_version}",
        "org.jetbrains.kotlin:kotlin-test:${kotlin_version}",
        "org.jetbrains.kotlin:kotlin-test-junit:${kotlin_version}",
        "org.ow2.asm:asm:${asm_version}",
    ],
    "environments": [
        {
            "id": "jvmCoreTest",
            "test_classes": ["build/classes/kotlin/jvmCoreTest"],
            "description": "core module behavior on a plain JVM classpath",
            "artifacts": [
                f"{_COROUTINES}:kotlinx-coroutines-core-jvm:${{coroutines_version}}",
                {"coordinate": "com.google.guava:guava:31.1-jre", "version_override": True},
            ],
            "environment": {"version": "${coroutines_version}"},
        },
        {
            "id": "debugDynamicAgentTest",
            "test_classes": ["build/classes/kotlin/debugDynamicAgentTest"],
            "description": "debug agent self-attaches as a standalone dependency",
            "artifacts": [
                f"{_COROUTINES}:kotlinx-coroutines-core-jvm:${{coroutines_version}}",
                f"{_COROUTINES}:kotlinx-coroutines-debug:${{coroutines_version}}",
            ],
            "attachment_mode": "dynamic_agent",
            "agent_artifact": "kotlinx-coroutines-debug",
        },
        {
            "id": "mavenTest",
            "test_classes": ["build/classes/kotlin/mavenTest"],
            "description": "published jar resources and no leftover atomicfu symbols",
            "artifacts": [
                f"{_COROUTINES}:kotlinx-coroutines-core-jvm:${{coroutines_version}}",
                f"{_COROUTINES}:kotlinx-coroutines-android:${{coroutines_version}}",
            ],
            "environment": {"version": "${coroutines_version}"},
            "audit": {
                "forbidden_symbol_prefixes": ["kotlinx.atomicfu"],
                "required_resources": ["META-INF/MANIFEST.MF"],
            },
        },
        {
            "id": "debugAgentTest",
            "test_classes": ["build/classes/kotlin/debugAgentTest"],
            "description": "kotlinx-coroutines-debug as a -javaagent",
            "artifacts": [
                f"{_COROUTINES}:kotlinx-coroutines-core-jvm:${{coroutines_version}}",
                f"{_COROUTINES}:kotlinx-coroutines-debug:${{coroutines_version}}",
            ],
            "attachment_mode": "static_agent",
            "agent_artifact": "kotlinx-coroutines-debug",
            "bytecode_level": "1.8",
            "system_properties": {"kotlinx.coroutines.debug": "${kotlinx.coroutines.debug}"},
        },
        {
            "id": "coreAgentTest",
            "test_classes": ["build/classes/kotlin/coreAgentTest"],
            "description": "kotlinx-coroutines-core as a -javaagent",
            "artifacts": [f"{_COROUTINES}:kotlinx-coroutines-core-jvm:${{coroutines_version}}"],
            "attachment_mode": "static_agent",
            "agent_artifact": "kotlinx-coroutines-core-jvm",
        },
        {
            "id": "jpmsTest",
            "test_classes": ["build/classes/kotlin/jpmsTest"],
            "description": "core module resolved from the module path",
            "artifacts": [f"{_COROUTINES}:kotlinx-coroutines-core-jvm:${{coroutines_version}}"],
            "layout": "module_path",
            "bytecode_level": "11",
        },
        {
            "id": "java8Test",
            "test_classes": ["build/classes/kotlin/java8Test"],
            "description": "core module on a Java 8 runtime",
            "artifacts": [f"{_COROUTINES}:kotlinx-coroutines-core-jvm:${{coroutines_version}}"],
            "bytecode_level": "1.8",
        },
    ],
}


@dataclass(frozen=True, slots=True)
class MatrixDeclaration:
    """Parsed matrix: environments in declaration order plus shared inputs."""

    environments: tuple[EnvironmentSpec, ...]
    shared_artifacts: tuple[ArtifactCoordinate, ...] = ()
    release_group: str | None = None
    source: str = "<builtin>"

    def build_registry(self) -> EnvironmentRegistry:
        """Register every environment, then freeze. Duplicate ids raise ``DuplicateId``."""

        return EnvironmentRegistry(self.environments).freeze()


def default_matrix(
    variables: Mapping[str, str | None], *, base_dir: str | Path | None = None
) -> MatrixDeclaration:
    """The built-in matrix; ``base_dir`` anchors its relative ``test_classes`` entries."""

    return parse_matrix(DEFAULT_MATRIX, variables, source="<builtin>", base_dir=base_dir)


def load_matrix_file(path: str | Path, variables: Mapping[str, str | None]) -> MatrixDeclaration:
    matrix_path = Path(path)
    try:
        raw_text = matrix_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise MatrixDeclarationError(f"cannot read matrix file {matrix_path}: {exc}") from exc
    try:
        payload = yaml.safe_load(raw_text)
    except yaml.YAMLError as exc:
        raise MatrixDeclarationError(f"invalid YAML in {matrix_path}: {exc}") from exc
    return parse_matrix(
        payload, variables, source=str(matrix_path), base_dir=matrix_path.parent
    )


def parse_matrix(
    payload: object,
    variables: Mapping[str, str | None],
    *,
    source: str = "<memory>",
    base_dir: str | Path | None = None,
) -> MatrixDeclaration:
    if not isinstance(payload, Mapping):
        raise MatrixDeclarationError(f"{source}: top level must be a mapping")

    schema_version = payload.get("schema_version", MATRIX_SCHEMA_VERSION)
    if schema_version != MATRIX_SCHEMA_VERSION:
        raise MatrixDeclarationError(
            f"{source}: unsupported schema_version {schema_version!r}; "
            f"expected {MATRIX_SCHEMA_VERSION}"
        )

    resolved = {key: _interpolate(item, variables, f"$.{key}") for key, item in payload.items()}

    release_group = resolved.get("release_group")
    if release_group is not None and not isinstance(release_group, str):
        raise MatrixDeclarationError(f"{source}: release_group must be a string")

    raw_shared = _as_list(resolved.get("shared_artifacts", []), "$.shared_artifacts")
    shared = tuple(
        _coordinate(item, f"$.shared_artifacts[{index}]") for index, item in enumerate(raw_shared)
    )

    raw_environments = _as_list(resolved.get("environments"), "$.environments")
    if not raw_environments:
        raise MatrixDeclarationError(f"{source}: environments must be a non-empty list")

    environments = tuple(
        _environment(item, f"$.environments[{index}]", base_dir)
        for index, item in enumerate(raw_environments)
    )
    return MatrixDeclaration(
        environments=environments,
        shared_artifacts=shared,
        release_group=release_group,
        source=source,
    )


def _environment(raw: object, path: str, base_dir: str | Path | None) -> EnvironmentSpec:
    if not isinstance(raw, Mapping):
        raise MatrixDeclarationError(f"{path}: environment must be a mapping")
    unknown = sorted(set(raw).difference(_ENVIRONMENT_KEYS))
    if unknown:
        raise MatrixDeclarationError(f"{path}: unknown keys {unknown}")

    environment_id = raw.get("id")
    if not isinstance(environment_id, str):
        raise MatrixDeclarationError(f"{path}.id: must be a string")

    artifacts = tuple(
        _coordinate(item, f"{path}.artifacts[{index}]")
        for index, item in enumerate(_as_list(raw.get("artifacts"), f"{path}.artifacts"))
    )
    try:
        return EnvironmentSpec(
            id=environment_id,
            artifacts=artifacts,
            attachment_mode=AttachmentMode(raw.get("attachment_mode", AttachmentMode.NONE.value)),
            jvm_flags=tuple(_as_list(raw.get("jvm_flags", []), f"{path}.jvm_flags")),
            bytecode_level=BytecodeLevel.parse(
                raw.get("bytecode_level", BytecodeLevel.JVM_17.value)
            ),
            agent_artifact=raw.get("agent_artifact"),
            audit=_audit(raw.get("audit"), f"{path}.audit"),
            environment={
                key: value
                for key, value in _as_mapping(
                    raw.get("environment", {}), f"{path}.environment"
                ).items()
                if value is not None
            },
            system_properties=_as_mapping(
                raw.get("system_properties", {}), f"{path}.system_properties"
            ),
            layout=ClassLayout(raw.get("layout", ClassLayout.CLASSPATH.value)),
            test_classes=_test_classes(
                raw.get("test_classes", []), f"{path}.test_classes", base_dir
            ),
            description=str(raw.get("description", "")),
        )
    except (TypeError, ValueError) as exc:
        raise MatrixDeclarationError(f"{path} ({environment_id}): {exc}") from exc


def _audit(raw: object, path: str) -> AuditRules | None:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise MatrixDeclarationError(f"{path}: must be a mapping")
    unknown = sorted(set(raw).difference(_AUDIT_KEYS))
    if unknown:
        raise MatrixDeclarationError(f"{path}: unknown keys {unknown}")
    try:
        return AuditRules(
            forbidden_symbol_prefixes=frozenset(
                _as_list(
                    raw.get("forbidden_symbol_prefixes", []),
                    f"{path}.forbidden_symbol_prefixes",
                )
            ),
            required_resource_paths=frozenset(
                _as_list(raw.get("required_resources", []), f"{path}.required_resources")
            ),
            artifact_names=tuple(_as_list(raw.get("artifacts", []), f"{path}.artifacts")),
        )
    except (TypeError, ValueError) as exc:
        raise MatrixDeclarationError(f"{path}: {exc}") from exc


def _test_classes(raw: object, path: str, base_dir: str | Path | None) -> tuple[Path, ...]:
    entries: list[Path] = []
    for index, item in enumerate(_as_list(raw, path)):
        if not isinstance(item, str) or not item.strip():
            raise MatrixDeclarationError(f"{path}[{index}]: expected a non-empty path")
        entry = Path(item.strip()).expanduser()
        if base_dir is not None and not entry.is_absolute():
            entry = Path(base_dir) / entry
        entries.append(entry)
    return tuple(entries)


def _coordinate(raw: object, path: str) -> ArtifactCoordinate:
    version_override = False
    if isinstance(raw, Mapping):
        version_override = bool(raw.get("version_override", False))
        raw = raw.get("coordinate")
    if not isinstance(raw, str):
        raise MatrixDeclarationError(f"{path}: expected 'group:name:version' string")
    try:
        return ArtifactCoordinate.parse(raw, version_override=version_override)
    except ValueError as exc:
        raise MatrixDeclarationError(f"{path}: {exc}") from exc


def _interpolate(value: object, variables: Mapping[str, str | None], path: str) -> object:
    if isinstance(value, str):
        return _substitute(value, variables, path)
    if isinstance(value, Mapping):
        return {key: _interpolate(item, variables, f"{path}.{key}") for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [
            _interpolate(item, variables, f"{path}[{index}]") for index, item in enumerate(value)
        ]
    return value


def _substitute(text: str, variables: Mapping[str, str | None], path: str) -> str | None:
    whole = _PLACEHOLDER_RE.fullmatch(text)
    if whole is not None:
        name = whole.group(1)
        return variables.get(name)

    def replace(match: re.Match[str]) -> str:
        name = match.group(1)
        value = variables.get(name)
        if value is None:
            raise MatrixDeclarationError(f"{path}: variable {name!r} is not set")
        return value

    return _PLACEHOLDER_RE.sub(replace, text)


def _as_list(value: object, path: str) -> Sequence[Any]:
    if value is None:
        raise MatrixDeclarationError(f"{path}: is required")
    if not isinstance(value, list | tuple):
        raise MatrixDeclarationError(f"{path}: must be a list")
    return value


def _as_mapping(value: object, path: str) -> dict[str, Any]:
    if not isinstance(value, Mapping):
        raise MatrixDeclarationError(f"{path}: must be a mapping")
    return {str(key): item for key, item in value.items()}


__all__ = [
    "DEFAULT_MATRIX",
    "MatrixDeclaration",
    "default_matrix",
    "load_matrix_file",
    "parse_matrix",
]
