"""
compat-matrix — domain model

File: src/compat_matrix/domain/models.py

Purpose
- Immutable value types shared by the registry, resolver, attachment
  controller, auditor, runner, and aggregator.

Invariants
- Declarations are frozen once built; the runner never mutates them.
- ``AttachmentPlan`` always carries exactly one agent path when the mode is
  not ``none``.
- ``Report.overall_status`` is derived, never stored.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import Final

from compat_matrix.constants import JAR_SUFFIX

_IDENTIFIER_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z][A-Za-z0-9_.-]*$")
_SYSTEM_PROPERTY_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9_.-]+$")


class AttachmentMode(StrEnum):
    """How an instrumentation agent is wired into a verification run."""

    NONE = "none"
    STATIC_AGENT = "static_agent"
    DYNAMIC_AGENT = "dynamic_agent"


class ClassLayout(StrEnum):
    """Where resolved artifacts are placed on the launched JVM."""

    CLASSPATH = "classpath"
    MODULE_PATH = "module_path"


class BytecodeLevel(StrEnum):
    """JVM bytecode targets the harness can select."""

    JVM_1_8 = "1.8"
    JVM_9 = "9"
    JVM_11 = "11"
    JVM_17 = "17"
    JVM_21 = "21"

    @property
    def release(self) -> int:
        if self is BytecodeLevel.JVM_1_8:
            return 8
        return int(self.value)

    @classmethod
    def parse(cls, value: object) -> BytecodeLevel:
        if isinstance(value, BytecodeLevel):
            return value
        if isinstance(value, bool):
            raise ValueError(f"invalid bytecode level: {value!r}")
        if isinstance(value, int | float):
            value = str(value)
        if not isinstance(value, str):
            raise ValueError(f"invalid bytecode level: {value!r}")
        text = value.strip().upper().removeprefix("JVM_").replace("_", ".")
        if text in {"8", "1.8"}:
            return cls.JVM_1_8
        for level in cls:
            if level.value == text:
                return level
        allowed = ", ".join(level.value for level in cls)
        raise ValueError(f"invalid bytecode level {value!r}; expected one of: {allowed}")

    def at_least(self, other: BytecodeLevel) -> bool:
        return self.release >= other.release


class OutcomeStatus(StrEnum):
    PASSED = "passed"
    FAILED = "failed"
    ERRORED = "errored"


class ErrorKind(StrEnum):
    """Which part of the taxonomy produced a non-passed outcome."""

    CONFIGURATION = "configuration"
    RESOLUTION = "resolution"
    AUDIT = "audit"
    EXECUTION = "execution"
    INFRASTRUCTURE = "infrastructure"
    ABORTED = "aborted"


class EnvironmentPhase(StrEnum):
    PENDING = "pending"
    RESOLVING = "resolving"
    AUDITING = "auditing"
    EXECUTING = "executing"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class ArtifactCoordinate:
    """``group:name:version[:classifier]`` identifying one published binary."""

    group: str
    name: str
    version: str
    classifier: str | None = None
    version_override: bool = field(default=False, compare=False)

    def __post_init__(self) -> None:
        for attr in ("group", "name", "version"):
            value = getattr(self, attr)
            if not isinstance(value, str) or not value.strip() or ":" in value:
                raise ValueError(
                    f"ArtifactCoordinate.{attr} must be a non-empty string without ':'"
                )
            object.__setattr__(self, attr, value.strip())
        if self.classifier is not None:
            classifier = self.classifier.strip()
            object.__setattr__(self, "classifier", classifier or None)

    @classmethod
    def parse(cls, notation: str, *, version_override: bool = False) -> ArtifactCoordinate:
        parts = [part.strip() for part in notation.split(":")]
        if len(parts) not in {3, 4} or not all(parts):
            raise ValueError(f"expected 'group:name:version[:classifier]', got {notation!r}")
        classifier = parts[3] if len(parts) == 4 else None
        return cls(
            group=parts[0],
            name=parts[1],
            version=parts[2],
            classifier=classifier,
            version_override=version_override,
        )

    @property
    def notation(self) -> str:
        base = f"{self.group}:{self.name}:{self.version}"
        return f"{base}:{self.classifier}" if self.classifier else base

    @property
    def file_name(self) -> str:
        suffix = f"-{self.classifier}" if self.classifier else ""
        return f"{self.name}-{self.version}{suffix}{JAR_SUFFIX}"

    @property
    def is_dynamic_version(self) -> bool:
        return self.version.endswith("+")

    def __str__(self) -> str:
        return self.notation


@dataclass(frozen=True, slots=True)
class AuditRules:
    """Static audit rule set applied to an environment's resolved artifacts."""

    forbidden_symbol_prefixes: frozenset[str] = frozenset()
    required_resource_paths: frozenset[str] = frozenset()
    artifact_names: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "forbidden_symbol_prefixes",
            frozenset(_clean_strings(self.forbidden_symbol_prefixes, "forbidden_symbol_prefixes")),
        )
        object.__setattr__(
            self,
            "required_resource_paths",
            frozenset(
                item.lstrip("/")
                for item in _clean_strings(self.required_resource_paths, "required_resource_paths")
            ),
        )
        object.__setattr__(
            self, "artifact_names", tuple(_clean_strings(self.artifact_names, "artifact_names"))
        )

    @property
    def is_empty(self) -> bool:
        return not self.forbidden_symbol_prefixes and not self.required_resource_paths

    def applies_to(self, coordinate: ArtifactCoordinate) -> bool:
        return not self.artifact_names or coordinate.name in self.artifact_names


@dataclass(frozen=True, slots=True)
class EnvironmentSpec:
    """One declared verification environment. Immutable once declared."""

    id: str
    artifacts: tuple[ArtifactCoordinate, ...]
    attachment_mode: AttachmentMode = AttachmentMode.NONE
    jvm_flags: tuple[str, ...] = ()
    bytecode_level: BytecodeLevel = BytecodeLevel.JVM_17
    agent_artifact: str | None = None
    audit: AuditRules | None = None
    environment: Mapping[str, str] = field(default_factory=dict)
    system_properties: Mapping[str, str | None] = field(default_factory=dict)
    layout: ClassLayout = ClassLayout.CLASSPATH
    test_classes: tuple[Path, ...] = ()
    description: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not _IDENTIFIER_PATTERN.match(self.id):
            raise ValueError(f"EnvironmentSpec.id must be an identifier, got {self.id!r}")

        artifacts = tuple(self.artifacts)
        if not artifacts:
            raise ValueError(f"environment {self.id!r} must declare at least one artifact")
        seen: set[ArtifactCoordinate] = set()
        for coordinate in artifacts:
            if not isinstance(coordinate, ArtifactCoordinate):
                raise TypeError(f"environment {self.id!r} artifacts must be ArtifactCoordinate")
            if coordinate in seen:
                raise ValueError(f"environment {self.id!r} declares {coordinate} twice")
            seen.add(coordinate)
        object.__setattr__(self, "artifacts", artifacts)

        object.__setattr__(self, "attachment_mode", AttachmentMode(self.attachment_mode))
        object.__setattr__(self, "bytecode_level", BytecodeLevel.parse(self.bytecode_level))
        object.__setattr__(self, "layout", ClassLayout(self.layout))
        object.__setattr__(self, "jvm_flags", tuple(_clean_strings(self.jvm_flags, "jvm_flags")))

        names = {coordinate.name for coordinate in artifacts}
        if self.attachment_mode is AttachmentMode.NONE:
            if self.agent_artifact is not None:
                raise ValueError(f"environment {self.id!r} names an agent but attaches none")
        elif self.agent_artifact not in names:
            raise ValueError(
                f"environment {self.id!r} attachment mode {self.attachment_mode.value} "
                f"requires agent_artifact naming one of {sorted(names)}"
            )

        if self.audit is not None:
            undeclared = [name for name in self.audit.artifact_names if name not in names]
            if undeclared:
                raise ValueError(
                    f"environment {self.id!r} audit names undeclared artifacts {undeclared}; "
                    f"declared artifacts are {sorted(names)}"
                )

        test_classes = tuple(Path(entry) for entry in self.test_classes)
        if len(set(test_classes)) != len(test_classes):
            raise ValueError(f"environment {self.id!r} lists a test_classes entry twice")
        object.__setattr__(self, "test_classes", test_classes)

        env = {str(key): str(value) for key, value in dict(self.environment).items()}
        object.__setattr__(self, "environment", dict(sorted(env.items())))

        properties: dict[str, str | None] = {}
        for key, value in dict(self.system_properties).items():
            if not _SYSTEM_PROPERTY_PATTERN.match(str(key)):
                raise ValueError(f"environment {self.id!r} has invalid system property {key!r}")
            properties[str(key)] = None if value is None else str(value)
        object.__setattr__(self, "system_properties", dict(sorted(properties.items())))

    @property
    def agent_coordinate(self) -> ArtifactCoordinate | None:
        if self.agent_artifact is None:
            return None
        for coordinate in self.artifacts:
            if coordinate.name == self.agent_artifact:
                return coordinate
        return None

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "artifacts": [coordinate.notation for coordinate in self.artifacts],
            "attachment_mode": self.attachment_mode.value,
            "jvm_flags": list(self.jvm_flags),
            "bytecode_level": self.bytecode_level.value,
            "agent_artifact": self.agent_artifact,
            "layout": self.layout.value,
            "test_classes": [str(entry) for entry in self.test_classes],
            "audit": None
            if self.audit is None
            else {
                "forbidden_symbol_prefixes": sorted(self.audit.forbidden_symbol_prefixes),
                "required_resource_paths": sorted(self.audit.required_resource_paths),
                "artifact_names": list(self.audit.artifact_names),
            },
            "description": self.description,
        }


@dataclass(frozen=True, slots=True)
class ResolvedArtifact:
    """A located binary for one coordinate, scoped to a single matrix run."""

    coordinate: ArtifactCoordinate
    path: Path
    size_bytes: int
    sha256: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", Path(self.path))
        if self.size_bytes < 0:
            raise ValueError("ResolvedArtifact.size_bytes must be >= 0")


@dataclass(frozen=True, slots=True)
class AttachmentPlan:
    """Derived per environment; discarded after its run."""

    mode: AttachmentMode
    agent_artifact: Path | None = None
    extra_launch_flags: tuple[str, ...] = ()
    self_attach_artifact: Path | None = None

    def __post_init__(self) -> None:
        match self.mode:
            case AttachmentMode.NONE:
                if self.agent_artifact is not None or self.self_attach_artifact is not None:
                    raise ValueError("AttachmentPlan without a mode must not carry an agent")
            case AttachmentMode.STATIC_AGENT:
                if self.agent_artifact is None:
                    raise ValueError("static agent plan requires agent_artifact")
            case AttachmentMode.DYNAMIC_AGENT:
                if self.self_attach_artifact is None:
                    raise ValueError("dynamic agent plan requires self_attach_artifact")


@dataclass(frozen=True, slots=True)
class LaunchContext:
    """Everything the test-execution collaborator needs to start one run."""

    environment_id: str
    classpath: tuple[Path, ...]
    module_path: tuple[Path, ...] = ()
    jvm_flags: tuple[str, ...] = ()
    environment: Mapping[str, str] = field(default_factory=dict)
    bytecode_level: BytecodeLevel = BytecodeLevel.JVM_17
    layout: ClassLayout = ClassLayout.CLASSPATH
    # Roots the launcher scans for tests; empty means the whole classpath.
    test_roots: tuple[Path, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "environment_id": self.environment_id,
            "classpath": [str(item) for item in self.classpath],
            "module_path": [str(item) for item in self.module_path],
            "test_roots": [str(item) for item in self.test_roots],
            "jvm_flags": list(self.jvm_flags),
            "environment": dict(self.environment),
            "bytecode_level": self.bytecode_level.value,
            "layout": self.layout.value,
        }


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """What the test-execution collaborator reports for one run."""

    status: OutcomeStatus
    details: tuple[str, ...] = ()
    exit_code: int | None = None
    duration_ms: int = 0


@dataclass(frozen=True, slots=True)
class Outcome:
    """Terminal result of one environment. Immutable after creation."""

    environment_id: str
    status: OutcomeStatus
    diagnostics: tuple[str, ...] = ()
    duration_ms: int = 0
    error_kind: ErrorKind | None = None
    phase_reached: EnvironmentPhase = EnvironmentPhase.COMPLETED

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", OutcomeStatus(self.status))
        object.__setattr__(self, "diagnostics", tuple(self.diagnostics))
        if self.duration_ms < 0:
            raise ValueError("Outcome.duration_ms must be >= 0")
        if self.status is OutcomeStatus.PASSED and self.error_kind is not None:
            raise ValueError("passed outcomes carry no error kind")

    @property
    def passed(self) -> bool:
        return self.status is OutcomeStatus.PASSED

    def to_dict(self) -> dict[str, object]:
        return {
            "environment_id": self.environment_id,
            "status": self.status.value,
            "diagnostics": list(self.diagnostics),
            "duration_ms": self.duration_ms,
            "error_kind": None if self.error_kind is None else self.error_kind.value,
            "phase_reached": self.phase_reached.value,
        }


@dataclass(frozen=True, slots=True)
class Report:
    """Aggregate of every outcome in declaration order plus the release gate."""

    outcomes: tuple[Outcome, ...]
    release_version: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def overall_status(self) -> OutcomeStatus:
        if all(outcome.passed for outcome in self.outcomes):
            return OutcomeStatus.PASSED
        return OutcomeStatus.FAILED

    @property
    def passed(self) -> bool:
        return self.overall_status is OutcomeStatus.PASSED

    @property
    def diagnostics(self) -> tuple[str, ...]:
        lines: list[str] = []
        for outcome in self.outcomes:
            lines.extend(f"{outcome.environment_id}: {message}" for message in outcome.diagnostics)
        return tuple(lines)

    @property
    def errored(self) -> tuple[Outcome, ...]:
        return tuple(item for item in self.outcomes if item.status is OutcomeStatus.ERRORED)

    @property
    def failed(self) -> tuple[Outcome, ...]:
        return tuple(item for item in self.outcomes if item.status is OutcomeStatus.FAILED)

    def outcome_for(self, environment_id: str) -> Outcome:
        for outcome in self.outcomes:
            if outcome.environment_id == environment_id:
                return outcome
        raise KeyError(environment_id)

    def counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in OutcomeStatus}
        for outcome in self.outcomes:
            counts[outcome.status.value] += 1
        return counts

    def to_dict(self) -> dict[str, object]:
        return {
            "overall_status": self.overall_status.value,
            "release_version": self.release_version,
            "started_at": None if self.started_at is None else self.started_at.isoformat(),
            "finished_at": None if self.finished_at is None else self.finished_at.isoformat(),
            "counts": self.counts(),
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "diagnostics": list(self.diagnostics),
        }


def _clean_strings(values: Sequence[str] | frozenset[str] | set[str], path: str) -> list[str]:
    if isinstance(values, str):
        raise TypeError(f"{path} must be a collection of strings, not a string")
    cleaned: list[str] = []
    for item in values:
        if not isinstance(item, str):
            raise TypeError(f"{path} entries must be strings, got {type(item).__name__}")
        candidate = item.strip()
        if not candidate:
            raise ValueError(f"{path} entries must be non-empty")
        cleaned.append(candidate)
    return cleaned


__all__ = [
    "ArtifactCoordinate",
    "AttachmentMode",
    "AttachmentPlan",
    "AuditRules",
    "BytecodeLevel",
    "ClassLayout",
    "EnvironmentPhase",
    "EnvironmentSpec",
    "ErrorKind",
    "ExecutionResult",
    "LaunchContext",
    "Outcome",
    "OutcomeStatus",
    "Report",
    "ResolvedArtifact",
]
