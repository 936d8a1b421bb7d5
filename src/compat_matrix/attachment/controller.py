"""
compat-matrix — attachment controller

File: src/compat_matrix/attachment/controller.py

Purpose
- Turn an ``EnvironmentSpec`` plus its resolved artifacts into an
  ``AttachmentPlan`` and the concrete ``LaunchContext`` handed to the
  test-execution collaborator.

Normative behavior
- ``none``: no agent; launch flags are the declared JVM flags.
- ``static_agent``: exactly one runtime classpath entry named
  ``<agent>-<version>.jar`` must exist; ``-javaagent:<path>`` is prepended.
- ``dynamic_agent``: no launch flag; the same entry must be on the classpath
  so the test process can self-attach. A failed self-attach is the test
  process's failure, not a harness error.
- Zero or several agent candidates are configuration errors scoped to the
  environment. Bytecode levels below what the mode or layout needs fail
  eagerly, before anything is executed.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Final, assert_never

from compat_matrix.constants import VERSION_ENV_VAR
from compat_matrix.domain.errors import (
    AgentAmbiguousError,
    AgentNotFoundError,
    IncompatibleEnvironmentError,
)
from compat_matrix.domain.models import (
    AttachmentMode,
    AttachmentPlan,
    BytecodeLevel,
    ClassLayout,
    EnvironmentSpec,
    LaunchContext,
    ResolvedArtifact,
)

# Self-attach goes through the jdk.attach module, which a 1.8 target cannot require.
MINIMUM_BYTECODE_LEVEL: Final[Mapping[AttachmentMode, BytecodeLevel]] = {
    AttachmentMode.NONE: BytecodeLevel.JVM_1_8,
    AttachmentMode.STATIC_AGENT: BytecodeLevel.JVM_1_8,
    AttachmentMode.DYNAMIC_AGENT: BytecodeLevel.JVM_9,
}
MODULE_PATH_MINIMUM_LEVEL: Final[BytecodeLevel] = BytecodeLevel.JVM_9


class AgentMatchState(StrEnum):
    FOUND = "found"
    ABSENT = "absent"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True, slots=True)
class AgentMatch:
    """Result of the "exactly one matching file" predicate."""

    file_name: str
    candidates: tuple[Path, ...]

    @property
    def state(self) -> AgentMatchState:
        if not self.candidates:
            return AgentMatchState.ABSENT
        if len(self.candidates) > 1:
            return AgentMatchState.AMBIGUOUS
        return AgentMatchState.FOUND

    def require(self) -> Path:
        """Return the single candidate or raise the matching configuration error."""

        match self.state:
            case AgentMatchState.FOUND:
                return self.candidates[0]
            case AgentMatchState.ABSENT:
                raise AgentNotFoundError(self.file_name)
            case AgentMatchState.AMBIGUOUS:
                raise AgentAmbiguousError(self.file_name, self.candidates)
            case _:
                assert_never(self.state)


def match_agent(classpath: Sequence[Path], file_name: str) -> AgentMatch:
    """Collect every classpath entry whose file name is exactly ``file_name``."""

    candidates: dict[Path, None] = {}
    for entry in classpath:
        if entry.name == file_name:
            candidates.setdefault(entry, None)
    return AgentMatch(file_name=file_name, candidates=tuple(candidates))


class AttachmentController:
    """Compute attachment plans and launch contexts for declared environments.

    ``resolved`` is always the environment's own artifacts in declaration
    order; ``shared`` holds artifacts every environment runs with (test
    framework, bytecode tooling). ``shared_classpath`` adds fixed paths every
    environment runs with; each environment's own compiled tests come from
    ``EnvironmentSpec.test_classes`` and lead the classpath.
    """

    def __init__(
        self,
        *,
        shared_classpath: Sequence[str | Path] = (),
        release_version: str | None = None,
        inject_version: bool = False,
    ) -> None:
        self._shared_classpath = tuple(Path(item) for item in shared_classpath)
        self._release_version = release_version
        self._inject_version = inject_version

    @property
    def shared_classpath(self) -> tuple[Path, ...]:
        return self._shared_classpath

    def check_compatibility(self, spec: EnvironmentSpec) -> None:
        required = MINIMUM_BYTECODE_LEVEL[spec.attachment_mode]
        if not spec.bytecode_level.at_least(required):
            raise IncompatibleEnvironmentError(
                f"{spec.attachment_mode.value} needs bytecode level {required.value} or later, "
                f"environment targets {spec.bytecode_level.value}"
            )
        if spec.layout is ClassLayout.MODULE_PATH and not spec.bytecode_level.at_least(
            MODULE_PATH_MINIMUM_LEVEL
        ):
            raise IncompatibleEnvironmentError(
                f"module path layout needs bytecode level {MODULE_PATH_MINIMUM_LEVEL.value} "
                f"or later, environment targets {spec.bytecode_level.value}"
            )

    def runtime_classpath(
        self,
        resolved: Sequence[ResolvedArtifact],
        shared: Sequence[ResolvedArtifact] = (),
    ) -> tuple[Path, ...]:
        """Environment artifacts, then shared artifacts, then the static test classpath."""

        return _paths(resolved) + _paths(shared) + self._shared_classpath

    def plan(
        self,
        spec: EnvironmentSpec,
        resolved: Sequence[ResolvedArtifact],
        shared: Sequence[ResolvedArtifact] = (),
    ) -> AttachmentPlan:
        self.check_compatibility(spec)
        mode = spec.attachment_mode
        match mode:
            case AttachmentMode.NONE:
                return AttachmentPlan(mode=mode)
            case AttachmentMode.STATIC_AGENT:
                agent = self._locate_agent(spec, resolved, shared)
                return AttachmentPlan(
                    mode=mode,
                    agent_artifact=agent,
                    extra_launch_flags=(f"-javaagent:{agent}",),
                )
            case AttachmentMode.DYNAMIC_AGENT:
                return AttachmentPlan(
                    mode=mode,
                    self_attach_artifact=self._locate_agent(spec, resolved, shared),
                )
            case _:
                assert_never(mode)

    def launch_context(
        self,
        spec: EnvironmentSpec,
        plan: AttachmentPlan,
        resolved: Sequence[ResolvedArtifact],
        shared: Sequence[ResolvedArtifact] = (),
    ) -> LaunchContext:
        match spec.layout:
            case ClassLayout.CLASSPATH:
                classpath = self.runtime_classpath(resolved, shared)
                module_path: tuple[Path, ...] = ()
            case ClassLayout.MODULE_PATH:
                classpath = _paths(shared) + self._shared_classpath
                module_path = _paths(resolved)
            case _:
                assert_never(spec.layout)
        # Test classes lead the classpath, as in a Gradle test task.
        classpath = spec.test_classes + classpath

        flags = (
            plan.extra_launch_flags
            + spec.jvm_flags
            + _system_property_flags(spec.system_properties)
        )
        environment = dict(spec.environment)
        if self._inject_version and self._release_version:
            environment.setdefault(VERSION_ENV_VAR, self._release_version)
        return LaunchContext(
            environment_id=spec.id,
            classpath=classpath,
            module_path=module_path,
            jvm_flags=flags,
            environment=environment,
            bytecode_level=spec.bytecode_level,
            layout=spec.layout,
            test_roots=spec.test_classes,
        )

    def prepare(
        self,
        spec: EnvironmentSpec,
        resolved: Sequence[ResolvedArtifact],
        shared: Sequence[ResolvedArtifact] = (),
    ) -> tuple[AttachmentPlan, LaunchContext]:
        plan = self.plan(spec, resolved, shared)
        return plan, self.launch_context(spec, plan, resolved, shared)

    def _locate_agent(
        self,
        spec: EnvironmentSpec,
        resolved: Sequence[ResolvedArtifact],
        shared: Sequence[ResolvedArtifact],
    ) -> Path:
        file_name = _agent_file_name(spec, resolved)
        return match_agent(self.runtime_classpath(resolved, shared), file_name).require()


def _agent_file_name(spec: EnvironmentSpec, resolved: Sequence[ResolvedArtifact]) -> str:
    # A "1.8+" selector resolves to a concrete version; the file carries that one.
    for artifact in resolved:
        if artifact.coordinate.name == spec.agent_artifact:
            return artifact.coordinate.file_name
    coordinate = spec.agent_coordinate
    if coordinate is None:
        raise AgentNotFoundError(f"{spec.agent_artifact}-<version>.jar")
    return coordinate.file_name


def _paths(artifacts: Sequence[ResolvedArtifact]) -> tuple[Path, ...]:
    return tuple(artifact.path for artifact in artifacts)


def _system_property_flags(properties: Mapping[str, str | None]) -> tuple[str, ...]:
    return tuple(f"-D{key}={value}" for key, value in properties.items() if value is not None)


__all__ = [
    "AgentMatch",
    "AgentMatchState",
    "AttachmentController",
    "MINIMUM_BYTECODE_LEVEL",
    "MODULE_PATH_MINIMUM_LEVEL",
    "match_agent",
]
