"""
compat-matrix — harness error taxonomy

File: src/compat_matrix/domain/errors.py

Purpose
- Typed failures raised while preparing one environment of the matrix.

Taxonomy
- ``ConfigurationError``: duplicate ids, missing/ambiguous agent artifact,
  incompatible bytecode level, malformed declarations.
- ``ResolutionError``: artifact not found or ambiguous.
- ``InfrastructureError``: unreadable artifact containers. Timeouts and
  launch failures are reported as errored outcomes by the runner.

Audit violations and genuine test failures are results, not exceptions.
Every error carries a stable ``code`` used as the diagnostic prefix.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import ClassVar


class HarnessError(Exception):
    """Base class for every error the harness raises on purpose."""

    code: ClassVar[str] = "HarnessError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def diagnostic(self) -> str:
        return f"{self.code}: {self.message}"


class ConfigurationError(HarnessError):
    code = "ConfigurationError"


class DuplicateEnvironmentError(ConfigurationError):
    code = "DuplicateId"

    def __init__(self, environment_id: str) -> None:
        super().__init__(f"environment {environment_id!r} is already registered")
        self.environment_id = environment_id


class UnknownEnvironmentError(ConfigurationError):
    code = "UnknownEnvironment"

    def __init__(self, unknown: Sequence[str], known: Sequence[str]) -> None:
        super().__init__(f"unknown environment ids {list(unknown)}; declared: {list(known)}")
        self.unknown = tuple(unknown)


class RegistryFrozenError(ConfigurationError):
    code = "RegistryFrozen"


class MatrixDeclarationError(ConfigurationError):
    code = "InvalidDeclaration"


class IncompatibleEnvironmentError(ConfigurationError):
    code = "IncompatibleEnvironment"


class AgentNotFoundError(ConfigurationError):
    code = "AgentNotFound"

    def __init__(self, file_name: str) -> None:
        super().__init__(f"no runtime classpath entry named {file_name!r}")
        self.file_name = file_name


class AgentAmbiguousError(ConfigurationError):
    code = "AgentAmbiguous"

    def __init__(self, file_name: str, candidates: Sequence[Path]) -> None:
        rendered = ", ".join(str(item) for item in candidates)
        super().__init__(f"{len(candidates)} candidates for {file_name!r}: {rendered}")
        self.file_name = file_name
        self.candidates = tuple(candidates)


class ResolutionError(HarnessError):
    code = "ResolutionError"


class ArtifactNotFoundError(ResolutionError):
    code = "NotFound"


class ArtifactAmbiguousError(ResolutionError):
    code = "Ambiguous"


class InfrastructureError(HarnessError):
    code = "InfrastructureError"


class ArtifactContainerError(InfrastructureError):
    code = "UnreadableArtifact"


__all__ = [
    "AgentAmbiguousError",
    "AgentNotFoundError",
    "ArtifactAmbiguousError",
    "ArtifactContainerError",
    "ArtifactNotFoundError",
    "ConfigurationError",
    "DuplicateEnvironmentError",
    "HarnessError",
    "IncompatibleEnvironmentError",
    "InfrastructureError",
    "MatrixDeclarationError",
    "RegistryFrozenError",
    "ResolutionError",
    "UnknownEnvironmentError",
]
