"""
compat-matrix — domain layer

File: src/compat_matrix/domain/__init__.py

Purpose
- Re-export the immutable declaration/result types and the error taxonomy.
- Keep the domain layer free of IO side effects.
"""

from compat_matrix.domain.errors import (
    AgentAmbiguousError,
    AgentNotFoundError,
    ArtifactAmbiguousError,
    ArtifactContainerError,
    ArtifactNotFoundError,
    ConfigurationError,
    DuplicateEnvironmentError,
    HarnessError,
    IncompatibleEnvironmentError,
    InfrastructureError,
    MatrixDeclarationError,
    RegistryFrozenError,
    ResolutionError,
    UnknownEnvironmentError,
)
from compat_matrix.domain.models import (
    ArtifactCoordinate,
    AttachmentMode,
    AttachmentPlan,
    AuditRules,
    BytecodeLevel,
    ClassLayout,
    EnvironmentPhase,
    EnvironmentSpec,
    ErrorKind,
    ExecutionResult,
    LaunchContext,
    Outcome,
    OutcomeStatus,
    Report,
    ResolvedArtifact,
)

__all__ = [
    "AgentAmbiguousError",
    "AgentNotFoundError",
    "ArtifactAmbiguousError",
    "ArtifactContainerError",
    "ArtifactCoordinate",
    "ArtifactNotFoundError",
    "AttachmentMode",
    "AttachmentPlan",
    "AuditRules",
    "BytecodeLevel",
    "ClassLayout",
    "ConfigurationError",
    "DuplicateEnvironmentError",
    "EnvironmentPhase",
    "EnvironmentSpec",
    "ErrorKind",
    "ExecutionResult",
    "HarnessError",
    "IncompatibleEnvironmentError",
    "InfrastructureError",
    "LaunchContext",
    "MatrixDeclarationError",
    "Outcome",
    "OutcomeStatus",
    "RegistryFrozenError",
    "Report",
    "ResolutionError",
    "ResolvedArtifact",
    "UnknownEnvironmentError",
]
