"""Test-execution collaborators."""

from compat_matrix.execution.executor import (
    CommandBuilder,
    JvmProcessExecutor,
    VerificationExecutor,
)

__all__ = ["CommandBuilder", "JvmProcessExecutor", "VerificationExecutor"]
