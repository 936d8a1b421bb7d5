"""Static audit of resolved jars."""

from compat_matrix.audit.auditor import (
    AuditReport,
    AuditViolation,
    SymbolAuditor,
    ViolationKind,
    normalize_prefix,
    symbol_name,
)

__all__ = [
    "AuditReport",
    "AuditViolation",
    "SymbolAuditor",
    "ViolationKind",
    "normalize_prefix",
    "symbol_name",
]
