"""
compat-matrix — static symbol audit of published jars

File: src/compat_matrix/audit/auditor.py

Purpose
- Inspect a resolved jar as a zip container and report forbidden symbols
  (for example ``kotlinx.atomicfu`` classes that must have been inlined away)
  and required resources missing from the publication.

Functional requirements
- Every offending entry is reported, not only the first.
- Class entries are matched by fully-qualified name and by raw path, so
  ``kotlinx.atomicfu`` and ``kotlinx/atomicfu`` are equivalent prefixes.
- Multi-release entries (``META-INF/versions/<N>/...``) are matched by the
  name they shadow.
- An unreadable container is an infrastructure error, never a violation.
"""

from __future__ import annotations

import re
import zipfile
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Final

from compat_matrix.domain.errors import ArtifactContainerError
from compat_matrix.domain.models import ArtifactCoordinate, AuditRules, ResolvedArtifact

_MULTI_RELEASE_RE: Final[re.Pattern[str]] = re.compile(r"^META-INF/versions/\d+/")
_CLASS_SUFFIX: Final[str] = ".class"


class ViolationKind(StrEnum):
    FORBIDDEN_SYMBOL = "forbidden symbol"
    MISSING_RESOURCE = "missing resource"


@dataclass(frozen=True, slots=True)
class AuditViolation:
    kind: ViolationKind
    subject: str

    @property
    def diagnostic(self) -> str:
        return f"{self.kind.value}: {self.subject}"


@dataclass(frozen=True, slots=True)
class AuditReport:
    """Violations found in one artifact, in container order then resource order."""

    coordinate: ArtifactCoordinate
    path: Path
    violations: tuple[AuditViolation, ...] = ()
    entries_scanned: int = 0

    @property
    def clean(self) -> bool:
        return not self.violations

    @property
    def diagnostics(self) -> tuple[str, ...]:
        return tuple(item.diagnostic for item in self.violations)

    def to_dict(self) -> dict[str, object]:
        return {
            "coordinate": self.coordinate.notation,
            "path": str(self.path),
            "entries_scanned": self.entries_scanned,
            "violations": [item.diagnostic for item in self.violations],
        }


def symbol_name(entry: str) -> str:
    """Map a container entry to the dotted name it defines.

    ``META-INF/versions/9/kotlinx/coroutines/Job.class`` -> ``kotlinx.coroutines.Job``.
    Non-class entries keep their suffix.
    """

    name = _MULTI_RELEASE_RE.sub("", entry)
    name = name.removesuffix(_CLASS_SUFFIX)
    return name.replace("/", ".")


def normalize_prefix(prefix: str) -> str:
    return prefix.strip().strip("/").replace("/", ".")


class SymbolAuditor:
    """Stateless jar auditor; safe to share across concurrent environments."""

    def audit(self, artifact: ResolvedArtifact, rules: AuditRules) -> AuditReport:
        entries = _read_entries(artifact.path)
        violations: list[AuditViolation] = []

        prefixes = tuple(
            sorted({normalize_prefix(item) for item in rules.forbidden_symbol_prefixes})
        )
        if prefixes:
            violations.extend(_forbidden_symbols(entries, prefixes))

        present = set(entries)
        for resource in sorted(rules.required_resource_paths):
            if resource not in present:
                violations.append(AuditViolation(ViolationKind.MISSING_RESOURCE, resource))

        return AuditReport(
            coordinate=artifact.coordinate,
            path=artifact.path,
            violations=tuple(violations),
            entries_scanned=len(entries),
        )

    def audit_all(
        self, artifacts: Iterable[ResolvedArtifact], rules: AuditRules
    ) -> tuple[AuditReport, ...]:
        """Audit every artifact the rules apply to, in the given order."""

        return tuple(
            self.audit(artifact, rules)
            for artifact in artifacts
            if rules.applies_to(artifact.coordinate)
        )


def _forbidden_symbols(
    entries: Iterable[str], prefixes: tuple[str, ...]
) -> Iterable[AuditViolation]:
    for entry in entries:
        if entry.endswith("/"):
            continue
        dotted = symbol_name(entry)
        raw = entry.replace("/", ".")
        if any(dotted.startswith(prefix) or raw.startswith(prefix) for prefix in prefixes):
            yield AuditViolation(ViolationKind.FORBIDDEN_SYMBOL, entry)


def _read_entries(path: Path) -> tuple[str, ...]:
    try:
        with zipfile.ZipFile(path) as archive:
            return tuple(archive.namelist())
    except (OSError, zipfile.BadZipFile) as exc:
        raise ArtifactContainerError(f"cannot read {path}: {exc}") from exc


__all__ = [
    "AuditReport",
    "AuditViolation",
    "SymbolAuditor",
    "ViolationKind",
    "normalize_prefix",
    "symbol_name",
]
