"""
compat-matrix — artifact resolution

File: src/compat_matrix/resolution/resolver.py

Purpose
- Define the resolver contract consumed by the matrix runner and provide a
  resolver over local Maven-layout repositories (``~/.m2/repository`` style),
  plus a thread-safe memoising wrapper.

Contract
- ``resolve(coordinate)`` returns a ``ResolvedArtifact`` or raises
  ``ArtifactNotFoundError`` / ``ArtifactAmbiguousError``.
- Resolution is idempotent and side-effect free from the caller's side; the
  runner may call it repeatedly for the same coordinate from several
  environments, possibly concurrently.
"""

from __future__ import annotations

import hashlib
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from compat_matrix.domain.errors import ArtifactAmbiguousError, ArtifactNotFoundError
from compat_matrix.domain.models import ArtifactCoordinate, ResolvedArtifact

_FILE_READ_CHUNK_BYTES = 1024 * 1024


@runtime_checkable
class ArtifactResolver(Protocol):
    """Supplies located binaries by coordinate."""

    def resolve(self, coordinate: ArtifactCoordinate) -> ResolvedArtifact: ...


class LocalRepositoryResolver:
    """Resolve coordinates against Maven-layout directories in precedence order.

    The first repository that holds the file wins, the way Gradle walks its
    repository list. A version ending in ``+`` is a prefix selector; it
    resolves only when exactly one version directory matches.
    """

    def __init__(self, repositories: Sequence[str | Path]) -> None:
        if not repositories:
            raise ValueError("at least one repository root is required")
        self._repositories = tuple(Path(item).expanduser() for item in repositories)

    @property
    def repositories(self) -> tuple[Path, ...]:
        return self._repositories

    def resolve(self, coordinate: ArtifactCoordinate) -> ResolvedArtifact:
        if coordinate.is_dynamic_version:
            coordinate = self._select_version(coordinate)

        for root in self._repositories:
            candidate = _artifact_dir(root, coordinate) / coordinate.file_name
            if candidate.is_file():
                return _describe(coordinate, candidate)

        searched = ", ".join(str(root) for root in self._repositories)
        raise ArtifactNotFoundError(f"{coordinate} ({coordinate.file_name}) not in [{searched}]")

    def _select_version(self, coordinate: ArtifactCoordinate) -> ArtifactCoordinate:
        prefix = coordinate.version[:-1]
        versions: set[str] = set()
        for root in self._repositories:
            module_dir = _module_dir(root, coordinate)
            if not module_dir.is_dir():
                continue
            for child in module_dir.iterdir():
                if not child.is_dir() or not child.name.startswith(prefix):
                    continue
                candidate = ArtifactCoordinate(
                    group=coordinate.group,
                    name=coordinate.name,
                    version=child.name,
                    classifier=coordinate.classifier,
                )
                if (child / candidate.file_name).is_file():
                    versions.add(child.name)

        if not versions:
            raise ArtifactNotFoundError(
                f"no version of {coordinate} matches {coordinate.version!r}"
            )
        if len(versions) > 1:
            raise ArtifactAmbiguousError(
                f"{coordinate} matches {len(versions)} versions: {sorted(versions)}"
            )
        return ArtifactCoordinate(
            group=coordinate.group,
            name=coordinate.name,
            version=versions.pop(),
            classifier=coordinate.classifier,
            version_override=coordinate.version_override,
        )


class CachingResolver:
    """Memoise successful resolutions; failures are retried on the next call."""

    def __init__(self, inner: ArtifactResolver) -> None:
        self._inner = inner
        self._lock = threading.Lock()
        self._cache: dict[ArtifactCoordinate, ResolvedArtifact] = {}

    def resolve(self, coordinate: ArtifactCoordinate) -> ResolvedArtifact:
        with self._lock:
            cached = self._cache.get(coordinate)
        if cached is not None:
            return cached

        resolved = self._inner.resolve(coordinate)
        with self._lock:
            return self._cache.setdefault(coordinate, resolved)

    def cached_coordinates(self) -> tuple[ArtifactCoordinate, ...]:
        with self._lock:
            return tuple(self._cache)


def sha256_file(path: Path, *, chunk_size: int = _FILE_READ_CHUNK_BYTES) -> str:
    """Return SHA-256 hex digest for a file read in chunks."""

    digest = hashlib.sha256()
    with path.open("rb") as handle:
        while chunk := handle.read(chunk_size):
            digest.update(chunk)
    return digest.hexdigest()


def _module_dir(root: Path, coordinate: ArtifactCoordinate) -> Path:
    return root.joinpath(*coordinate.group.split("."), coordinate.name)


def _artifact_dir(root: Path, coordinate: ArtifactCoordinate) -> Path:
    return _module_dir(root, coordinate) / coordinate.version


def _describe(coordinate: ArtifactCoordinate, path: Path) -> ResolvedArtifact:
    return ResolvedArtifact(
        coordinate=coordinate,
        path=path.resolve(),
        size_bytes=path.stat().st_size,
        sha256=sha256_file(path),
    )


__all__ = [
    "ArtifactResolver",
    "CachingResolver",
    "LocalRepositoryResolver",
    "sha256_file",
]
