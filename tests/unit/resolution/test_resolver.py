"""Unit tests for Maven-layout artifact resolution."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from compat_matrix.domain.errors import ArtifactAmbiguousError, ArtifactNotFoundError
from compat_matrix.domain.models import ArtifactCoordinate, ResolvedArtifact
from compat_matrix.resolution.resolver import (
    CachingResolver,
    LocalRepositoryResolver,
    sha256_file,
)


def _publish(root: Path, notation: str, payload: bytes = b"jar") -> Path:
    coordinate = ArtifactCoordinate.parse(notation)
    target = root.joinpath(*coordinate.group.split("."), coordinate.name, coordinate.version)
    target.mkdir(parents=True, exist_ok=True)
    jar = target / coordinate.file_name
    jar.write_bytes(payload)
    return jar


def test_resolves_from_maven_layout(tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    jar = _publish(repo, "org.jetbrains.kotlinx:kotlinx-coroutines-core-jvm:1.9.0", b"core-bytes")
    resolver = LocalRepositoryResolver([repo])

    resolved = resolver.resolve(
        ArtifactCoordinate.parse("org.jetbrains.kotlinx:kotlinx-coroutines-core-jvm:1.9.0")
    )

    assert resolved.path == jar.resolve()
    assert resolved.size_bytes == len(b"core-bytes")
    assert resolved.sha256 == hashlib.sha256(b"core-bytes").hexdigest()


def test_first_repository_wins(tmp_path: Path) -> None:
    snapshots = tmp_path / "snapshots"
    releases = tmp_path / "releases"
    preferred = _publish(snapshots, "org.example:core:1.0", b"snapshot")
    _publish(releases, "org.example:core:1.0", b"release")

    resolved = LocalRepositoryResolver([snapshots, releases]).resolve(
        ArtifactCoordinate.parse("org.example:core:1.0")
    )

    assert resolved.path == preferred.resolve()


def test_missing_artifact_raises_not_found(tmp_path: Path) -> None:
    resolver = LocalRepositoryResolver([tmp_path])

    with pytest.raises(ArtifactNotFoundError) as excinfo:
        resolver.resolve(ArtifactCoordinate.parse("org.example:core:1.0"))

    assert excinfo.value.diagnostic.startswith("NotFound: org.example:core:1.0")


def test_prefix_selector_resolves_single_match(tmp_path: Path) -> None:
    jar = _publish(tmp_path, "org.example:core:1.8.1")
    _publish(tmp_path, "org.example:core:2.0.0")

    resolved = LocalRepositoryResolver([tmp_path]).resolve(
        ArtifactCoordinate.parse("org.example:core:1.8+")
    )

    assert resolved.coordinate.version == "1.8.1"
    assert resolved.path == jar.resolve()


def test_prefix_selector_with_several_matches_is_ambiguous(tmp_path: Path) -> None:
    _publish(tmp_path, "org.example:core:1.8.0")
    _publish(tmp_path, "org.example:core:1.8.1")

    with pytest.raises(ArtifactAmbiguousError, match="2 versions"):
        LocalRepositoryResolver([tmp_path]).resolve(
            ArtifactCoordinate.parse("org.example:core:1.8+")
        )


def test_prefix_selector_without_match_is_not_found(tmp_path: Path) -> None:
    _publish(tmp_path, "org.example:core:2.0.0")

    with pytest.raises(ArtifactNotFoundError):
        LocalRepositoryResolver([tmp_path]).resolve(
            ArtifactCoordinate.parse("org.example:core:1.+")
        )


def test_resolver_requires_a_repository() -> None:
    with pytest.raises(ValueError):
        LocalRepositoryResolver([])


class _CountingResolver:
    def __init__(self, path: Path) -> None:
        self.path = path
        self.calls = 0
        self.fail_first = False

    def resolve(self, coordinate: ArtifactCoordinate) -> ResolvedArtifact:
        self.calls += 1
        if self.fail_first and self.calls == 1:
            raise ArtifactNotFoundError(str(coordinate))
        return ResolvedArtifact(coordinate=coordinate, path=self.path, size_bytes=1, sha256="x")


def test_caching_resolver_memoises_success(tmp_path: Path) -> None:
    inner = _CountingResolver(tmp_path / "core.jar")
    resolver = CachingResolver(inner)
    coordinate = ArtifactCoordinate.parse("org.example:core:1.0")

    first = resolver.resolve(coordinate)
    second = resolver.resolve(coordinate)

    assert first is second
    assert inner.calls == 1
    assert resolver.cached_coordinates() == (coordinate,)


def test_caching_resolver_retries_failures(tmp_path: Path) -> None:
    inner = _CountingResolver(tmp_path / "core.jar")
    inner.fail_first = True
    resolver = CachingResolver(inner)
    coordinate = ArtifactCoordinate.parse("org.example:core:1.0")

    with pytest.raises(ArtifactNotFoundError):
        resolver.resolve(coordinate)
    assert resolver.resolve(coordinate).path == tmp_path / "core.jar"
    assert inner.calls == 2


def test_sha256_file_reads_in_chunks(tmp_path: Path) -> None:
    target = tmp_path / "blob.bin"
    payload = b"a" * 10_000
    target.write_bytes(payload)

    assert sha256_file(target, chunk_size=7) == hashlib.sha256(payload).hexdigest()
