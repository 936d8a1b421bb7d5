"""Artifact resolution contract and local-repository implementations."""

from compat_matrix.resolution.resolver import (
    ArtifactResolver,
    CachingResolver,
    LocalRepositoryResolver,
    sha256_file,
)

__all__ = [
    "ArtifactResolver",
    "CachingResolver",
    "LocalRepositoryResolver",
    "sha256_file",
]
