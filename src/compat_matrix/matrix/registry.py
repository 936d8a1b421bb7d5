"""Ordered registry of declared verification environments."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from compat_matrix.domain.errors import (
    DuplicateEnvironmentError,
    RegistryFrozenError,
    UnknownEnvironmentError,
)
from compat_matrix.domain.models import ArtifactCoordinate, EnvironmentSpec


@dataclass(frozen=True, slots=True)
class VersionDrift:
    """An artifact pinned to a version other than the release under test."""

    environment_id: str
    coordinate: ArtifactCoordinate
    expected_version: str

    def describe(self) -> str:
        return (
            f"{self.environment_id}: {self.coordinate} does not match release "
            f"version {self.expected_version}"
        )


class EnvironmentRegistry:
    """Declaration-ordered, write-once registry.

    Specs are registered during initialization, then the registry is frozen and
    shared read-only with the runner.
    """

    def __init__(self, specs: Iterable[EnvironmentSpec] = ()) -> None:
        self._lock = threading.Lock()
        self._specs: dict[str, EnvironmentSpec] = {}
        self._frozen = False
        for spec in specs:
            self.register(spec)

    def register(self, spec: EnvironmentSpec) -> None:
        if not isinstance(spec, EnvironmentSpec):
            raise TypeError(f"expected EnvironmentSpec, got {type(spec).__name__}")
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"cannot register {spec.id!r} after the registry is frozen"
                )
            if spec.id in self._specs:
                raise DuplicateEnvironmentError(spec.id)
            self._specs[spec.id] = spec

    def freeze(self) -> EnvironmentRegistry:
        with self._lock:
            self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def all(self) -> tuple[EnvironmentSpec, ...]:
        with self._lock:
            return tuple(self._specs.values())

    def ids(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._specs)

    def get(self, environment_id: str) -> EnvironmentSpec:
        with self._lock:
            spec = self._specs.get(environment_id)
        if spec is None:
            raise UnknownEnvironmentError([environment_id], self.ids())
        return spec

    def select(self, environment_ids: Sequence[str] | None) -> tuple[EnvironmentSpec, ...]:
        """Return the requested specs in declaration order; ``None`` selects all."""

        if environment_ids is None:
            return self.all()
        wanted = set(environment_ids)
        known = self.ids()
        unknown = sorted(wanted.difference(known))
        if unknown:
            raise UnknownEnvironmentError(unknown, known)
        return tuple(spec for spec in self.all() if spec.id in wanted)

    def version_drift(self, release_version: str, *, group: str) -> tuple[VersionDrift, ...]:
        """Report artifacts of ``group`` whose version is not ``release_version``.

        Coordinates declared with an explicit version override are exempt.
        """

        drift: list[VersionDrift] = []
        for spec in self.all():
            for coordinate in spec.artifacts:
                if coordinate.group != group or coordinate.version_override:
                    continue
                if coordinate.version != release_version:
                    drift.append(
                        VersionDrift(
                            environment_id=spec.id,
                            coordinate=coordinate,
                            expected_version=release_version,
                        )
                    )
        return tuple(drift)

    def __contains__(self, environment_id: object) -> bool:
        with self._lock:
            return environment_id in self._specs

    def __len__(self) -> int:
        with self._lock:
            return len(self._specs)


__all__ = ["EnvironmentRegistry", "VersionDrift"]
