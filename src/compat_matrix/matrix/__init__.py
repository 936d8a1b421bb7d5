"""Environment registry, declarations, runner, and result aggregation."""

from compat_matrix.matrix.aggregator import (
    aggregate,
    outcome_records,
    utc_now,
    write_outcome_records,
)
from compat_matrix.matrix.declarations import (
    DEFAULT_MATRIX,
    MatrixDeclaration,
    default_matrix,
    load_matrix_file,
    parse_matrix,
)
from compat_matrix.matrix.registry import EnvironmentRegistry, VersionDrift
from compat_matrix.matrix.runner import MatrixRunner, RunnerOptions

__all__ = [
    "DEFAULT_MATRIX",
    "EnvironmentRegistry",
    "MatrixDeclaration",
    "MatrixRunner",
    "RunnerOptions",
    "VersionDrift",
    "aggregate",
    "default_matrix",
    "load_matrix_file",
    "outcome_records",
    "parse_matrix",
    "utc_now",
    "write_outcome_records",
]
