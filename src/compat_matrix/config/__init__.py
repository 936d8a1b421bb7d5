"""Run configuration: ``matrix.toml`` schema, defaults and layered loading."""

from compat_matrix.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    effective_config,
    effective_repositories,
    env_var_name,
    kotlin_version,
    load_config,
    matrix_variables,
    release_version,
    snapshot_versions,
    uses_snapshot_versions,
)
from compat_matrix.config.schema import (
    CONFIG_FIELDS,
    ConfigValidationError,
    ConfigValidationIssue,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    validate_config,
)

__all__ = [
    "CONFIG_FIELDS",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "effective_config",
    "effective_repositories",
    "env_var_name",
    "kotlin_version",
    "load_config",
    "matrix_variables",
    "merge_config",
    "redact_config",
    "release_version",
    "snapshot_versions",
    "uses_snapshot_versions",
    "validate_config",
]
