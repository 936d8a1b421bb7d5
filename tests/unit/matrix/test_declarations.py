"""
compat-matrix — unit tests for matrix declarations

File: tests/unit/matrix/test_declarations.py

Purpose
- Validate the built-in kotlinx.coroutines matrix and YAML matrix loading,
  including placeholder substitution and declaration errors.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from compat_matrix.domain.errors import DuplicateEnvironmentError, MatrixDeclarationError
from compat_matrix.domain.models import AttachmentMode, BytecodeLevel, ClassLayout
from compat_matrix.matrix.declarations import default_matrix, load_matrix_file, parse_matrix

VARIABLES: dict[str, str | None] = {
    "coroutines_version": "1.9.0",
    "kotlin_version": "2.0.0",
    "asm_version": "9.3",
}

SAMPLES_DIR = Path(__file__).resolve().parents[3] / "samples"


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_default_matrix_declares_release_environments_in_order() -> None:
    declaration = default_matrix(VARIABLES)

    assert [spec.id for spec in declaration.environments] == [
        "jvmCoreTest",
        "debugDynamicAgentTest",
        "mavenTest",
        "debugAgentTest",
        "coreAgentTest",
        "jpmsTest",
        "java8Test",
    ]
    assert declaration.release_group == "org.jetbrains.kotlinx"
    assert [item.notation for item in declaration.shared_artifacts] == [
        "org.jetbrains.kotlin:kotlin-stdlib:2.0.0",
        "org.jetbrains.kotlin:kotlin-test:2.0.0",
        "org.jetbrains.kotlin:kotlin-test-junit:2.0.0",
        "org.ow2.asm:asm:9.3",
    ]


def test_default_matrix_environment_shapes() -> None:
    registry = default_matrix(VARIABLES).build_registry()

    assert registry.frozen
    debug_agent = registry.get("debugAgentTest")
    assert debug_agent.attachment_mode is AttachmentMode.STATIC_AGENT
    assert debug_agent.agent_artifact == "kotlinx-coroutines-debug"
    assert debug_agent.bytecode_level is BytecodeLevel.JVM_1_8
    # Unset property drops the system property value.
    assert debug_agent.system_properties == {"kotlinx.coroutines.debug": None}

    dynamic = registry.get("debugDynamicAgentTest")
    assert dynamic.attachment_mode is AttachmentMode.DYNAMIC_AGENT

    jpms = registry.get("jpmsTest")
    assert jpms.layout is ClassLayout.MODULE_PATH
    assert jpms.bytecode_level is BytecodeLevel.JVM_11

    maven = registry.get("mavenTest")
    assert maven.audit is not None
    assert maven.audit.forbidden_symbol_prefixes == frozenset({"kotlinx.atomicfu"})
    assert maven.audit.required_resource_paths == frozenset({"META-INF/MANIFEST.MF"})
    assert maven.environment == {"version": "1.9.0"}

    core = registry.get("jvmCoreTest")
    guava = core.artifacts[1]
    assert guava.name == "guava"
    assert guava.version_override is True
    assert registry.version_drift("1.9.0", group="org.jetbrains.kotlinx") == ()


def test_properties_flow_into_placeholders() -> None:
    declaration = default_matrix({**VARIABLES, "kotlinx.coroutines.debug": "true"})
    debug_agent = next(spec for spec in declaration.environments if spec.id == "debugAgentTest")

    assert debug_agent.system_properties == {"kotlinx.coroutines.debug": "true"}


def test_embedded_placeholder_requires_variable() -> None:
    payload = {
        "environments": [
            {"id": "jvmCoreTest", "artifacts": ["org.example:core:${missing_version}"]},
        ]
    }

    with pytest.raises(MatrixDeclarationError, match="missing_version"):
        parse_matrix(payload, VARIABLES)


def test_duplicate_environment_ids_fail_when_building_registry() -> None:
    payload = {
        "environments": [
            {"id": "jvmCoreTest", "artifacts": ["org.example:core:1.0"]},
            {"id": "jvmCoreTest", "artifacts": ["org.example:core:1.0"]},
        ]
    }
    declaration = parse_matrix(payload, VARIABLES)

    with pytest.raises(DuplicateEnvironmentError, match="DuplicateId|already registered"):
        declaration.build_registry()


@pytest.mark.parametrize(
    ("payload", "fragment"),
    [
        ([], "top level must be a mapping"),
        ({"environments": []}, "non-empty list"),
        ({"schema_version": 99, "environments": []}, "unsupported schema_version"),
        ({"environments": [{"id": "x", "artifacts": ["a:b:1"], "colour": "red"}]}, "unknown keys"),
        ({"environments": [{"id": "x", "artifacts": ["not-a-coordinate"]}]}, "group:name:version"),
        (
            {
                "environments": [
                    {"id": "x", "artifacts": ["a:b:1"], "attachment_mode": "static_agent"}
                ]
            },
            "requires agent_artifact",
        ),
        (
            {"environments": [{"id": "x", "artifacts": ["a:b:1"], "audit": {"bogus": []}}]},
            "unknown",
        ),
        (
            {"environments": [{"id": "x", "artifacts": ["a:b:1"], "test_classes": [""]}]},
            "non-empty path",
        ),
    ],
)
def test_parse_matrix_rejects_invalid_declarations(payload: object, fragment: str) -> None:
    with pytest.raises(MatrixDeclarationError, match=fragment):
        parse_matrix(payload, VARIABLES)


def test_load_matrix_file_reads_yaml(tmp_path: Path) -> None:
    matrix_path = _write(
        tmp_path / "matrix.yaml",
        """
schema_version: 1
release_group: org.example
shared_artifacts:
  - org.example:test-support:${coroutines_version}
environments:
  - id: coreTest
    artifacts:
      - org.example:core:${coroutines_version}
    jvm_flags: ["-ea"]
    environment:
      version: ${coroutines_version}
  - id: agentTest
    artifacts:
      - org.example:core:${coroutines_version}
      - org.example:agent:${coroutines_version}
    attachment_mode: static_agent
    agent_artifact: agent
    audit:
      artifacts: [agent]
      forbidden_symbol_prefixes: [org/example/internal]
""".lstrip(),
    )

    declaration = load_matrix_file(matrix_path, VARIABLES)

    assert declaration.source == str(matrix_path)
    assert [spec.id for spec in declaration.environments] == ["coreTest", "agentTest"]
    core, agent = declaration.environments
    assert core.jvm_flags == ("-ea",)
    assert core.environment == {"version": "1.9.0"}
    assert agent.audit is not None
    assert agent.audit.artifact_names == ("agent",)
    assert declaration.shared_artifacts[0].notation == "org.example:test-support:1.9.0"


def test_load_matrix_file_wraps_io_and_yaml_errors(tmp_path: Path) -> None:
    with pytest.raises(MatrixDeclarationError, match="cannot read"):
        load_matrix_file(tmp_path / "absent.yaml", VARIABLES)

    broken = _write(tmp_path / "broken.yaml", "environments: [unclosed\n")
    with pytest.raises(MatrixDeclarationError, match="invalid YAML"):
        load_matrix_file(broken, VARIABLES)


def test_sample_matrix_matches_builtin_matrix() -> None:
    sample = load_matrix_file(SAMPLES_DIR / "matrix.yaml", VARIABLES)
    builtin = default_matrix(VARIABLES, base_dir=SAMPLES_DIR)

    assert sample.environments == builtin.environments
    assert sample.shared_artifacts == builtin.shared_artifacts


def test_audit_scoped_to_undeclared_artifact_is_rejected() -> None:
    payload = {
        "environments": [
            {
                "id": "mavenTest",
                "artifacts": ["org.jetbrains.kotlinx:kotlinx-coroutines-core-jvm:1.9.0"],
                "audit": {
                    "artifacts": ["kotlinx-coroutines-core"],
                    "forbidden_symbol_prefixes": ["kotlinx.atomicfu"],
                },
            }
        ]
    }

    with pytest.raises(MatrixDeclarationError, match="undeclared artifacts") as excinfo:
        parse_matrix(payload, VARIABLES)

    assert "kotlinx-coroutines-core-jvm" in str(excinfo.value)


def test_test_classes_resolve_against_matrix_directory(tmp_path: Path) -> None:
    matrix_path = _write(
        tmp_path / "matrix.yaml",
        """
environments:
  - id: coreTest
    artifacts: [org.example:core:1.0]
    test_classes: [build/classes/kotlin/coreTest, /abs/fixtures.jar]
  - id: otherTest
    artifacts: [org.example:core:1.0]
""".lstrip(),
    )

    core, other = load_matrix_file(matrix_path, VARIABLES).environments

    assert core.test_classes == (
        tmp_path / "build" / "classes" / "kotlin" / "coreTest",
        Path("/abs/fixtures.jar"),
    )
    assert other.test_classes == ()


def test_builtin_environments_have_distinct_test_classes() -> None:
    environments = default_matrix(VARIABLES).environments

    assert [spec.test_classes for spec in environments] == [
        (Path("build/classes/kotlin") / spec.id,) for spec in environments
    ]
