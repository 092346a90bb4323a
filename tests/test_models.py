"""Tests for data models, settings and logging setup."""

import pytest
import structlog
from pydantic import ValidationError

from specforge.config import OrchestratorSettings
from specforge.errors import GraphValidationError
from specforge.log import configure_logging
from specforge.models import (
    Architecture,
    FileTree,
    GenerationPhase,
    GenerationPlan,
    GenerationTask,
    Package,
    Relationship,
    Specification,
    TaskType,
    canonical_json,
)


class TestSpecification:
    """Snapshot identity and integrity."""

    def test_canonical_json_is_key_order_independent(self):
        assert canonical_json({"b": 1, "a": [2, {"d": 3, "c": 4}]}) == canonical_json(
            {"a": [2, {"c": 4, "d": 3}], "b": 1}
        )

    def test_hash_ignores_recorded_hash(self, sample_spec: Specification):
        before = sample_spec.compute_hash()
        sample_spec.metadata.hash = "something"

        assert sample_spec.compute_hash() == before
        assert len(before) == 64

    def test_hash_tracks_content(self, sample_spec: Specification):
        updated = sample_spec.model_copy(deep=True)
        updated.data_model.entities[0].attributes["age"] = "int"

        assert updated.compute_hash() != sample_spec.compute_hash()

    def test_validate_snapshot_accepts_matching_hash(self, sample_spec: Specification):
        sample_spec.metadata.hash = sample_spec.compute_hash()

        sample_spec.validate_snapshot()

    def test_validate_snapshot_rejects_hash_mismatch(self, sample_spec: Specification):
        sample_spec.metadata.hash = "0" * 64

        with pytest.raises(GraphValidationError, match="hash mismatch"):
            sample_spec.validate_snapshot()

    def test_validate_snapshot_rejects_package_cycle(self):
        spec = Specification(
            architecture=Architecture(
                packages=[
                    Package(name="a", dependencies=["b"]),
                    Package(name="b", dependencies=["c"]),
                    Package(name="c", dependencies=["a"]),
                ],
            ),
        )

        with pytest.raises(GraphValidationError) as exc_info:
            spec.validate_snapshot()

        assert exc_info.value.cycle == ["a", "b", "c", "a"]

    def test_self_dependent_package_is_a_cycle(self):
        spec = Specification(architecture=Architecture(packages=[Package(name="a", dependencies=["a"])]))

        assert spec.find_package_cycle() == ["a", "a"]

    def test_relationship_wire_names(self):
        rel = Relationship.model_validate({"from": "Order", "to": "User", "type": "belongs_to"})

        assert (rel.from_entity, rel.to_entity) == ("Order", "User")
        assert rel.model_dump(by_alias=True)["from"] == "Order"

    def test_json_round_trip(self, sample_spec: Specification):
        restored = Specification.model_validate_json(sample_spec.model_dump_json(by_alias=True))

        assert restored == sample_spec
        assert restored.api_contracts[0].key == "POST /users"


class TestGenerationPlan:
    """Plan helpers and validation."""

    def test_file_tasks_skip_commands(self, sample_plan: GenerationPlan):
        assert [task.id for task in sample_plan.file_tasks()] == ["t-user", "t-product", "t-cart", "t-handler"]
        assert sample_plan.get_task_by_id("t-readme").type == TaskType.RUN_COMMAND
        assert sample_plan.get_task_by_id("missing") is None

    def test_find_task_for_file_falls_back_to_base_name(self, sample_plan: GenerationPlan):
        assert sample_plan.find_task_for_file("models/user.go").id == "t-user"
        assert sample_plan.find_task_for_file("other/dir/product.go").id == "t-product"
        assert sample_plan.find_task_for_file("nope.go") is None

    def test_valid_plan(self, sample_plan: GenerationPlan):
        sample_plan.validate_plan()
        assert not sample_plan.has_cyclic_dependencies()

    def test_phase_cycle(self):
        plan = GenerationPlan(
            phases=[
                GenerationPhase(name="a", dependencies=["b"]),
                GenerationPhase(name="b", dependencies=["a"]),
            ],
        )

        assert plan.has_cyclic_dependencies()
        with pytest.raises(GraphValidationError, match="generation phases"):
            plan.validate_plan()

    @pytest.mark.parametrize("path", ["../outside.go", "a/../../outside.go", "/etc/passwd"])
    def test_paths_must_stay_within_root(self, path: str):
        plan = GenerationPlan(phases=[GenerationPhase(name="p", tasks=[GenerationTask(id="t", target_path=path)])])

        with pytest.raises(GraphValidationError, match="outside root"):
            plan.validate_plan()

    def test_absolute_path_under_root(self):
        plan = GenerationPlan(
            file_tree=FileTree(root="/srv/out"),
            phases=[GenerationPhase(name="p", tasks=[GenerationTask(id="t", target_path="/srv/out/main.go")])],
        )

        plan.validate_plan()

    def test_parallel_tasks_cannot_share_a_target(self):
        plan = GenerationPlan(
            phases=[
                GenerationPhase(
                    name="p",
                    tasks=[
                        GenerationTask(id="t1", target_path="main.go"),
                        GenerationTask(id="t2", target_path="main.go"),
                    ],
                ),
            ],
        )

        with pytest.raises(GraphValidationError, match="same file: main.go"):
            plan.validate_plan()

    def test_sequential_tasks_may_share_a_target(self):
        plan = GenerationPlan(
            phases=[
                GenerationPhase(
                    name="p",
                    tasks=[
                        GenerationTask(id="t1", target_path="main.go"),
                        GenerationTask(id="t2", target_path="main.go", can_parallel=False),
                    ],
                ),
            ],
        )

        plan.validate_plan()

    def test_task_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            GenerationTask(id="t", target_path="a.go", timeout=0)


class TestSettings:
    """Environment-driven configuration."""

    def test_defaults(self):
        settings = OrchestratorSettings(_env_file=None)

        assert settings.max_parallel == 4
        assert settings.deterministic_output is True
        assert settings.context_max_depth == 5
        assert settings.state_dir_name == ".specforge"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SPECFORGE_MAX_PARALLEL", "8")
        monkeypatch.setenv("SPECFORGE_CACHE_ENABLED", "false")
        monkeypatch.setenv("SPECFORGE_RUN_TIMEOUT_SECONDS", "30")

        settings = OrchestratorSettings(_env_file=None)

        assert settings.max_parallel == 8
        assert settings.cache_enabled is False
        assert settings.run_timeout_seconds == 30.0

    def test_rejects_zero_parallelism(self):
        with pytest.raises(ValidationError):
            OrchestratorSettings(_env_file=None, max_parallel=0)


class TestLogging:
    """structlog configuration."""

    def teardown_method(self):
        structlog.reset_defaults()

    def test_json_renderer(self):
        configure_logging("debug", json_output=True)

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_console_renderer(self):
        configure_logging("warning")

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)
