"""Tests for change detection and affected-file calculation."""

import pytest
from pydantic import ValidationError

from specforge.engine.change_detector import (
    AffectedFilesCalculator,
    ChangeDetector,
    package_equals,
    to_snake_case,
)
from specforge.models import (
    APIContract,
    Architecture,
    BuildConfig,
    ChangeSet,
    DataModel,
    Entity,
    FunctionalRequirement,
    NonFunctionalRequirement,
    Package,
    Specification,
)


@pytest.fixture
def detector() -> ChangeDetector:
    return ChangeDetector()


class TestDetectChanges:
    """Per-category diffing."""

    def test_identical_snapshots_have_no_changes(self, detector: ChangeDetector, sample_spec: Specification):
        changes = detector.detect_changes(sample_spec, sample_spec.model_copy(deep=True))

        assert not changes.has_changes
        assert all(value in (0, False) for key, value in changes.summary().items())

    def test_first_generation(self, detector: ChangeDetector, sample_spec: Specification):
        changes = detector.detect_changes(None, sample_spec)

        assert changes.has_changes
        assert changes.first_generation
        assert changes.added_entities == ["User", "Product", "Cart"]
        assert changes.added_api_contracts == ["POST /users", "GET /products"]

    def test_requirement_changes(self, detector: ChangeDetector, sample_spec: Specification):
        new = sample_spec.model_copy(deep=True)
        new.requirements.functional[0].priority = "low"
        new.requirements.functional.pop(1)
        new.requirements.functional.append(FunctionalRequirement(id="FR-003", description="Checkout"))
        new.requirements.non_functional[0] = NonFunctionalRequirement(
            id="NFR-001", description="p99 latency", type="performance", threshold="100ms"
        )

        changes = detector.detect_changes(sample_spec, new)

        assert [r.id for r in changes.added_requirements] == ["FR-003"]
        assert [r.id for r in changes.modified_requirements] == ["FR-001"]
        assert changes.deleted_requirements == ["FR-002"]
        assert [r.id for r in changes.modified_non_functional_requirements] == ["NFR-001"]

    def test_entity_changes(self, detector: ChangeDetector, sample_spec: Specification):
        new = sample_spec.model_copy(deep=True)
        new.data_model.entities[0].attributes["email"] = "Email"
        new.data_model.entities[1].attributes = {"id": "string", "cost": "float64"}

        changes = detector.detect_changes(sample_spec, new)

        assert changes.modified_entities == ["User", "Product"]
        assert changes.added_entities == []
        assert changes.deleted_entities == []

    def test_api_contract_changes(self, detector: ChangeDetector, sample_spec: Specification):
        new = sample_spec.model_copy(deep=True)
        new.api_contracts[0].response.fields["id"] = "string"
        new.api_contracts.pop(1)
        new.api_contracts.append(APIContract(endpoint="/orders", method="POST"))

        changes = detector.detect_changes(sample_spec, new)

        assert changes.modified_api_contracts == ["POST /users"]
        assert changes.deleted_api_contracts == ["GET /products"]
        assert changes.added_api_contracts == ["POST /orders"]

    def test_whole_section_flags(self, detector: ChangeDetector, sample_spec: Specification):
        new = sample_spec.model_copy(deep=True)
        new.build_config = BuildConfig(language_version="1.23", output_path="./out")

        changes = detector.detect_changes(sample_spec, new)

        assert changes.build_config_changed
        assert not changes.architecture_changed
        assert changes.has_changes
        assert changes.requires_full_regeneration

    def test_package_change_sets_architecture_flag(self, detector: ChangeDetector, sample_spec: Specification):
        new = sample_spec.model_copy(deep=True)
        new.architecture.packages[0].purpose = "Entities"

        changes = detector.detect_changes(sample_spec, new)

        assert [p.name for p in changes.modified_packages] == ["models"]
        assert changes.architecture_changed

    def test_change_set_is_immutable(self, detector: ChangeDetector, sample_spec: Specification):
        changes = detector.detect_changes(None, sample_spec)

        with pytest.raises(ValidationError):
            changes.first_generation = False


class TestPackageEquality:
    """Length plus one-directional containment."""

    def test_reordered_dependencies_are_equal(self):
        a = Package(name="p", dependencies=["x", "y"])
        b = Package(name="p", dependencies=["y", "x"])

        assert package_equals(a, b)

    def test_duplicate_dependencies_are_asymmetric(self):
        with_duplicates = Package(name="p", dependencies=["x", "x"])
        distinct = Package(name="p", dependencies=["x", "y"])

        # Every dependency of the second list must appear in the first
        assert not package_equals(with_duplicates, distinct)
        assert package_equals(distinct, with_duplicates)

    def test_length_mismatch(self):
        assert not package_equals(Package(name="p", dependencies=["x"]), Package(name="p", dependencies=["x", "x"]))


class TestAffectedPackages:
    """Reverse-dependency closure."""

    def test_no_changes_affects_nothing(self, detector: ChangeDetector, sample_spec: Specification):
        assert detector.identify_affected_packages(ChangeSet(), sample_spec.architecture) == []

    def test_modified_package_affects_dependents(self, detector: ChangeDetector, sample_spec: Specification):
        changes = ChangeSet(modified_packages=[sample_spec.architecture.packages[0]])

        affected = detector.identify_affected_packages(changes, sample_spec.architecture)

        assert affected == ["handler", "models", "service"]

    def test_added_package_affects_only_itself(self, detector: ChangeDetector, sample_spec: Specification):
        changes = ChangeSet(added_packages=[Package(name="metrics")])

        assert detector.identify_affected_packages(changes, sample_spec.architecture) == ["metrics"]

    def test_cyclic_dependents_terminate(self, detector: ChangeDetector):
        architecture = Architecture(
            packages=[
                Package(name="a", dependencies=["b"]),
                Package(name="b", dependencies=["a"]),
                Package(name="c", dependencies=["b"]),
            ],
        )
        changes = ChangeSet(deleted_packages=["a"])

        assert detector.identify_affected_packages(changes, architecture) == ["a", "b", "c"]


class TestAffectedFiles:
    """Mapping changes onto generated files."""

    def test_whole_section_change_selects_all_files(self):
        calculator = AffectedFilesCalculator({"a.go": ["User"]})
        changes = ChangeSet(architecture_changed=True, modified_entities=["User"])

        assert calculator.calculate(changes, ["b.go", "a.go", "c.go"]) == ["a.go", "b.go", "c.go"]

    def test_files_depending_on_changed_entities(self):
        calculator = AffectedFilesCalculator({
            "models/user.go": ["User"],
            "service/cart.go": ["Cart", "User"],
            "config/config.go": [],
        })
        changes = ChangeSet(modified_entities=["User"])

        affected = calculator.calculate(changes, ["models/user.go", "service/cart.go", "config/config.go"])

        assert affected == ["models/user.go", "service/cart.go"]

    def test_deleted_entity_matched_by_snake_case_name(self):
        calculator = AffectedFilesCalculator({})
        changes = ChangeSet(deleted_entities=["OrderItem"])

        affected = calculator.calculate(changes, ["models/order_item.go", "models/order.go"])

        assert affected == ["models/order_item.go"]

    def test_deleted_entity_ignores_directory_names(self):
        calculator = AffectedFilesCalculator({})
        changes = ChangeSet(deleted_entities=["Order"])

        affected = calculator.calculate(changes, ["orders/handler.go", "models/user.go", "models/order.go"])

        assert affected == ["models/order.go"]

    def test_summary_reports_first_generation(self):
        assert ChangeSet(first_generation=True).summary()["first_generation"] is True
        assert ChangeSet().summary()["first_generation"] is False

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("User", "user"),
            ("OrderItem", "order_item"),
            ("HTTPServer", "h_t_t_p_server"),
            ("", ""),
        ],
    )
    def test_to_snake_case(self, name: str, expected: str):
        assert to_snake_case(name) == expected


class TestEndToEnd:
    """User modified, Product deleted, Order added."""

    def test_change_set_and_affected_files(self, detector: ChangeDetector):
        old = Specification(
            data_model=DataModel(
                entities=[
                    Entity(name="User", package="models", attributes={"id": "string"}),
                    Entity(name="Product", package="models", attributes={"id": "string"}),
                ],
            ),
        )
        new = Specification(
            data_model=DataModel(
                entities=[
                    Entity(name="User", package="accounts", attributes={"id": "string"}),
                    Entity(name="Order", package="models", attributes={"buyer": "*User"}),
                ],
            ),
        )

        changes = detector.detect_changes(old, new)

        assert changes.added_entities == ["Order"]
        assert changes.modified_entities == ["User"]
        assert changes.deleted_entities == ["Product"]
        assert changes.has_changes

        dependency_graph = {
            "models/user.go": ["User"],
            "models/product.go": ["Product"],
            "models/order.go": ["Order", "User"],
        }
        affected = AffectedFilesCalculator(dependency_graph).calculate(changes, list(dependency_graph))

        assert set(affected) == {"models/user.go", "models/product.go", "models/order.go"}

    def test_deleted_entity_file_found_without_graph_entry(self, detector: ChangeDetector):
        old = Specification(data_model=DataModel(entities=[Entity(name="Product", package="models")]))
        new = Specification()

        changes = detector.detect_changes(old, new)
        affected = AffectedFilesCalculator({}).calculate(changes, ["models/product.go", "models/user.go"])

        assert affected == ["models/product.go"]
