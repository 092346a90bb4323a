"""Specification snapshot models.

A specification describes the system to generate:
- Requirements: functional and non-functional, keyed by ID
- Architecture: packages, external dependencies, design patterns
- Data model: entities and explicit relationships
- API contracts: keyed by method + endpoint
- Testing strategy and build configuration
"""

import hashlib
import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from specforge.errors import GraphValidationError


def canonical_json(value: Any) -> str:
    """Serialize a model (or plain data) to a stable JSON string."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True)
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


class FunctionalRequirement(BaseModel):
    """A functional requirement."""

    id: str
    description: str
    priority: str = ""
    category: str = ""


class NonFunctionalRequirement(BaseModel):
    """A non-functional requirement (performance, security, ...)."""

    id: str
    description: str
    type: str = ""
    threshold: str = ""


class Requirements(BaseModel):
    """All requirements of a specification."""

    functional: list[FunctionalRequirement] = Field(default_factory=list)
    non_functional: list[NonFunctionalRequirement] = Field(default_factory=list)


class Package(BaseModel):
    """A package (module) of the generated system."""

    name: str = Field(..., description="Unique package name")
    path: str = Field(default="", description="Relative path within the output tree")
    purpose: str = ""
    dependencies: list[str] = Field(default_factory=list, description="Names of packages this one imports")


class ExternalDependency(BaseModel):
    """A third-party dependency of the generated system."""

    name: str
    version: str = ""
    purpose: str = ""


class DesignPattern(BaseModel):
    """A design pattern applied to parts of the generated system."""

    name: str
    description: str = ""
    applies_to: list[str] = Field(default_factory=list)


class Architecture(BaseModel):
    """Package structure and cross-cutting architecture decisions."""

    packages: list[Package] = Field(default_factory=list)
    dependencies: list[ExternalDependency] = Field(default_factory=list)
    patterns: list[DesignPattern] = Field(default_factory=list)

    def get_package(self, name: str) -> Package | None:
        for package in self.packages:
            if package.name == name:
                return package
        return None


class Entity(BaseModel):
    """A domain entity.

    Attribute types are free-form descriptors such as ``string``,
    ``*User``, ``[]Address`` or ``map[string]Tag``; entity references are
    resolved by the context filter.
    """

    name: str
    package: str = ""
    attributes: dict[str, str] = Field(default_factory=dict)


class Relationship(BaseModel):
    """An explicit edge between two entities."""

    model_config = ConfigDict(populate_by_name=True)

    from_entity: str = Field(..., alias="from")
    to_entity: str = Field(..., alias="to")
    type: str = ""
    description: str = ""


class DataModel(BaseModel):
    """Entities and their relationships."""

    entities: list[Entity] = Field(default_factory=list)
    relationships: list[Relationship] = Field(default_factory=list)

    def entity_names(self) -> list[str]:
        return [entity.name for entity in self.entities]


class ContractSchema(BaseModel):
    """Request or response schema of an API contract."""

    fields: dict[str, str] = Field(default_factory=dict)


class APIContract(BaseModel):
    """An API endpoint contract."""

    endpoint: str
    method: str
    description: str = ""
    request: ContractSchema = Field(default_factory=ContractSchema)
    response: ContractSchema = Field(default_factory=ContractSchema)
    owner_package: str = Field(default="", description="Package implementing this endpoint")

    @property
    def key(self) -> str:
        """Composite identity: ``METHOD endpoint``."""
        return f"{self.method} {self.endpoint}"


class TestingStrategy(BaseModel):
    """Testing approach for the generated system."""

    __test__ = False  # not a pytest test class

    coverage_target: float = 0.0
    unit_tests: bool = True
    integration_tests: bool = False
    frameworks: list[str] = Field(default_factory=list)


class BuildConfig(BaseModel):
    """Build configuration for the generated system."""

    language_version: str = ""
    output_path: str = ""
    build_flags: list[str] = Field(default_factory=list)


class SpecMetadata(BaseModel):
    """Provenance of a specification snapshot."""

    created_at: datetime | None = None
    original_spec: str = ""
    hash: str = ""


class Specification(BaseModel):
    """A versioned specification snapshot."""

    schema_version: str = "1.0"
    id: str = ""
    version: str = ""
    metadata: SpecMetadata = Field(default_factory=SpecMetadata)
    requirements: Requirements = Field(default_factory=Requirements)
    architecture: Architecture = Field(default_factory=Architecture)
    data_model: DataModel = Field(default_factory=DataModel)
    api_contracts: list[APIContract] = Field(default_factory=list)
    testing_strategy: TestingStrategy = Field(default_factory=TestingStrategy)
    build_config: BuildConfig = Field(default_factory=BuildConfig)

    def compute_hash(self) -> str:
        """SHA-256 of the canonical JSON form, excluding ``metadata.hash``."""
        data = self.model_dump(mode="json", by_alias=True)
        data["metadata"]["hash"] = ""
        return hashlib.sha256(canonical_json(data).encode()).hexdigest()

    def find_package_cycle(self) -> list[str] | None:
        """Return one cycle in the package dependency graph, if any."""
        graph = {pkg.name: list(pkg.dependencies) for pkg in self.architecture.packages}
        visited: set[str] = set()
        stack: list[str] = []
        on_stack: set[str] = set()

        def visit(name: str) -> list[str] | None:
            visited.add(name)
            stack.append(name)
            on_stack.add(name)
            for dep in graph.get(name, []):
                if dep == name:
                    return [name, name]
                if dep in on_stack:
                    return stack[stack.index(dep):] + [dep]
                if dep not in visited:
                    cycle = visit(dep)
                    if cycle:
                        return cycle
            stack.pop()
            on_stack.discard(name)
            return None

        for name in graph:
            if name not in visited:
                cycle = visit(name)
                if cycle:
                    return cycle
        return None

    def has_cyclic_dependencies(self) -> bool:
        """Check the package dependency graph for cycles."""
        return self.find_package_cycle() is not None

    def validate_snapshot(self) -> None:
        """Verify package acyclicity and, when present, the content hash.

        Raises:
            GraphValidationError: If the package graph has a cycle or the
                recorded hash does not match the content
        """
        cycle = self.find_package_cycle()
        if cycle:
            raise GraphValidationError(
                f"cyclic dependency detected in package dependencies: {' -> '.join(cycle)}",
                cycle=cycle,
            )

        if self.metadata.hash:
            computed = self.compute_hash()
            if computed != self.metadata.hash:
                raise GraphValidationError(
                    f"hash mismatch: expected {self.metadata.hash}, got {computed}"
                )
