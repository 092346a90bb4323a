"""Data models for the generation orchestrator."""

from .spec import (
    APIContract,
    Architecture,
    BuildConfig,
    ContractSchema,
    DataModel,
    DesignPattern,
    Entity,
    ExternalDependency,
    FunctionalRequirement,
    NonFunctionalRequirement,
    Package,
    Relationship,
    Requirements,
    SpecMetadata,
    Specification,
    TestingStrategy,
    canonical_json,
)
from .plan import (
    FileTree,
    GenerationPhase,
    GenerationPlan,
    GenerationTask,
    Patch,
    PlannedDirectory,
    PlannedFile,
    TaskType,
)
from .changes import ChangeSet
from .state import (
    STATE_FORMAT_VERSION,
    SUPPORTED_STATE_VERSIONS,
    FileState,
    IncrementalState,
)

__all__ = [
    # Specification
    "APIContract",
    "Architecture",
    "BuildConfig",
    "ContractSchema",
    "DataModel",
    "DesignPattern",
    "Entity",
    "ExternalDependency",
    "FunctionalRequirement",
    "NonFunctionalRequirement",
    "Package",
    "Relationship",
    "Requirements",
    "SpecMetadata",
    "Specification",
    "TestingStrategy",
    "canonical_json",
    # Plan
    "FileTree",
    "GenerationPhase",
    "GenerationPlan",
    "GenerationTask",
    "Patch",
    "PlannedDirectory",
    "PlannedFile",
    "TaskType",
    # Changes
    "ChangeSet",
    # State
    "STATE_FORMAT_VERSION",
    "SUPPORTED_STATE_VERSIONS",
    "FileState",
    "IncrementalState",
]
