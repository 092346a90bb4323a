"""Change set between two specification snapshots."""

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .spec import FunctionalRequirement, NonFunctionalRequirement, Package


class ChangeSet(BaseModel):
    """Itemized structural difference between two specification snapshots.

    Immutable once returned by the change detector.
    """

    model_config = ConfigDict(frozen=True)

    first_generation: bool = False

    added_requirements: list[FunctionalRequirement] = Field(default_factory=list)
    modified_requirements: list[FunctionalRequirement] = Field(default_factory=list)
    deleted_requirements: list[str] = Field(default_factory=list)

    added_non_functional_requirements: list[NonFunctionalRequirement] = Field(default_factory=list)
    modified_non_functional_requirements: list[NonFunctionalRequirement] = Field(default_factory=list)
    deleted_non_functional_requirements: list[str] = Field(default_factory=list)

    added_packages: list[Package] = Field(default_factory=list)
    modified_packages: list[Package] = Field(default_factory=list)
    deleted_packages: list[str] = Field(default_factory=list)

    added_entities: list[str] = Field(default_factory=list)
    modified_entities: list[str] = Field(default_factory=list)
    deleted_entities: list[str] = Field(default_factory=list)

    added_api_contracts: list[str] = Field(default_factory=list)
    modified_api_contracts: list[str] = Field(default_factory=list)
    deleted_api_contracts: list[str] = Field(default_factory=list)

    architecture_changed: bool = False
    build_config_changed: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_changes(self) -> bool:
        """True iff any list is non-empty, a whole-section flag is set,
        or this is a first generation."""
        if self.first_generation or self.architecture_changed or self.build_config_changed:
            return True
        return any(
            (
                self.added_requirements,
                self.modified_requirements,
                self.deleted_requirements,
                self.added_non_functional_requirements,
                self.modified_non_functional_requirements,
                self.deleted_non_functional_requirements,
                self.added_packages,
                self.modified_packages,
                self.deleted_packages,
                self.added_entities,
                self.modified_entities,
                self.deleted_entities,
                self.added_api_contracts,
                self.modified_api_contracts,
                self.deleted_api_contracts,
            )
        )

    @property
    def requires_full_regeneration(self) -> bool:
        """Whole-section changes defeat per-entity incrementality."""
        return self.architecture_changed or self.build_config_changed

    @property
    def changed_entities(self) -> set[str]:
        return set(self.added_entities) | set(self.modified_entities) | set(self.deleted_entities)

    def summary(self) -> dict[str, int | bool]:
        """Counts per category, for logging."""
        return {
            "added_requirements": len(self.added_requirements),
            "modified_requirements": len(self.modified_requirements),
            "deleted_requirements": len(self.deleted_requirements),
            "added_non_functional_requirements": len(self.added_non_functional_requirements),
            "modified_non_functional_requirements": len(self.modified_non_functional_requirements),
            "deleted_non_functional_requirements": len(self.deleted_non_functional_requirements),
            "added_packages": len(self.added_packages),
            "modified_packages": len(self.modified_packages),
            "deleted_packages": len(self.deleted_packages),
            "added_entities": len(self.added_entities),
            "modified_entities": len(self.modified_entities),
            "deleted_entities": len(self.deleted_entities),
            "added_api_contracts": len(self.added_api_contracts),
            "modified_api_contracts": len(self.modified_api_contracts),
            "deleted_api_contracts": len(self.deleted_api_contracts),
            "architecture_changed": self.architecture_changed,
            "build_config_changed": self.build_config_changed,
            "first_generation": self.first_generation,
            "has_changes": self.has_changes,
        }
