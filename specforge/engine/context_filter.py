"""Context Filter - scope the specification down to what one file needs.

Builds entity and package indices once per specification, then for each
target file computes the transitive closure of entities the file depends
on and projects the specification onto it. The smaller context keeps
generator prompts focused.
"""

import posixpath
import re
from collections.abc import Iterable

import structlog
from pydantic import BaseModel, ConfigDict, Field

from specforge.models.plan import GenerationPlan
from specforge.models.spec import (
    APIContract,
    Architecture,
    BuildConfig,
    DataModel,
    Requirements,
    Specification,
    TestingStrategy,
)

logger = structlog.get_logger()

DEFAULT_COMMON_PACKAGES = ("main", "config", "common", "util")

# File name fragments whose files see every entity of their package
PACKAGE_WIDE_FILE_KINDS = ("handler", "service", "repository")

_MAP_PREFIX = re.compile(r"^map\[[^\]]*\]\s*")
_KEYED_GENERIC = re.compile(r"^(?:dict|Dict|Mapping|MutableMapping)\[[^,\[\]]+,\s*(.+)\]$")
_WRAPPER_GENERIC = re.compile(
    r"^(?:Optional|list|List|set|Set|frozenset|Sequence|Iterable|tuple)\[(.+?)(?:,\s*\.\.\.)?\]$"
)


class FilteredSpecification(BaseModel):
    """Projection of a specification for a single target file."""

    model_config = ConfigDict(frozen=True)

    target_path: str
    schema_version: str = ""
    id: str = ""
    version: str = ""

    requirements: Requirements = Field(default_factory=Requirements)
    architecture: Architecture = Field(default_factory=Architecture)
    data_model: DataModel = Field(default_factory=DataModel)
    api_contracts: list[APIContract] = Field(default_factory=list)
    testing_strategy: TestingStrategy = Field(default_factory=TestingStrategy)
    build_config: BuildConfig = Field(default_factory=BuildConfig)

    original_entity_count: int = 0
    filtered_entity_count: int = 0
    original_package_count: int = 0
    filtered_package_count: int = 0
    reduction_percentage: float = 0.0
    degraded: bool = Field(
        default=False,
        description="No entity could be matched, so every entity was included",
    )

    @property
    def entity_names(self) -> list[str]:
        return self.data_model.entity_names()

    @property
    def package_names(self) -> list[str]:
        return [package.name for package in self.architecture.packages]

    def to_prompt(self) -> str:
        """Render the filtered context as markdown for the generator."""
        lines = [
            "# Specification (Filtered)",
            "",
            f"**Version**: {self.version} | **Schema**: {self.schema_version}",
            "",
        ]

        if self.requirements.functional:
            lines.append("## Functional Requirements")
            lines.append("")
            for req in self.requirements.functional:
                entry = f"- **{req.id}**: {req.description}"
                if req.priority:
                    entry += f" (Priority: {req.priority})"
                lines.append(entry)
            lines.append("")

        if self.requirements.non_functional:
            lines.append("## Non-Functional Requirements")
            lines.append("")
            for nfr in self.requirements.non_functional:
                entry = f"- **{nfr.id}** [{nfr.type}]: {nfr.description}"
                if nfr.threshold:
                    entry += f" (Threshold: {nfr.threshold})"
                lines.append(entry)
            lines.append("")

        if self.architecture.packages:
            lines.append("## Packages")
            lines.append("")
            for package in self.architecture.packages:
                lines.append(f"- **{package.name}** (`{package.path}`): {package.purpose}")
                if package.dependencies:
                    lines.append(f"  - Dependencies: {', '.join(package.dependencies)}")
            lines.append("")

        if self.data_model.entities:
            lines.append("## Entities")
            lines.append("")
            for entity in self.data_model.entities:
                lines.append(f"### {entity.name}")
                lines.append(f"**Package**: {entity.package}")
                lines.append("")
                lines.append("**Attributes**:")
                for attr_name in sorted(entity.attributes):
                    lines.append(f"- `{attr_name}`: {entity.attributes[attr_name]}")
                lines.append("")

        if self.data_model.relationships:
            lines.append("## Entity Relationships")
            lines.append("")
            for rel in self.data_model.relationships:
                entry = f"- **{rel.from_entity}** -> **{rel.to_entity}** ({rel.type})"
                if rel.description:
                    entry += f": {rel.description}"
                lines.append(entry)
            lines.append("")

        if self.api_contracts:
            lines.append("## API Contracts")
            lines.append("")
            for contract in self.api_contracts:
                lines.append(f"- **{contract.key}**: {contract.description}")
            lines.append("")

        lines.append("## Testing Strategy")
        lines.append("")
        lines.append(f"- Coverage Target: {self.testing_strategy.coverage_target:.1f}%")
        lines.append(f"- Unit Tests: {str(self.testing_strategy.unit_tests).lower()}")
        lines.append(f"- Integration Tests: {str(self.testing_strategy.integration_tests).lower()}")
        lines.append("")

        lines.append("## Build Configuration")
        lines.append("")
        lines.append(f"- Language Version: {self.build_config.language_version}")
        lines.append(f"- Output Path: {self.build_config.output_path}")
        lines.append("")

        return "\n".join(lines)


def _directory_package(file_path: str) -> str:
    """``internal/user/service.go`` -> ``user``."""
    directory = posixpath.dirname(file_path.replace("\\", "/"))
    return posixpath.basename(directory)


class ContextFilter:
    """Builds per-file filtered views of one specification snapshot."""

    def __init__(
        self,
        spec: Specification,
        *,
        max_depth: int = 5,
        common_packages: Iterable[str] = DEFAULT_COMMON_PACKAGES,
    ):
        self.spec = spec
        self.max_depth = max_depth
        self.common_packages = tuple(common_packages)

        # entity -> referenced entities
        self.dep_graph: dict[str, list[str]] = {}
        # entity -> owning package
        self.entity_packages: dict[str, str] = {}
        # package -> declared package dependencies
        self.package_deps: dict[str, list[str]] = {}

        self._logger = logger.bind(component="ContextFilter")
        self._build_indices()

    def _build_indices(self) -> None:
        for entity in self.spec.data_model.entities:
            self.entity_packages[entity.name] = entity.package

        for rel in self.spec.data_model.relationships:
            self.dep_graph.setdefault(rel.from_entity, []).append(rel.to_entity)

        for entity in self.spec.data_model.entities:
            for attr_name, attr_type in entity.attributes.items():
                referenced = self.extract_entity_reference(attr_type)
                if referenced is None or referenced == entity.name:
                    continue
                if referenced in self.entity_packages:
                    self.dep_graph.setdefault(entity.name, []).append(referenced)
                    self._logger.debug(
                        "Detected entity reference in attribute",
                        entity=entity.name,
                        attribute=attr_name,
                        references=referenced,
                    )

        for package in self.spec.architecture.packages:
            self.package_deps[package.name] = list(package.dependencies)

        self._logger.info(
            "Built context indices",
            entities=len(self.entity_packages),
            entity_dependencies=len(self.dep_graph),
            packages=len(self.package_deps),
        )

    @staticmethod
    def extract_entity_reference(type_str: str) -> str | None:
        """Extract the entity name a type descriptor refers to.

        Examples:
            ``*User``, ``[]*User``, ``map[string]User``, ``models.User``,
            ``Optional[User]``, ``list[User]`` and ``dict[str, User]`` all
            yield ``User``. Lower-case results such as ``string`` yield None.
        """
        cleaned = type_str.strip()

        # One keyed-map prefix: the value type is what matters
        if cleaned.startswith("map["):
            cleaned = _MAP_PREFIX.sub("", cleaned, count=1)
        else:
            keyed = _KEYED_GENERIC.match(cleaned)
            if keyed:
                cleaned = keyed.group(1).strip()

        while True:
            original = cleaned
            cleaned = cleaned.removeprefix("*").removeprefix("[]").removesuffix("?").strip()
            wrapped = _WRAPPER_GENERIC.match(cleaned)
            if wrapped:
                cleaned = wrapped.group(1).strip()
            if cleaned == original:
                break

        if "." in cleaned:
            cleaned = cleaned.rsplit(".", 1)[-1]

        if cleaned and "A" <= cleaned[0] <= "Z" and cleaned.isidentifier():
            return cleaned
        return None

    def filter_for_file(self, file_path: str, plan: GenerationPlan | None = None) -> FilteredSpecification:
        """Build the filtered specification for one target file.

        Args:
            file_path: Target path of the file being generated
            plan: Optional plan, consulted for task entity hints

        Returns:
            FilteredSpecification scoped to the file
        """
        spec = self.spec
        relevant_entities, degraded = self._relevant_entities(file_path, plan)
        relevant_packages = self._relevant_packages(file_path, relevant_entities)

        entities = [e for e in spec.data_model.entities if e.name in relevant_entities]
        relationships = [
            rel
            for rel in spec.data_model.relationships
            if rel.from_entity in relevant_entities and rel.to_entity in relevant_entities
        ]
        packages = [p for p in spec.architecture.packages if p.name in relevant_packages]

        original_total = len(spec.data_model.entities) + len(spec.architecture.packages)
        filtered_total = len(entities) + len(packages)
        reduction = 0.0
        if original_total > 0:
            reduction = (original_total - filtered_total) / original_total * 100
            reduction = min(100.0, max(0.0, reduction))

        filtered = FilteredSpecification(
            target_path=file_path,
            schema_version=spec.schema_version,
            id=spec.id,
            version=spec.version,
            requirements=spec.requirements,
            architecture=Architecture(
                packages=packages,
                dependencies=spec.architecture.dependencies,
                patterns=spec.architecture.patterns,
            ),
            data_model=DataModel(entities=entities, relationships=relationships),
            api_contracts=self._filter_api_contracts(file_path, relevant_packages),
            testing_strategy=spec.testing_strategy,
            build_config=spec.build_config,
            original_entity_count=len(spec.data_model.entities),
            filtered_entity_count=len(entities),
            original_package_count=len(spec.architecture.packages),
            filtered_package_count=len(packages),
            reduction_percentage=reduction,
            degraded=degraded,
        )

        self._logger.debug(
            "Filtered specification for file",
            file_path=file_path,
            original_entities=filtered.original_entity_count,
            filtered_entities=filtered.filtered_entity_count,
            original_packages=filtered.original_package_count,
            filtered_packages=filtered.filtered_package_count,
            reduction_pct=round(reduction, 1),
            degraded=degraded,
        )

        return filtered

    def _relevant_entities(self, file_path: str, plan: GenerationPlan | None) -> tuple[set[str], bool]:
        entities = self.spec.data_model.entities
        file_name = posixpath.basename(file_path.replace("\\", "/")).lower()
        package_name = _directory_package(file_path)
        relevant: set[str] = set()

        primary = next((e.name for e in entities if e.name.lower() in file_name), None)
        if primary is None and package_name:
            primary = next(
                (e.name for e in entities if e.package.lower() == package_name.lower()),
                None,
            )

        if primary is not None:
            self._add_with_dependencies(primary, relevant, 0)
        else:
            task = plan.find_task_for_file(file_path) if plan is not None else None
            hints = task.inputs.get("entities") if task is not None else None
            if isinstance(hints, (list, tuple)):
                for hint in hints:
                    if isinstance(hint, str):
                        self._add_with_dependencies(hint, relevant, 0)

            if any(kind in file_name for kind in PACKAGE_WIDE_FILE_KINDS):
                for entity in entities:
                    if entity.package.lower() == package_name.lower():
                        self._add_with_dependencies(entity.name, relevant, 0)

        if not relevant:
            self._logger.warning(
                "No relevant entities identified, including all entities",
                file_path=file_path,
            )
            return {entity.name for entity in entities}, True

        return relevant, False

    def _add_with_dependencies(self, entity_name: str, relevant: set[str], depth: int) -> None:
        if depth > self.max_depth or entity_name in relevant:
            return

        relevant.add(entity_name)
        for dep in self.dep_graph.get(entity_name, []):
            self._add_with_dependencies(dep, relevant, depth + 1)

    def _relevant_packages(self, file_path: str, relevant_entities: set[str]) -> set[str]:
        relevant: set[str] = set()

        package_name = _directory_package(file_path)
        if package_name:
            relevant.add(package_name)

        for entity_name in relevant_entities:
            package = self.entity_packages.get(entity_name)
            if package is None:
                continue
            relevant.add(package)
            relevant.update(self.package_deps.get(package, []))

        relevant.update(self.common_packages)
        return relevant

    def _filter_api_contracts(self, file_path: str, relevant_packages: set[str]) -> list[APIContract]:
        contracts = self.spec.api_contracts
        if "handler" in file_path or "api" in file_path:
            return list(contracts)

        own_package_relevant = _directory_package(file_path) in relevant_packages
        return [
            contract
            for contract in contracts
            if (contract.owner_package and contract.owner_package in relevant_packages)
            or (not contract.owner_package and own_package_relevant)
        ]
