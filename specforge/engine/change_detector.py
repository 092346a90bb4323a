"""Change Detector - structural diff between specification snapshots.

Compares two snapshots category by category and derives which packages
and which generated files must be redone.
"""

import posixpath
import re
from collections.abc import Callable, Hashable, Iterable
from typing import TypeVar

import structlog

from specforge.models.changes import ChangeSet
from specforge.models.spec import (
    APIContract,
    Architecture,
    Entity,
    FunctionalRequirement,
    NonFunctionalRequirement,
    Package,
    Specification,
    canonical_json,
)

logger = structlog.get_logger()

T = TypeVar("T")

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def to_snake_case(name: str) -> str:
    """``OrderItem`` -> ``order_item``."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def _diff_keyed(
    old_items: Iterable[T],
    new_items: Iterable[T],
    key: Callable[[T], Hashable],
    changed: Callable[[T, T], bool],
) -> tuple[list[T], list[T], list[T]]:
    """Split two keyed collections into (added, modified, deleted).

    Added and modified follow new-snapshot order, deleted follows
    old-snapshot order.
    """
    old_by_key = {key(item): item for item in old_items}
    new_by_key = {key(item): item for item in new_items}

    added: list[T] = []
    modified: list[T] = []
    for item_key, new_item in new_by_key.items():
        old_item = old_by_key.get(item_key)
        if old_item is None:
            added.append(new_item)
        elif changed(old_item, new_item):
            modified.append(new_item)

    deleted = [item for item_key, item in old_by_key.items() if item_key not in new_by_key]
    return added, modified, deleted


def requirement_equals(a: FunctionalRequirement, b: FunctionalRequirement) -> bool:
    return (
        a.id == b.id
        and a.description == b.description
        and a.priority == b.priority
        and a.category == b.category
    )


def non_functional_requirement_equals(a: NonFunctionalRequirement, b: NonFunctionalRequirement) -> bool:
    return (
        a.id == b.id
        and a.description == b.description
        and a.type == b.type
        and a.threshold == b.threshold
    )


def package_equals(a: Package, b: Package) -> bool:
    """Compare packages by identity fields and dependency lists.

    Dependency lists are equal when they have the same length and every
    dependency of ``b`` appears in ``a``. With duplicates this is not
    symmetric: ``["x", "x"]`` vs ``["x", "y"]`` differs one way only.
    """
    if a.name != b.name or a.path != b.path or a.purpose != b.purpose:
        return False
    if len(a.dependencies) != len(b.dependencies):
        return False
    known = set(a.dependencies)
    return all(dep in known for dep in b.dependencies)


def entity_changed(old: Entity, new: Entity) -> bool:
    if old.package != new.package:
        return True
    if len(old.attributes) != len(new.attributes):
        return True
    for attr_name, old_type in old.attributes.items():
        if new.attributes.get(attr_name) != old_type:
            return True
    return False


def api_contract_changed(old: APIContract, new: APIContract) -> bool:
    return canonical_json(old) != canonical_json(new)


class ChangeDetector:
    """Detects structural changes between two specification snapshots."""

    def __init__(self):
        self._logger = logger.bind(component="ChangeDetector")

    def detect_changes(self, old: Specification | None, new: Specification) -> ChangeSet:
        """Compare two snapshots.

        Args:
            old: Previous snapshot, or None on first generation
            new: Current snapshot

        Returns:
            A fresh, immutable ChangeSet
        """
        if old is None:
            changes = ChangeSet(
                first_generation=True,
                added_entities=new.data_model.entity_names(),
                added_api_contracts=[contract.key for contract in new.api_contracts],
            )
            self._logger.debug(
                "First generation, everything is new",
                added_entities=len(changes.added_entities),
                added_api_contracts=len(changes.added_api_contracts),
            )
            return changes

        added_reqs, modified_reqs, deleted_reqs = _diff_keyed(
            old.requirements.functional,
            new.requirements.functional,
            key=lambda req: req.id,
            changed=lambda a, b: not requirement_equals(a, b),
        )
        added_nfrs, modified_nfrs, deleted_nfrs = _diff_keyed(
            old.requirements.non_functional,
            new.requirements.non_functional,
            key=lambda req: req.id,
            changed=lambda a, b: not non_functional_requirement_equals(a, b),
        )
        added_pkgs, modified_pkgs, deleted_pkgs = _diff_keyed(
            old.architecture.packages,
            new.architecture.packages,
            key=lambda pkg: pkg.name,
            changed=lambda a, b: not package_equals(a, b),
        )
        added_entities, modified_entities, deleted_entities = _diff_keyed(
            old.data_model.entities,
            new.data_model.entities,
            key=lambda entity: entity.name,
            changed=entity_changed,
        )
        added_apis, modified_apis, deleted_apis = _diff_keyed(
            old.api_contracts,
            new.api_contracts,
            key=lambda contract: contract.key,
            changed=api_contract_changed,
        )

        changes = ChangeSet(
            added_requirements=added_reqs,
            modified_requirements=modified_reqs,
            deleted_requirements=[req.id for req in deleted_reqs],
            added_non_functional_requirements=added_nfrs,
            modified_non_functional_requirements=modified_nfrs,
            deleted_non_functional_requirements=[req.id for req in deleted_nfrs],
            added_packages=added_pkgs,
            modified_packages=modified_pkgs,
            deleted_packages=[pkg.name for pkg in deleted_pkgs],
            added_entities=[entity.name for entity in added_entities],
            modified_entities=[entity.name for entity in modified_entities],
            deleted_entities=[entity.name for entity in deleted_entities],
            added_api_contracts=[contract.key for contract in added_apis],
            modified_api_contracts=[contract.key for contract in modified_apis],
            deleted_api_contracts=[contract.key for contract in deleted_apis],
            architecture_changed=canonical_json(old.architecture) != canonical_json(new.architecture),
            build_config_changed=canonical_json(old.build_config) != canonical_json(new.build_config),
        )

        self._logger.debug(
            "Detected specification changes",
            added_entities=len(changes.added_entities),
            modified_entities=len(changes.modified_entities),
            deleted_entities=len(changes.deleted_entities),
            architecture_changed=changes.architecture_changed,
            build_config_changed=changes.build_config_changed,
        )

        return changes

    def identify_affected_packages(self, changes: ChangeSet, architecture: Architecture) -> list[str]:
        """Packages touched by the change set, including reverse dependents.

        Added packages affect only themselves; modified and deleted
        packages also affect every package that transitively depends on
        them.
        """
        if not changes.has_changes:
            return []

        dependents: dict[str, list[str]] = {}
        for package in architecture.packages:
            for dep in package.dependencies:
                dependents.setdefault(dep, []).append(package.name)

        affected: set[str] = {package.name for package in changes.added_packages}

        roots = [package.name for package in changes.modified_packages] + list(changes.deleted_packages)
        for root in roots:
            affected.add(root)
            stack = [root]
            while stack:
                current = stack.pop()
                for dependent in dependents.get(current, []):
                    if dependent not in affected:
                        affected.add(dependent)
                        stack.append(dependent)

        return sorted(affected)


class AffectedFilesCalculator:
    """Maps a change set onto the generated files that must be redone.

    Args:
        dependency_graph: Generated file path -> entity names it depends on
    """

    def __init__(self, dependency_graph: dict[str, list[str]]):
        self.dependency_graph = dependency_graph
        self._logger = logger.bind(component="AffectedFilesCalculator")

    def calculate(self, changes: ChangeSet, all_files: Iterable[str]) -> list[str]:
        all_files = list(all_files)

        if changes.requires_full_regeneration:
            self._logger.debug("Architecture or build config changed, regenerating all files")
            return sorted(set(all_files))

        changed_entities = changes.changed_entities
        affected: set[str] = set()

        for file_path, dependencies in self.dependency_graph.items():
            if any(dep in changed_entities for dep in dependencies):
                affected.add(file_path)

        # Files implementing a deleted entity carry its name in their file name
        for deleted in changes.deleted_entities:
            fragment = to_snake_case(deleted)
            affected.update(path for path in all_files if fragment in posixpath.basename(path))

        self._logger.debug(
            "Calculated affected files",
            total_files=len(all_files),
            affected_files=len(affected),
            changed_entities=len(changed_entities),
        )

        return sorted(affected)
