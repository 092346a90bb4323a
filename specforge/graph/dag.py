"""Dependency graph primitive.

Nodes carry an opaque payload and a list of dependency ids; an edge
``a -> b`` means "a must complete before b". Dependency ids that name no
node in the graph are tolerated and treated as already satisfied, which
lets task graphs reference out-of-scope task types.
"""

import heapq
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

import structlog

from specforge.errors import GraphValidationError

logger = structlog.get_logger()


@dataclass
class GraphNode:
    """A node and its computed execution level (-1 until resolved)."""

    id: str
    payload: Any = None
    dependencies: list[str] = field(default_factory=list)
    level: int = -1


class DependencyGraph:
    """Directed graph with cycle detection, ordering and leveling."""

    def __init__(self) -> None:
        self._nodes: dict[str, GraphNode] = {}
        self._logger = logger.bind(component="DependencyGraph")

    # ==================== Construction ====================

    def add_node(
        self,
        node_id: str,
        payload: Any = None,
        dependencies: list[str] | None = None,
    ) -> GraphNode:
        """Add a node.

        Raises:
            GraphValidationError: If the id is already present
        """
        if node_id in self._nodes:
            raise GraphValidationError(f"node already exists: {node_id}")

        node = GraphNode(id=node_id, payload=payload, dependencies=list(dependencies or []))
        self._nodes[node_id] = node
        return node

    def add_edge(self, from_id: str, to_id: str) -> None:
        """Declare that ``from_id`` must complete before ``to_id``.

        Raises:
            GraphValidationError: If either endpoint is missing
        """
        if from_id not in self._nodes:
            raise GraphValidationError(f"source node does not exist: {from_id}")
        if to_id not in self._nodes:
            raise GraphValidationError(f"target node does not exist: {to_id}")

        target = self._nodes[to_id]
        if from_id not in target.dependencies:
            target.dependencies.append(from_id)
        target.level = -1

    # ==================== Queries ====================

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[str]:
        return iter(self._nodes)

    def get_node(self, node_id: str) -> GraphNode | None:
        return self._nodes.get(node_id)

    def get_dependencies(self, node_id: str) -> list[str]:
        """Dependencies of a node that resolve to nodes in this graph."""
        node = self._nodes.get(node_id)
        if node is None:
            return []
        return [dep for dep in node.dependencies if dep in self._nodes]

    def get_dependents(self, node_id: str) -> list[str]:
        """Nodes that list ``node_id`` as a dependency."""
        return [
            other.id
            for other in self._nodes.values()
            if node_id in other.dependencies
        ]

    def _successors(self) -> dict[str, list[str]]:
        successors: dict[str, list[str]] = {node_id: [] for node_id in self._nodes}
        for node in self._nodes.values():
            for dep in node.dependencies:
                if dep in successors:
                    successors[dep].append(node.id)
        return successors

    # ==================== Cycles ====================

    def find_cycle(self) -> list[str] | None:
        """Return one cycle as a path (first node repeated at the end), or None.

        Depth-first search with a recursion-stack marker; a back-edge into a
        node still on the stack, or a self-edge, is a cycle.
        """
        successors = self._successors()
        visited: set[str] = set()

        for start in self._nodes:
            if start in visited:
                continue

            path: list[str] = [start]
            on_stack: set[str] = {start}
            iterators = [iter(successors[start])]
            visited.add(start)

            while iterators:
                current = path[-1]
                nxt = next(iterators[-1], None)
                if nxt is None:
                    iterators.pop()
                    on_stack.discard(path.pop())
                    continue
                if nxt == current or nxt in on_stack:
                    return path[path.index(nxt):] + [nxt]
                if nxt not in visited:
                    visited.add(nxt)
                    on_stack.add(nxt)
                    path.append(nxt)
                    iterators.append(iter(successors[nxt]))

        return None

    def has_cycle(self) -> bool:
        return self.find_cycle() is not None

    def validate(self) -> None:
        """Raise GraphValidationError if the graph contains a cycle."""
        cycle = self.find_cycle()
        if cycle:
            raise GraphValidationError(
                f"circular dependency detected: {' -> '.join(cycle)}",
                cycle=cycle,
            )

    # ==================== Ordering ====================

    def topological_sort(self) -> list[str]:
        """Return node ids so that every node follows its dependencies.

        Ties are broken by id so the ordering is stable across runs.

        Raises:
            GraphValidationError: If the graph contains a cycle
        """
        self.validate()

        successors = self._successors()
        in_degree = {node_id: len(self.get_dependencies(node_id)) for node_id in self._nodes}
        ready = [node_id for node_id, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)

        ordering: list[str] = []
        while ready:
            node_id = heapq.heappop(ready)
            ordering.append(node_id)
            for successor in successors[node_id]:
                in_degree[successor] -= 1
                if in_degree[successor] == 0:
                    heapq.heappush(ready, successor)

        return ordering

    def compute_levels(self) -> list[list[str]]:
        """Assign each node an execution level and group ids by level.

        Iterative fixed point: a node's level is 0 when it has no
        resolvable dependency, otherwise one more than the highest level
        among its dependencies. Runs at most ``len(graph) + 1`` passes;
        any node still unresolved afterwards gets level 0.
        """
        for node in self._nodes.values():
            node.level = -1

        max_iterations = len(self._nodes) + 1
        for _ in range(max_iterations):
            changed = False

            for node in self._nodes.values():
                if node.level >= 0:
                    continue

                max_dep_level = -1
                all_ready = True
                for dep_id in node.dependencies:
                    dep = self._nodes.get(dep_id)
                    if dep is None:
                        continue
                    if dep.level < 0:
                        all_ready = False
                        break
                    max_dep_level = max(max_dep_level, dep.level)

                if all_ready:
                    node.level = max_dep_level + 1
                    changed = True

            if not changed:
                break

        unresolved = [node.id for node in self._nodes.values() if node.level < 0]
        if unresolved:
            self._logger.warning(
                "Unresolved nodes assigned level 0",
                nodes=sorted(unresolved),
            )
            for node_id in unresolved:
                self._nodes[node_id].level = 0

        if not self._nodes:
            return []

        max_level = max(node.level for node in self._nodes.values())
        levels: list[list[str]] = [[] for _ in range(max_level + 1)]
        for node in self._nodes.values():
            levels[node.level].append(node.id)
        for level in levels:
            level.sort()
        return levels
