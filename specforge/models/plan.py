"""Generation plan models.

A plan is an ordered list of phases; each phase holds tasks. Phase-level
dependencies expand to every file-producing task of the depended-upon
phase when the task graph is built.
"""

import posixpath
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from specforge.errors import GraphValidationError


class TaskType(str, Enum):
    """Kinds of generation tasks. Only GENERATE_FILE is scheduled."""

    GENERATE_FILE = "generate_file"
    APPLY_PATCH = "apply_patch"
    RUN_COMMAND = "run_command"


class GenerationTask(BaseModel):
    """A single unit of generation work."""

    id: str
    type: TaskType = TaskType.GENERATE_FILE
    target_path: str = ""
    inputs: dict[str, Any] = Field(default_factory=dict)
    can_parallel: bool = True
    dependencies: list[str] = Field(default_factory=list, description="Task or phase ids")
    timeout: float | None = Field(default=None, gt=0, description="Per-task timeout in seconds")


class GenerationPhase(BaseModel):
    """A named group of tasks."""

    name: str
    order: int = 0
    tasks: list[GenerationTask] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list, description="Names of phases that must finish first")


class PlannedDirectory(BaseModel):
    path: str
    purpose: str = ""


class PlannedFile(BaseModel):
    path: str
    purpose: str = ""
    generated_by: str = ""


class FileTree(BaseModel):
    """Target directory structure."""

    root: str = ""
    directories: list[PlannedDirectory] = Field(default_factory=list)
    files: list[PlannedFile] = Field(default_factory=list)


class Patch(BaseModel):
    """Output of one file-producing task."""

    target_file: str
    diff: str
    applied_at: datetime = Field(default_factory=datetime.utcnow)
    reversible: bool = True


class GenerationPlan(BaseModel):
    """Detailed plan for generating the output tree."""

    schema_version: str = "1.0"
    id: str = ""
    spec_id: str = ""
    phases: list[GenerationPhase] = Field(default_factory=list)
    file_tree: FileTree = Field(default_factory=FileTree)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def file_tasks(self) -> list[GenerationTask]:
        """All file-producing tasks in phase order."""
        return [
            task
            for phase in self.phases
            for task in phase.tasks
            if task.type == TaskType.GENERATE_FILE
        ]

    def get_task_by_id(self, task_id: str) -> GenerationTask | None:
        for phase in self.phases:
            for task in phase.tasks:
                if task.id == task_id:
                    return task
        return None

    def find_task_for_file(self, file_path: str) -> GenerationTask | None:
        """Find the task producing a path, falling back to a base-name match."""
        base = posixpath.basename(file_path)
        for phase in self.phases:
            for task in phase.tasks:
                if task.target_path == file_path or posixpath.basename(task.target_path) == base:
                    return task
        return None

    def has_cyclic_dependencies(self) -> bool:
        """Detect cycles in the phase dependency graph (self-edges included)."""
        graph = {phase.name: phase.dependencies for phase in self.phases}
        visited: set[str] = set()
        on_stack: set[str] = set()

        def has_cycle(node: str) -> bool:
            visited.add(node)
            on_stack.add(node)
            for dep in graph.get(node, []):
                if dep == node:
                    return True
                if dep not in visited:
                    if has_cycle(dep):
                        return True
                elif dep in on_stack:
                    return True
            on_stack.discard(node)
            return False

        return any(has_cycle(name) for name in graph if name not in visited)

    def validate_plan(self) -> None:
        """Check phase acyclicity, path containment and parallel write conflicts.

        Raises:
            GraphValidationError: On the first violated rule
        """
        if self.has_cyclic_dependencies():
            raise GraphValidationError("cyclic dependency detected in generation phases")

        for phase in self.phases:
            for task in phase.tasks:
                if task.target_path and not self._is_path_within_root(task.target_path):
                    raise GraphValidationError(f"target path outside root: {task.target_path}")

        for phase in self.phases:
            seen: set[str] = set()
            for task in phase.tasks:
                if task.can_parallel and task.target_path:
                    if task.target_path in seen:
                        raise GraphValidationError(
                            f"parallel tasks cannot write to same file: {task.target_path}"
                        )
                    seen.add(task.target_path)

    def _is_path_within_root(self, target_path: str) -> bool:
        clean = posixpath.normpath(target_path)
        if posixpath.isabs(clean):
            if not self.file_tree.root:
                return False
            root = posixpath.normpath(self.file_tree.root)
            return clean == root or clean.startswith(root.rstrip("/") + "/")
        return clean != ".." and not clean.startswith("../")
