"""Error taxonomy for the generation orchestrator.

- GraphValidationError: cycles or unresolvable references, raised before
  any task runs
- TaskExecutionError: a single generation task failed; aborts its level
- StateIOError: incremental state could not be loaded or saved
- CancellationError: the run was cancelled or its deadline passed
- AggregateValidationError: several independent checks failed at once
"""

from typing import Any


class SpecforgeError(Exception):
    """Base class for all orchestrator errors."""


class GraphValidationError(SpecforgeError):
    """A dependency graph is invalid (cycle, duplicate or missing node)."""

    def __init__(self, message: str, cycle: list[str] | None = None):
        super().__init__(message)
        self.cycle = cycle or []


class TaskExecutionError(SpecforgeError):
    """A generation task failed.

    The partial schedule result (everything completed before and alongside
    the failing task) is attached as ``partial`` by the scheduler.
    """

    def __init__(
        self,
        task_id: str,
        message: str,
        level: int | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(f"task {task_id} failed: {message}")
        self.task_id = task_id
        self.level = level
        self.cause = cause
        self.partial: Any = None


class StateIOError(SpecforgeError):
    """Loading or persisting incremental state failed."""

    def __init__(self, path: str, message: str, cause: BaseException | None = None):
        super().__init__(f"{message}: {path}")
        self.path = path
        self.cause = cause


class CancellationError(SpecforgeError):
    """The scheduling run was cancelled or exceeded its deadline.

    Distinct from task failure: completed work is valid and the run can be
    resumed by regenerating the files that did not complete.
    """

    resumable = True

    def __init__(self, message: str = "generation run cancelled", level: int | None = None):
        super().__init__(message)
        self.level = level
        self.partial: Any = None


class AggregateValidationError(SpecforgeError):
    """Collects every failure from a batch of independent validation checks."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(
            f"{len(self.errors)} validation check(s) failed: " + "; ".join(self.errors)
        )

    @property
    def count(self) -> int:
        return len(self.errors)
