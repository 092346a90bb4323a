"""Leveled Scheduler - bounded-concurrency execution of a task graph.

Nodes are grouped into levels by ``DependencyGraph.compute_levels``.
Levels run strictly one after another; tasks inside a level run
concurrently, at most ``max_parallel`` at a time. The first failure in a
level lets in-flight siblings finish, skips siblings that have not started
and stops the run before the next level.
"""

import asyncio
import dataclasses
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from specforge.errors import CancellationError, GraphValidationError, TaskExecutionError
from specforge.graph import DependencyGraph, GraphNode
from specforge.models.plan import GenerationPlan, TaskType

logger = structlog.get_logger()


def build_task_graph(plan: GenerationPlan) -> DependencyGraph:
    """Build the dependency graph of a plan's file-producing tasks.

    A task depends on its own declared dependencies plus every
    file-producing task of each phase its phase depends on.

    Raises:
        GraphValidationError: If the phase graph is cyclic
    """
    if plan.has_cyclic_dependencies():
        raise GraphValidationError("cyclic dependency detected in generation phases")

    phase_tasks: dict[str, list[str]] = {}
    for phase in plan.phases:
        phase_tasks.setdefault(phase.name, []).extend(
            task.id for task in phase.tasks if task.type == TaskType.GENERATE_FILE
        )

    graph = DependencyGraph()
    for phase in plan.phases:
        for task in phase.tasks:
            if task.type != TaskType.GENERATE_FILE:
                continue

            dependencies = list(task.dependencies)
            for dep_phase in phase.dependencies:
                for dep_task in phase_tasks.get(dep_phase, []):
                    if dep_task not in dependencies:
                        dependencies.append(dep_task)

            graph.add_node(task.id, task, dependencies)

    return graph


class CancelToken:
    """Cooperative cancellation signal shared by every task of a run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "generation run cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class RunContext:
    """Cancellation and deadline information handed to every runner call."""

    cancel_token: CancelToken
    deadline: float | None = None  # event-loop clock, absolute
    level: int = 0

    def remaining(self) -> float | None:
        """Seconds left before the run deadline, or None when unbounded."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - asyncio.get_running_loop().time())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self) -> None:
        """Raise CancellationError if the run was cancelled or timed out."""
        if self.cancel_token.cancelled:
            raise CancellationError(self.cancel_token.reason or "generation run cancelled", level=self.level)
        if self.expired:
            raise CancellationError("run deadline exceeded", level=self.level)


Runner = Callable[[Any, RunContext], Awaitable[Any]]


@dataclass
class TaskResult:
    """Output of one successfully executed node."""

    task_id: str
    target_path: str
    level: int
    output: Any
    duration_ms: int = 0


@dataclass
class ScheduleResult:
    """Everything a run produced, including partial work after a failure."""

    results: list[TaskResult] = field(default_factory=list)
    completed: set[str] = field(default_factory=set)
    levels: list[list[str]] = field(default_factory=list)
    error: TaskExecutionError | CancellationError | None = None
    peak_workers: int = 0

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def outputs(self) -> list[Any]:
        return [result.output for result in self.results]


@dataclass
class _RunState:
    completed: set[str] = field(default_factory=set)
    results: list[TaskResult] = field(default_factory=list)
    completed_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    results_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    active_workers: int = 0
    peak_workers: int = 0


class _SchedulerBase:
    async def run(
        self,
        graph: DependencyGraph,
        *,
        cancel_token: CancelToken | None = None,
        deadline: float | None = None,
    ) -> ScheduleResult:
        raise NotImplementedError

    async def run_or_raise(
        self,
        graph: DependencyGraph,
        *,
        cancel_token: CancelToken | None = None,
        deadline: float | None = None,
    ) -> ScheduleResult:
        """Run the graph and raise the run's error, with ``partial`` attached."""
        result = await self.run(graph, cancel_token=cancel_token, deadline=deadline)
        if result.error is not None:
            raise result.error
        return result


class LeveledScheduler(_SchedulerBase):
    """Executes a dependency graph level by level.

    The runner is called as ``await runner(node.payload, context)`` and its
    return value becomes the task's output.
    """

    def __init__(
        self,
        runner: Runner,
        max_parallel: int = 4,
        task_timeout: float | None = None,
    ):
        if max_parallel < 1:
            raise ValueError("max_parallel must be at least 1")
        self._runner = runner
        self.max_parallel = max_parallel
        self.task_timeout = task_timeout
        self._logger = logger.bind(component="LeveledScheduler")

    async def run(
        self,
        graph: DependencyGraph,
        *,
        cancel_token: CancelToken | None = None,
        deadline: float | None = None,
    ) -> ScheduleResult:
        """Execute every node of the graph.

        Args:
            graph: Graph whose node payloads are handed to the runner
            cancel_token: Optional token to stop the run cooperatively
            deadline: Optional run budget in seconds

        Returns:
            ScheduleResult with results in completion order and the first
            error, if any

        Raises:
            GraphValidationError: If the graph contains a cycle
        """
        graph.validate()
        levels = graph.compute_levels()

        token = cancel_token or CancelToken()
        deadline_at = None
        if deadline is not None:
            deadline_at = asyncio.get_running_loop().time() + deadline

        state = _RunState()
        error: TaskExecutionError | CancellationError | None = None

        await self._logger.ainfo(
            "Starting leveled run",
            tasks=len(graph),
            levels=len(levels),
            max_parallel=self.max_parallel,
        )

        for level_index, level_ids in enumerate(levels):
            context = RunContext(cancel_token=token, deadline=deadline_at, level=level_index)
            try:
                context.check()
            except CancellationError as exc:
                error = exc
                break

            await self._logger.adebug(
                "Processing level",
                level=level_index,
                tasks=len(level_ids),
            )

            error = await self._run_level(graph, level_ids, context, state)
            if error is not None:
                break

            await self._logger.adebug(
                "Level completed",
                level=level_index,
                completed=len(level_ids),
            )

        result = ScheduleResult(
            results=state.results,
            completed=state.completed,
            levels=levels,
            error=error,
            peak_workers=state.peak_workers,
        )

        if error is not None:
            error.partial = result
            await self._logger.awarning(
                "Leveled run stopped",
                error=str(error),
                level=error.level,
                completed=len(state.completed),
            )
        else:
            await self._logger.ainfo("Leveled run complete", completed=len(state.completed))

        return result

    async def _run_level(
        self,
        graph: DependencyGraph,
        level_ids: list[str],
        context: RunContext,
        state: _RunState,
    ) -> TaskExecutionError | CancellationError | None:
        semaphore = asyncio.Semaphore(self.max_parallel)
        abort = asyncio.Event()
        errors: list[TaskExecutionError | CancellationError] = []

        async def run_one(node_id: str) -> None:
            async with semaphore:
                # Not started yet: skip once the level failed or the run stopped
                if abort.is_set() or context.cancel_token.cancelled or context.expired:
                    return
                try:
                    await self._run_task(graph, node_id, context, state)
                except (TaskExecutionError, CancellationError) as exc:
                    abort.set()
                    errors.append(exc)

        await asyncio.gather(*(run_one(node_id) for node_id in level_ids))

        if errors:
            return errors[0]

        skipped = [node_id for node_id in level_ids if node_id not in state.completed]
        if skipped:
            try:
                context.check()
            except CancellationError as exc:
                return exc
        return None

    async def _run_task(
        self,
        graph: DependencyGraph,
        node_id: str,
        context: RunContext,
        state: _RunState,
    ) -> None:
        node = graph.get_node(node_id)
        if node is None:
            raise TaskExecutionError(node_id, "task not in graph", level=context.level)

        async with state.completed_lock:
            unsatisfied = [dep for dep in graph.get_dependencies(node_id) if dep not in state.completed]
        if unsatisfied:
            raise TaskExecutionError(
                node_id,
                f"dependencies not completed: {', '.join(unsatisfied)}",
                level=context.level,
            )

        state.active_workers += 1
        state.peak_workers = max(state.peak_workers, state.active_workers)
        start = time.perf_counter()
        try:
            output = await self._invoke(node, context)
        except (TaskExecutionError, CancellationError):
            raise
        except Exception as exc:
            raise TaskExecutionError(node_id, str(exc), level=context.level, cause=exc) from exc
        finally:
            state.active_workers -= 1

        duration_ms = int((time.perf_counter() - start) * 1000)
        task_result = TaskResult(
            task_id=node_id,
            target_path=getattr(node.payload, "target_path", "") or "",
            level=context.level,
            output=output,
            duration_ms=duration_ms,
        )

        async with state.results_lock:
            state.results.append(task_result)
        async with state.completed_lock:
            state.completed.add(node_id)

        await self._logger.adebug(
            "Task completed",
            task_id=node_id,
            target_path=task_result.target_path,
            level=context.level,
            duration_ms=duration_ms,
        )

    async def _invoke(self, node: GraphNode, context: RunContext) -> Any:
        """Call the runner, racing it against the cancel token and timeouts.

        The per-task timeout is clamped to the remaining run deadline; a
        timeout caused by the run deadline is a cancellation, not a task
        failure.
        """
        task_timeout = getattr(node.payload, "timeout", None) or self.task_timeout
        remaining = context.remaining()

        timeout = task_timeout
        bounded_by_deadline = False
        if remaining is not None and (timeout is None or remaining < timeout):
            timeout = remaining
            bounded_by_deadline = True

        runner_task = asyncio.ensure_future(self._runner(node.payload, context))
        cancel_waiter = asyncio.ensure_future(context.cancel_token.wait())
        try:
            done, _ = await asyncio.wait(
                {runner_task, cancel_waiter},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            runner_task.cancel()
            raise
        finally:
            cancel_waiter.cancel()

        if runner_task in done:
            return runner_task.result()

        runner_task.cancel()
        await asyncio.gather(runner_task, return_exceptions=True)

        if cancel_waiter in done:
            raise CancellationError(
                context.cancel_token.reason or "generation run cancelled",
                level=context.level,
            )
        if bounded_by_deadline:
            raise CancellationError("run deadline exceeded", level=context.level)
        raise TaskExecutionError(
            node.id,
            f"timed out after {timeout}s",
            level=context.level,
            cause=TimeoutError(),
        )


class DeterministicScheduler(_SchedulerBase):
    """Sorts results by target path so output order never depends on timing."""

    def __init__(self, inner: LeveledScheduler):
        self.inner = inner

    @property
    def max_parallel(self) -> int:
        return self.inner.max_parallel

    async def run(
        self,
        graph: DependencyGraph,
        *,
        cancel_token: CancelToken | None = None,
        deadline: float | None = None,
    ) -> ScheduleResult:
        result = await self.inner.run(graph, cancel_token=cancel_token, deadline=deadline)
        ordered = dataclasses.replace(
            result,
            results=sorted(result.results, key=lambda r: (r.target_path, r.task_id)),
        )
        if ordered.error is not None:
            ordered.error.partial = ordered
        return ordered


@dataclass
class GenerationStats:
    """Aggregate statistics over one or more scheduled runs."""

    total_files: int = 0
    levels: int = 0
    max_parallelism: int = 0
    actual_max_workers: int = 0
    duration_seconds: float = 0.0
    files_per_second: float = 0.0
    failed_runs: int = 0
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    async def record(self, result: ScheduleResult, max_parallelism: int, duration_seconds: float) -> None:
        async with self._lock:
            self.total_files += len(result.results)
            self.levels = max(self.levels, len(result.levels))
            self.max_parallelism = max_parallelism
            self.actual_max_workers = max(self.actual_max_workers, result.peak_workers)
            self.duration_seconds += duration_seconds
            if self.duration_seconds > 0:
                self.files_per_second = self.total_files / self.duration_seconds
            if result.error is not None:
                self.failed_runs += 1


class StatsScheduler(_SchedulerBase):
    """Records timing and parallelism of every run into a GenerationStats."""

    def __init__(self, inner: LeveledScheduler | DeterministicScheduler, stats: GenerationStats):
        self.inner = inner
        self.stats = stats

    @property
    def max_parallel(self) -> int:
        return self.inner.max_parallel

    async def run(
        self,
        graph: DependencyGraph,
        *,
        cancel_token: CancelToken | None = None,
        deadline: float | None = None,
    ) -> ScheduleResult:
        start = time.perf_counter()
        result = await self.inner.run(graph, cancel_token=cancel_token, deadline=deadline)
        await self.stats.record(result, self.inner.max_parallel, time.perf_counter() - start)
        return result
