"""Incremental generation pipeline.

Wires the components into a LangGraph workflow:

1. analyze - validate the snapshot and plan, load the previous state
2. detect_changes - diff against the previous snapshot
3. plan_regeneration - map changes to files, build the task subgraph
4. generate - run the subgraph through the leveled scheduler
5. persist_state - record what was generated

Each step can stop the workflow early (invalid input, nothing changed,
nothing to regenerate).
"""

from typing import Any, TypedDict

import structlog
from langgraph.graph import END, StateGraph

from specforge.config import OrchestratorSettings, get_settings
from specforge.engine.cache import GenerationCache
from specforge.engine.change_detector import AffectedFilesCalculator, ChangeDetector
from specforge.engine.context_filter import ContextFilter
from specforge.engine.generator import Generator, PatchProducer
from specforge.engine.incremental import IncrementalStateStore, normalize_path
from specforge.engine.scheduler import (
    CancelToken,
    DeterministicScheduler,
    GenerationStats,
    LeveledScheduler,
    ScheduleResult,
    StatsScheduler,
    build_task_graph,
)
from specforge.engine.validation import SpecificationValidator
from specforge.errors import AggregateValidationError, GraphValidationError
from specforge.graph import DependencyGraph
from specforge.models.changes import ChangeSet
from specforge.models.plan import GenerationPlan, Patch
from specforge.models.spec import Specification

logger = structlog.get_logger()


class PipelineState(TypedDict, total=False):
    """State flowing through the workflow."""

    # Input
    spec: Specification
    plan: GenerationPlan
    cancel_token: CancelToken | None

    # Analysis
    previous_spec: Specification | None
    previous_dependency_graph: dict[str, list[str]]
    generated_paths: list[str]

    # Change detection
    changes: ChangeSet | None
    affected_packages: list[str]
    affected_files: list[str]
    task_graph: DependencyGraph | None

    # Generation
    schedule: ScheduleResult | None
    dependency_graph: dict[str, list[str]]

    # Control flow
    phase: str
    errors: list[str]
    should_stop: bool


class PipelineResult:
    """Result of one pipeline execution."""

    def __init__(
        self,
        success: bool,
        phase: str,
        changes: ChangeSet | None = None,
        affected_files: list[str] | None = None,
        affected_packages: list[str] | None = None,
        schedule: ScheduleResult | None = None,
        errors: list[str] | None = None,
    ):
        self.success = success
        self.phase = phase
        self.changes = changes
        self.affected_files = affected_files or []
        self.affected_packages = affected_packages or []
        self.schedule = schedule
        self.errors = errors or []

    @property
    def patches(self) -> list[Patch]:
        if self.schedule is None:
            return []
        return self.schedule.outputs

    @property
    def generated_files(self) -> list[str]:
        return [patch.target_file for patch in self.patches]

    @property
    def error(self) -> Exception | None:
        return self.schedule.error if self.schedule is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "phase": self.phase,
            "changes": self.changes.summary() if self.changes else {},
            "affected_files": self.affected_files,
            "affected_packages": self.affected_packages,
            "generated_files": self.generated_files,
            "errors": self.errors,
        }


class IncrementalGenerationPipeline:
    """Regenerates only what a specification change affects."""

    def __init__(
        self,
        generator: Generator,
        store: IncrementalStateStore,
        settings: OrchestratorSettings | None = None,
        cache: GenerationCache | None = None,
        stats: GenerationStats | None = None,
    ):
        self.generator = generator
        self.store = store
        self.settings = settings or get_settings()
        self.stats = stats
        self.detector = ChangeDetector()
        self.validator = SpecificationValidator()

        if cache is None and self.settings.cache_enabled:
            cache = GenerationCache(
                max_size=self.settings.cache_max_size,
                ttl_seconds=self.settings.cache_ttl_seconds,
            )
        self.cache = cache

        self._app = self.create_workflow_graph().compile()
        self._logger = logger.bind(component="IncrementalGenerationPipeline")

    async def run(
        self,
        spec: Specification,
        plan: GenerationPlan,
        cancel_token: CancelToken | None = None,
    ) -> PipelineResult:
        """Run the workflow for one snapshot.

        Args:
            spec: Current specification snapshot
            plan: Generation plan for the snapshot
            cancel_token: Optional token to stop generation cooperatively

        Returns:
            PipelineResult describing what was (re)generated

        Raises:
            StateIOError: If the incremental state cannot be read or written
        """
        initial_state: PipelineState = {
            "spec": spec,
            "plan": plan,
            "cancel_token": cancel_token,
            "changes": None,
            "affected_packages": [],
            "affected_files": [],
            "task_graph": None,
            "schedule": None,
            "dependency_graph": {},
            "phase": "analyze",
            "errors": [],
            "should_stop": False,
        }

        await self._logger.ainfo("Starting incremental generation", spec_id=spec.id, version=spec.version)

        async with self.store.transaction():
            final_state = await self._app.ainvoke(initial_state)

        schedule = final_state.get("schedule")
        errors = list(final_state.get("errors", []))
        success = not errors and (schedule is None or schedule.succeeded)

        result = PipelineResult(
            success=success,
            phase=final_state.get("phase", "analyze"),
            changes=final_state.get("changes"),
            affected_files=final_state.get("affected_files", []),
            affected_packages=final_state.get("affected_packages", []),
            schedule=schedule,
            errors=errors,
        )

        await self._logger.ainfo(
            "Incremental generation finished",
            success=result.success,
            phase=result.phase,
            generated=len(result.generated_files),
        )

        return result

    def create_workflow_graph(self) -> StateGraph:
        """Create the LangGraph workflow for one incremental run."""
        workflow = StateGraph(PipelineState)

        workflow.add_node("analyze", self._analyze_node)
        workflow.add_node("detect_changes", self._detect_changes_node)
        workflow.add_node("plan_regeneration", self._plan_regeneration_node)
        workflow.add_node("generate", self._generate_node)
        workflow.add_node("persist_state", self._persist_state_node)

        workflow.set_entry_point("analyze")

        for source, target in (
            ("analyze", "detect_changes"),
            ("detect_changes", "plan_regeneration"),
            ("plan_regeneration", "generate"),
        ):
            workflow.add_conditional_edges(
                source,
                self._should_continue,
                {
                    "continue": target,
                    "stop": END,
                },
            )

        workflow.add_edge("generate", "persist_state")
        workflow.add_edge("persist_state", END)

        return workflow

    def _should_continue(self, state: PipelineState) -> str:
        if state.get("should_stop") or state.get("errors"):
            return "stop"
        return "continue"

    # ==================== Nodes ====================

    async def _analyze_node(self, state: PipelineState) -> PipelineState:
        """Validate inputs and load the previous incremental state."""
        try:
            await self.validator.validate(state["spec"], state["plan"])
        except AggregateValidationError as e:
            return {**state, "phase": "analyze", "errors": list(e.errors), "should_stop": True}

        previous = self.store.get_state()
        return {
            **state,
            "phase": "analyze",
            "previous_spec": previous.previous_spec,
            "previous_dependency_graph": dict(previous.dependency_graph),
            "generated_paths": list(previous.generated_files),
        }

    async def _detect_changes_node(self, state: PipelineState) -> PipelineState:
        spec = state["spec"]
        changes = self.detector.detect_changes(state.get("previous_spec"), spec)
        affected_packages = self.detector.identify_affected_packages(changes, spec.architecture)

        await self._logger.ainfo(
            "Changes detected",
            has_changes=changes.has_changes,
            first_generation=changes.first_generation,
            affected_packages=len(affected_packages),
        )

        return {
            **state,
            "phase": "detect_changes" if changes.has_changes else "unchanged",
            "changes": changes,
            "affected_packages": affected_packages,
            "should_stop": not changes.has_changes,
        }

    async def _plan_regeneration_node(self, state: PipelineState) -> PipelineState:
        """Map changes onto files and cut the task graph down to them."""
        plan = state["plan"]
        changes = state["changes"]
        if changes is None:
            return {**state, "phase": "plan_regeneration", "errors": ["no change set to plan from"], "should_stop": True}

        all_files = [normalize_path(task.target_path) for task in plan.file_tasks()]

        if changes.first_generation:
            affected = set(all_files)
        else:
            calculator = AffectedFilesCalculator(state.get("previous_dependency_graph", {}))
            affected = set(calculator.calculate(changes, all_files))
            # Files the previous run never produced
            generated = set(state.get("generated_paths", []))
            affected.update(path for path in all_files if path not in generated)

        try:
            full_graph = build_task_graph(plan)
        except GraphValidationError as e:
            return {**state, "phase": "plan_regeneration", "errors": [str(e)], "should_stop": True}

        task_graph = DependencyGraph()
        for task in plan.file_tasks():
            if normalize_path(task.target_path) in affected:
                node = full_graph.get_node(task.id)
                if node is None:
                    error = f"task {task.id} missing from task graph"
                    return {**state, "phase": "plan_regeneration", "errors": [error], "should_stop": True}
                task_graph.add_node(task.id, task, node.dependencies)

        affected_files = sorted(affected)
        await self._logger.ainfo(
            "Regeneration planned",
            total_files=len(all_files),
            affected_files=len(affected_files),
            tasks=len(task_graph),
        )

        if len(task_graph) == 0:
            # Nothing to regenerate, but the new snapshot is still the baseline
            self.store.update_state(state["spec"], [], {})
            return {
                **state,
                "phase": "complete",
                "affected_files": affected_files,
                "task_graph": task_graph,
                "should_stop": True,
            }

        return {
            **state,
            "phase": "plan_regeneration",
            "affected_files": affected_files,
            "task_graph": task_graph,
            "should_stop": False,
        }

    async def _generate_node(self, state: PipelineState) -> PipelineState:
        spec = state["spec"]
        task_graph = state["task_graph"]
        if task_graph is None:
            return {**state, "phase": "generate", "errors": ["no task graph to generate from"]}

        context_filter = ContextFilter(spec, max_depth=self.settings.context_max_depth)
        producer = PatchProducer(self.generator, context_filter, state["plan"], cache=self.cache)

        scheduler: Any = LeveledScheduler(
            producer,
            max_parallel=self.settings.max_parallel,
            task_timeout=self.settings.task_timeout_seconds,
        )
        if self.settings.deterministic_output:
            scheduler = DeterministicScheduler(scheduler)
        if self.stats is not None:
            scheduler = StatsScheduler(scheduler, self.stats)

        schedule = await scheduler.run(
            task_graph,
            cancel_token=state.get("cancel_token"),
            deadline=self.settings.run_timeout_seconds,
        )

        errors = [str(schedule.error)] if schedule.error is not None else []
        return {
            **state,
            "phase": "generate",
            "schedule": schedule,
            "dependency_graph": producer.dependency_graph,
            "errors": errors,
        }

    async def _persist_state_node(self, state: PipelineState) -> PipelineState:
        """Record successfully generated files.

        The snapshot itself is only recorded after a complete run, so files
        that did not finish are picked up again on the next run.
        """
        schedule = state["schedule"]
        if schedule is None:
            return {**state, "phase": "persist_state", "errors": ["no schedule to persist"]}

        patches = schedule.outputs
        generated = {patch.target_file for patch in patches}
        dependency_graph = {
            path: deps for path, deps in state.get("dependency_graph", {}).items() if path in generated
        }
        task_ids = {result.target_path: result.task_id for result in schedule.results}

        if schedule.succeeded:
            self.store.update_state(state["spec"], patches, dependency_graph, task_ids=task_ids)
        else:
            self.store.record_files(patches, dependency_graph, task_ids=task_ids)

        return {**state, "phase": "complete" if schedule.succeeded else "generate"}
