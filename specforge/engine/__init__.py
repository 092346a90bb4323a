"""Generation engine.

- Leveled Scheduler: bounded-concurrency execution of task graphs
- Change Detector: structural diff between specification snapshots
- Incremental State Store: persisted record of what was generated
- Context Filter: per-file projection of the specification
- Generation Cache: bounded TTL cache of generated content
- Pipeline: the incremental workflow tying it together
"""

from .cache import CacheStats, GenerationCache
from .change_detector import AffectedFilesCalculator, ChangeDetector, to_snake_case
from .context_filter import ContextFilter, FilteredSpecification
from .generator import Generator, PatchProducer, create_file_diff
from .incremental import (
    IncrementalStateStore,
    compute_file_checksum,
    compute_spec_checksum,
    extract_content_from_diff,
    is_template_file,
    normalize_path,
)
from .pipeline import IncrementalGenerationPipeline, PipelineResult, PipelineState
from .scheduler import (
    CancelToken,
    DeterministicScheduler,
    GenerationStats,
    LeveledScheduler,
    RunContext,
    ScheduleResult,
    StatsScheduler,
    TaskResult,
    build_task_graph,
)
from .validation import SpecificationValidator, validate_concurrently

__all__ = [
    # Scheduling
    "CancelToken",
    "DeterministicScheduler",
    "GenerationStats",
    "LeveledScheduler",
    "RunContext",
    "ScheduleResult",
    "StatsScheduler",
    "TaskResult",
    "build_task_graph",
    # Change detection
    "AffectedFilesCalculator",
    "ChangeDetector",
    "to_snake_case",
    # Incremental state
    "IncrementalStateStore",
    "compute_file_checksum",
    "compute_spec_checksum",
    "extract_content_from_diff",
    "is_template_file",
    "normalize_path",
    # Context filtering
    "ContextFilter",
    "FilteredSpecification",
    # Generation
    "CacheStats",
    "GenerationCache",
    "Generator",
    "PatchProducer",
    "create_file_diff",
    # Validation
    "SpecificationValidator",
    "validate_concurrently",
    # Pipeline
    "IncrementalGenerationPipeline",
    "PipelineResult",
    "PipelineState",
]
