"""Generator seam and patch production.

The content generator is an external collaborator (typically an LLM
client). ``PatchProducer`` adapts it to the scheduler's runner signature:
it filters the specification for the task's file, consults the
generation cache, calls the generator and wraps the result in a creation
diff.
"""

import posixpath
from typing import Protocol, runtime_checkable

import structlog

from specforge.engine.cache import GenerationCache
from specforge.engine.context_filter import ContextFilter, FilteredSpecification
from specforge.engine.scheduler import RunContext
from specforge.models.plan import GenerationPlan, GenerationTask, Patch

logger = structlog.get_logger()


@runtime_checkable
class Generator(Protocol):
    """Produces the content of one file from a task and its filtered context."""

    async def generate(self, task: GenerationTask, filtered: FilteredSpecification) -> str: ...


def create_file_diff(content: str) -> str:
    """Build a creation diff: ``@@ -0,0 +1,N @@`` followed by ``+line`` rows."""
    lines = content.split("\n")
    if content.endswith("\n"):
        lines.pop()
    if not content:
        lines = []

    body = "".join(f"+{line}\n" for line in lines)
    return f"@@ -0,0 +1,{len(lines)} @@\n{body}"


class PatchProducer:
    """Scheduler runner turning generation tasks into patches.

    Also records, per produced file, the entity names its filtered context
    contained; the incremental state store persists this as the file's
    dependency list.
    """

    def __init__(
        self,
        generator: Generator,
        context_filter: ContextFilter,
        plan: GenerationPlan | None = None,
        cache: GenerationCache | None = None,
    ):
        self.generator = generator
        self.context_filter = context_filter
        self.plan = plan
        self.cache = cache
        self.spec_hash = context_filter.spec.compute_hash()
        self.dependency_graph: dict[str, list[str]] = {}
        self._logger = logger.bind(component="PatchProducer")

    async def __call__(self, task: GenerationTask, context: RunContext) -> Patch:
        context.check()

        filtered = self.context_filter.filter_for_file(task.target_path, self.plan)
        package = posixpath.basename(posixpath.dirname(task.target_path))

        content = None
        if self.cache is not None:
            cached = self.cache.get(self.spec_hash, package)
            if cached is not None:
                content = cached.get(task.target_path)

        if content is None:
            content = await self.generator.generate(task, filtered)
            if self.cache is not None:
                self.cache.merge(self.spec_hash, package, {task.target_path: content})
        else:
            await self._logger.adebug("Cache hit", task_id=task.id, target_path=task.target_path)

        self.dependency_graph[task.target_path] = filtered.entity_names

        return Patch(target_file=task.target_path, diff=create_file_diff(content))
