"""Demo script for incremental generation.

This demonstrates:
1. Context Filter - per-file specification projection
2. Leveled Scheduler - dependency levels and bounded parallelism
3. Change Detector - structural diff between snapshots
4. Incremental Pipeline - regenerating only affected files
5. Change Report - text summary of a change set

Usage:
    python examples/demo_incremental.py
"""

import asyncio
import tempfile

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from specforge.audit import ChangeReportGenerator, ReportFormat
from specforge.config import OrchestratorSettings
from specforge.engine import (
    ContextFilter,
    FilteredSpecification,
    GenerationStats,
    IncrementalGenerationPipeline,
    IncrementalStateStore,
    build_task_graph,
)
from specforge.log import configure_logging
from specforge.models import (
    APIContract,
    Architecture,
    DataModel,
    Entity,
    GenerationPhase,
    GenerationPlan,
    GenerationTask,
    Package,
    Relationship,
    Specification,
)

console = Console()


class StructGenerator:
    """Renders one Go struct per entity in the filtered context."""

    def __init__(self):
        self.calls = 0

    async def generate(self, task: GenerationTask, filtered: FilteredSpecification) -> str:
        self.calls += 1
        await asyncio.sleep(0.05)

        package = task.target_path.split("/")[0]
        lines = [f"package {package}", ""]
        for entity in filtered.data_model.entities:
            lines.append(f"type {entity.name} struct {{")
            for attr_name in sorted(entity.attributes):
                lines.append(f"\t{attr_name.title()} {entity.attributes[attr_name]}")
            lines.append("}")
            lines.append("")
        return "\n".join(lines)


def build_demo_spec() -> Specification:
    return Specification(
        id="library",
        version="1.0.0",
        architecture=Architecture(
            packages=[
                Package(name="models", path="internal/models", purpose="Domain types"),
                Package(name="service", path="internal/service", purpose="Lending rules", dependencies=["models"]),
                Package(name="handler", path="internal/handler", purpose="HTTP API", dependencies=["service"]),
            ],
        ),
        data_model=DataModel(
            entities=[
                Entity(name="Member", package="models", attributes={"id": "string", "name": "string"}),
                Entity(name="Book", package="models", attributes={"isbn": "string", "title": "string"}),
                Entity(
                    name="Loan",
                    package="service",
                    attributes={"member": "*Member", "book": "*Book", "due": "time.Time"},
                ),
            ],
            relationships=[Relationship(from_entity="Loan", to_entity="Member", type="belongs_to")],
        ),
        api_contracts=[
            APIContract(endpoint="/loans", method="POST", description="Borrow a book", owner_package="handler"),
        ],
    )


def build_demo_plan() -> GenerationPlan:
    return GenerationPlan(
        id="library-plan",
        spec_id="library",
        phases=[
            GenerationPhase(
                name="models",
                tasks=[
                    GenerationTask(id="member", target_path="models/member.go"),
                    GenerationTask(id="book", target_path="models/book.go"),
                ],
            ),
            GenerationPhase(
                name="services",
                dependencies=["models"],
                tasks=[GenerationTask(id="loan", target_path="service/loan_service.go")],
            ),
            GenerationPhase(
                name="handlers",
                dependencies=["services"],
                tasks=[GenerationTask(id="loan-handler", target_path="handler/loan_handler.go")],
            ),
        ],
    )


def demo_context_filter(spec: Specification, plan: GenerationPlan):
    """Demonstrate the Context Filter."""
    console.print("\n[bold cyan]═══ Context Filter Demo ═══[/bold cyan]\n")

    context_filter = ContextFilter(spec)

    table = Table(title="Filtered Context per File")
    table.add_column("File", style="cyan")
    table.add_column("Entities", style="green")
    table.add_column("Packages", style="yellow")
    table.add_column("Reduction", justify="right")

    for task in plan.file_tasks():
        filtered = context_filter.filter_for_file(task.target_path, plan)
        table.add_row(
            task.target_path,
            ", ".join(filtered.entity_names),
            ", ".join(filtered.package_names),
            f"{filtered.reduction_percentage:.0f}%",
        )

    console.print(table)


def demo_levels(plan: GenerationPlan):
    """Demonstrate dependency levels."""
    console.print("\n[bold cyan]═══ Dependency Levels Demo ═══[/bold cyan]\n")

    graph = build_task_graph(plan)
    for index, level in enumerate(graph.compute_levels()):
        console.print(f"  Level {index}: {', '.join(level)}")


async def demo_pipeline(
    spec: Specification,
    plan: GenerationPlan,
    output_dir: str,
    settings: OrchestratorSettings,
):
    """Demonstrate first, unchanged and incremental runs."""
    console.print("\n[bold cyan]═══ Incremental Pipeline Demo ═══[/bold cyan]\n")

    generator = StructGenerator()
    stats = GenerationStats()
    pipeline = IncrementalGenerationPipeline(
        generator,
        IncrementalStateStore.from_settings(output_dir, settings),
        settings=settings,
        stats=stats,
    )

    console.print("[bold]First run...[/bold]")
    result = await pipeline.run(spec, plan)
    console.print(f"  Phase: {result.phase}")
    console.print(f"  Generated: {', '.join(result.generated_files)}")

    console.print("\n[bold]Same snapshot again...[/bold]")
    result = await pipeline.run(spec, plan)
    console.print(f"  Phase: {result.phase}")
    console.print(f"  Generated: {len(result.generated_files)} files")

    console.print("\n[bold]Adding an attribute to Book...[/bold]")
    updated = spec.model_copy(deep=True)
    updated.data_model.entities[1].attributes["author"] = "string"
    result = await pipeline.run(updated, plan)
    console.print(f"  Phase: {result.phase}")
    console.print(f"  Regenerated: {', '.join(result.generated_files)}")

    report = ChangeReportGenerator().generate(
        result.changes,
        ReportFormat.TEXT,
        affected_files=result.affected_files,
        affected_packages=result.affected_packages,
    )
    console.print(Panel(report, title="Change Report"))

    table = Table(title="Generation Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Files generated", str(stats.total_files))
    table.add_row("Generator calls", str(generator.calls))
    table.add_row("Max levels", str(stats.levels))
    table.add_row("Peak workers", f"{stats.actual_max_workers}/{stats.max_parallelism}")
    table.add_row("Files per second", f"{stats.files_per_second:.1f}")
    console.print(table)


async def run_demo():
    """Run the complete demo."""
    settings = OrchestratorSettings(max_parallel=2, log_level="WARNING", _env_file=None)
    configure_logging(settings.log_level, settings.log_json)

    console.print(Panel.fit(
        "[bold magenta]Dependency-Aware Incremental Generation[/bold magenta]\n"
        "[cyan]Context filtering, leveled scheduling and change detection[/cyan]",
        border_style="bright_blue",
    ))

    spec = build_demo_spec()
    plan = build_demo_plan()

    try:
        demo_context_filter(spec, plan)
        demo_levels(plan)

        with tempfile.TemporaryDirectory() as output_dir:
            await demo_pipeline(spec, plan, output_dir, settings)

        console.print(Panel.fit(
            "[bold green]✓ Demo Complete![/bold green]",
            border_style="green",
        ))

    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        import traceback
        traceback.print_exc()


if __name__ == "__main__":
    asyncio.run(run_demo())
