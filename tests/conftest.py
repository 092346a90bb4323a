"""Pytest configuration and shared fixtures."""

import asyncio
from pathlib import Path
from typing import Any

import pytest

from specforge.engine.scheduler import RunContext
from specforge.graph import DependencyGraph
from specforge.models import (
    APIContract,
    Architecture,
    BuildConfig,
    ContractSchema,
    DataModel,
    Entity,
    FunctionalRequirement,
    GenerationPhase,
    GenerationPlan,
    GenerationTask,
    NonFunctionalRequirement,
    Package,
    Relationship,
    Requirements,
    Specification,
    TestingStrategy,
)
from specforge.storage import LocalFileStore


@pytest.fixture
def sample_spec() -> Specification:
    """A small shop specification: users, products, orders."""
    return Specification(
        id="shop",
        version="1.0.0",
        requirements=Requirements(
            functional=[
                FunctionalRequirement(id="FR-001", description="Users can register", priority="high", category="auth"),
                FunctionalRequirement(id="FR-002", description="Users can browse products", priority="medium"),
            ],
            non_functional=[
                NonFunctionalRequirement(id="NFR-001", description="p99 latency", type="performance", threshold="200ms"),
            ],
        ),
        architecture=Architecture(
            packages=[
                Package(name="models", path="internal/models", purpose="Domain types"),
                Package(name="service", path="internal/service", purpose="Business logic", dependencies=["models"]),
                Package(name="handler", path="internal/handler", purpose="HTTP", dependencies=["service", "models"]),
                Package(name="config", path="internal/config", purpose="Configuration"),
            ],
        ),
        data_model=DataModel(
            entities=[
                Entity(name="User", package="models", attributes={"id": "string", "email": "string"}),
                Entity(name="Product", package="models", attributes={"id": "string", "price": "float64"}),
                Entity(
                    name="Cart",
                    package="service",
                    attributes={"owner": "*User", "items": "[]Product"},
                ),
            ],
            relationships=[
                Relationship(from_entity="Cart", to_entity="User", type="belongs_to"),
            ],
        ),
        api_contracts=[
            APIContract(
                endpoint="/users",
                method="POST",
                description="Register a user",
                request=ContractSchema(fields={"email": "string"}),
                owner_package="handler",
            ),
            APIContract(endpoint="/products", method="GET", description="List products", owner_package="models"),
        ],
        testing_strategy=TestingStrategy(coverage_target=80.0, frameworks=["testing"]),
        build_config=BuildConfig(language_version="1.22", output_path="./out"),
    )


@pytest.fixture
def sample_plan() -> GenerationPlan:
    """Three phases: models, then services, then handlers."""
    return GenerationPlan(
        id="plan-1",
        spec_id="shop",
        phases=[
            GenerationPhase(
                name="models",
                order=0,
                tasks=[
                    GenerationTask(id="t-user", target_path="models/user.go"),
                    GenerationTask(id="t-product", target_path="models/product.go"),
                ],
            ),
            GenerationPhase(
                name="services",
                order=1,
                dependencies=["models"],
                tasks=[
                    GenerationTask(id="t-cart", target_path="service/cart_service.go"),
                ],
            ),
            GenerationPhase(
                name="handlers",
                order=2,
                dependencies=["services"],
                tasks=[
                    GenerationTask(id="t-handler", target_path="handler/user_handler.go"),
                    GenerationTask(id="t-readme", type="run_command", target_path=""),
                ],
            ),
        ],
    )


@pytest.fixture
def diamond_graph() -> DependencyGraph:
    """a -> (b, c) -> d"""
    graph = DependencyGraph()
    graph.add_node("a", "a")
    graph.add_node("b", "b", ["a"])
    graph.add_node("c", "c", ["a"])
    graph.add_node("d", "d", ["b", "c"])
    return graph


class RecordingRunner:
    """Scheduler runner that records calls and concurrency.

    ``delays`` maps node payload -> seconds to sleep; ``failures`` is a set
    of payloads that raise.
    """

    def __init__(self, delays: dict[str, float] | None = None, failures: set[str] | None = None):
        self.delays = delays or {}
        self.failures = failures or set()
        self.started: list[str] = []
        self.finished: list[str] = []
        self.active = 0
        self.peak = 0

    async def __call__(self, payload: Any, context: RunContext) -> str:
        self.started.append(payload)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delays.get(payload, 0))
            if payload in self.failures:
                raise RuntimeError(f"boom: {payload}")
            self.finished.append(payload)
            return f"out:{payload}"
        finally:
            self.active -= 1


@pytest.fixture
def runner_factory() -> type[RecordingRunner]:
    return RecordingRunner


@pytest.fixture
def recording_runner() -> RecordingRunner:
    return RecordingRunner()


class FakeGenerator:
    """Generator returning deterministic content and counting calls."""

    def __init__(self, failing_paths: set[str] | None = None):
        self.failing_paths = failing_paths or set()
        self.calls: list[str] = []

    async def generate(self, task: GenerationTask, filtered: Any) -> str:
        self.calls.append(task.target_path)
        await asyncio.sleep(0)
        if task.target_path in self.failing_paths:
            raise RuntimeError(f"generation failed for {task.target_path}")
        entities = ", ".join(filtered.entity_names)
        return f"// {task.target_path}\n// entities: {entities}\n"


@pytest.fixture
def fake_generator() -> FakeGenerator:
    return FakeGenerator()


class FailingOnceStore(LocalFileStore):
    """Local store whose first atomic write fails."""

    def __init__(self, root: Path):
        super().__init__(root)
        self.failures_left = 1

    def write_atomic(self, path: str, content: str) -> None:
        if self.failures_left:
            self.failures_left -= 1
            raise OSError("disk full")
        super().write_atomic(path, content)


@pytest.fixture
def failing_file_store(tmp_path) -> FailingOnceStore:
    return FailingOnceStore(tmp_path)
