"""Validation that runs before anything is scheduled.

Independent checks run concurrently; every failure is collected into one
``AggregateValidationError`` instead of stopping at the first.
"""

import asyncio
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable

import structlog

from specforge.errors import AggregateValidationError, SpecforgeError
from specforge.models.plan import GenerationPlan
from specforge.models.spec import Specification

logger = structlog.get_logger()

Check = Callable[[], Awaitable[None]]


async def validate_concurrently(checks: Iterable[Check]) -> None:
    """Run every check and raise once with all failures.

    A check fails by raising. Failures are reported in check order.

    Raises:
        AggregateValidationError: If at least one check failed
    """
    outcomes = await asyncio.gather(*(check() for check in checks), return_exceptions=True)

    errors = []
    for outcome in outcomes:
        if isinstance(outcome, AggregateValidationError):
            errors.extend(outcome.errors)
        elif isinstance(outcome, Exception):
            errors.append(str(outcome))
        elif isinstance(outcome, BaseException):
            raise outcome

    if errors:
        raise AggregateValidationError(errors)


class SpecificationValidator:
    """Structural checks on a specification snapshot."""

    def __init__(self):
        self._logger = logger.bind(component="SpecificationValidator")

    async def validate(self, spec: Specification, plan: GenerationPlan | None = None) -> None:
        """Validate the snapshot (and optionally the plan built from it).

        Raises:
            AggregateValidationError: Listing every violated rule
        """
        checks: list[Check] = [
            lambda: self.check_package_cycles(spec),
            lambda: self.check_duplicate_names(spec),
            lambda: self.check_relationship_endpoints(spec),
            lambda: self.check_package_dependencies(spec),
        ]
        if plan is not None:
            checks.append(lambda: self.check_plan(plan))

        try:
            await validate_concurrently(checks)
        except AggregateValidationError as e:
            await self._logger.awarning("Specification validation failed", failures=e.count)
            raise

        await self._logger.adebug("Specification validated", spec_id=spec.id)

    async def check_package_cycles(self, spec: Specification) -> None:
        cycle = spec.find_package_cycle()
        if cycle:
            raise SpecforgeError(f"cyclic package dependency: {' -> '.join(cycle)}")

    async def check_duplicate_names(self, spec: Specification) -> None:
        errors = []
        for label, names in (
            ("entity", [entity.name for entity in spec.data_model.entities]),
            ("package", [package.name for package in spec.architecture.packages]),
        ):
            for name, count in Counter(names).items():
                if count > 1:
                    errors.append(f"duplicate {label} name: {name}")
        if errors:
            raise AggregateValidationError(errors)

    async def check_relationship_endpoints(self, spec: Specification) -> None:
        known = set(spec.data_model.entity_names())
        errors = []
        for rel in spec.data_model.relationships:
            for endpoint in (rel.from_entity, rel.to_entity):
                if endpoint not in known:
                    errors.append(
                        f"relationship {rel.from_entity} -> {rel.to_entity} references unknown entity: {endpoint}"
                    )
        if errors:
            raise AggregateValidationError(errors)

    async def check_package_dependencies(self, spec: Specification) -> None:
        known = {package.name for package in spec.architecture.packages}
        errors = [
            f"package {package.name} depends on unknown package: {dep}"
            for package in spec.architecture.packages
            for dep in package.dependencies
            if dep not in known
        ]
        if errors:
            raise AggregateValidationError(errors)

    async def check_plan(self, plan: GenerationPlan) -> None:
        plan.validate_plan()
