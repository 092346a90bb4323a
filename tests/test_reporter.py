"""Tests for change report rendering."""

import json

import pytest

from specforge.audit import ChangeReportGenerator, ReportFormat
from specforge.models import ChangeSet, FunctionalRequirement, Package


@pytest.fixture
def generator() -> ChangeReportGenerator:
    return ChangeReportGenerator()


@pytest.fixture
def changes() -> ChangeSet:
    return ChangeSet(
        added_requirements=[FunctionalRequirement(id="FR-003", description="Checkout")],
        modified_packages=[Package(name="models")],
        modified_entities=["Product"],
        deleted_entities=["Coupon"],
        added_api_contracts=["POST /orders"],
    )


class TestTextReport:
    """Plain text output."""

    def test_no_changes(self, generator: ChangeReportGenerator):
        report = generator.generate(ChangeSet())

        assert "SPECIFICATION CHANGE REPORT" in report
        assert report.endswith("No changes detected.")

    def test_summary_and_details(self, generator: ChangeReportGenerator, changes: ChangeSet):
        report = generator.generate(
            changes,
            affected_files=["models/product.go"],
            affected_packages=["models", "service"],
        )

        assert "Entities:".ljust(30) + " +0 ~1 -1" in report
        assert "  + [Requirements] FR-003" in report
        assert "  ~ [Packages] models" in report
        assert "  - [Entities] Coupon" in report
        assert "AFFECTED PACKAGES" in report
        assert "FILES TO REGENERATE\n----------------------------------------\n  models/product.go" in report
        assert "Non-functional requirements:" not in report

    def test_first_generation_banner(self, generator: ChangeReportGenerator):
        report = generator.generate(ChangeSet(first_generation=True, added_entities=["User"]))

        assert "First generation: everything is new." in report


class TestJsonReport:
    """JSON output."""

    def test_structure(self, generator: ChangeReportGenerator, changes: ChangeSet):
        data = json.loads(
            generator.generate(changes, ReportFormat.JSON, metadata={"run": 7})
        )

        assert data["has_changes"] is True
        assert data["categories"]["Entities"] == {
            "added": [],
            "modified": ["Product"],
            "deleted": ["Coupon"],
        }
        assert data["categories"]["Requirements"]["added"] == ["FR-003"]
        assert data["metadata"] == {"run": 7}


class TestMarkdownReport:
    """Markdown output."""

    def test_sections(self, generator: ChangeReportGenerator, changes: ChangeSet):
        report = generator.generate(changes, ReportFormat.MARKDOWN, affected_files=["models/product.go"])

        assert report.startswith("# Specification Change Report")
        assert "| Entities | 0 | 1 | 1 |" in report
        assert "### API contracts" in report
        assert "- ➕ `POST /orders`" in report
        assert "## Files to Regenerate" in report
        assert "**Full regeneration triggers:**" not in report

    def test_full_regeneration_flags(self, generator: ChangeReportGenerator):
        report = generator.generate(
            ChangeSet(architecture_changed=True, build_config_changed=True),
            ReportFormat.MARKDOWN,
        )

        assert "**Full regeneration triggers:** architecture changed, build config changed" in report
