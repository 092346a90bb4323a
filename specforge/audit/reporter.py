"""Change report generator.

Renders a ChangeSet (plus the files and packages it affects) as plain
text, JSON or markdown.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import structlog

from specforge.models.changes import ChangeSet

logger = structlog.get_logger()


class ReportFormat(str, Enum):
    """Output format for reports."""

    TEXT = "text"
    JSON = "json"
    MARKDOWN = "markdown"


# (label, added field, modified field, deleted field)
_CATEGORIES = (
    ("Requirements", "added_requirements", "modified_requirements", "deleted_requirements"),
    (
        "Non-functional requirements",
        "added_non_functional_requirements",
        "modified_non_functional_requirements",
        "deleted_non_functional_requirements",
    ),
    ("Packages", "added_packages", "modified_packages", "deleted_packages"),
    ("Entities", "added_entities", "modified_entities", "deleted_entities"),
    ("API contracts", "added_api_contracts", "modified_api_contracts", "deleted_api_contracts"),
)


def _item_name(item: Any) -> str:
    """Requirements and packages are models; everything else is a key."""
    if isinstance(item, str):
        return item
    return getattr(item, "id", None) or getattr(item, "name", str(item))


@dataclass
class ChangeReport:
    """Complete change report."""

    timestamp: datetime
    changes: ChangeSet
    affected_files: list[str] = field(default_factory=list)
    affected_packages: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def categories(self) -> list[tuple[str, list[str], list[str], list[str]]]:
        rows = []
        for label, added, modified, deleted in _CATEGORIES:
            rows.append((
                label,
                [_item_name(i) for i in getattr(self.changes, added)],
                [_item_name(i) for i in getattr(self.changes, modified)],
                [_item_name(i) for i in getattr(self.changes, deleted)],
            ))
        return rows

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "has_changes": self.changes.has_changes,
            "first_generation": self.changes.first_generation,
            "architecture_changed": self.changes.architecture_changed,
            "build_config_changed": self.changes.build_config_changed,
            "categories": {
                label: {"added": added, "modified": modified, "deleted": deleted}
                for label, added, modified, deleted in self.categories()
            },
            "affected_packages": self.affected_packages,
            "affected_files": self.affected_files,
            "metadata": self.metadata,
        }


class ChangeReportGenerator:
    """Generates change reports in various formats."""

    def __init__(self):
        self._logger = logger.bind(component="ChangeReportGenerator")

    def generate(
        self,
        changes: ChangeSet,
        format: ReportFormat = ReportFormat.TEXT,
        affected_files: list[str] | None = None,
        affected_packages: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Generate a report for a change set.

        Args:
            changes: Detected changes
            format: Output format
            affected_files: Files selected for regeneration
            affected_packages: Packages touched by the changes
            metadata: Additional metadata to include

        Returns:
            Formatted report string
        """
        report = ChangeReport(
            timestamp=datetime.utcnow(),
            changes=changes,
            affected_files=list(affected_files or []),
            affected_packages=list(affected_packages or []),
            metadata=metadata or {},
        )

        self._logger.debug("Generating change report", format=format.value, has_changes=changes.has_changes)

        match format:
            case ReportFormat.TEXT:
                return self._format_text(report)
            case ReportFormat.JSON:
                return self._format_json(report)
            case ReportFormat.MARKDOWN:
                return self._format_markdown(report)
            case _:
                return self._format_text(report)

    def _format_text(self, report: ChangeReport) -> str:
        """Format as plain text."""
        lines = []
        c = report.changes

        lines.append("=" * 60)
        lines.append("SPECIFICATION CHANGE REPORT")
        lines.append("=" * 60)
        lines.append(f"Timestamp: {report.timestamp.isoformat()}")
        lines.append("")

        if not c.has_changes:
            lines.append("No changes detected.")
            return "\n".join(lines)

        if c.first_generation:
            lines.append("First generation: everything is new.")
            lines.append("")

        lines.append("SUMMARY")
        lines.append("-" * 40)
        for label, added, modified, deleted in report.categories():
            if added or modified or deleted:
                lines.append(f"{label + ':':<30} +{len(added)} ~{len(modified)} -{len(deleted)}")
        lines.append(f"{'Architecture changed:':<30} {'yes' if c.architecture_changed else 'no'}")
        lines.append(f"{'Build config changed:':<30} {'yes' if c.build_config_changed else 'no'}")
        lines.append("")

        lines.append("DETAILS")
        lines.append("-" * 40)
        for label, added, modified, deleted in report.categories():
            for marker, names in (("+", added), ("~", modified), ("-", deleted)):
                for name in names:
                    lines.append(f"  {marker} [{label}] {name}")
        lines.append("")

        if report.affected_packages:
            lines.append("AFFECTED PACKAGES")
            lines.append("-" * 40)
            for package in report.affected_packages:
                lines.append(f"  {package}")
            lines.append("")

        if report.affected_files:
            lines.append("FILES TO REGENERATE")
            lines.append("-" * 40)
            for path in report.affected_files:
                lines.append(f"  {path}")
            lines.append("")

        return "\n".join(lines)

    def _format_json(self, report: ChangeReport) -> str:
        """Format as JSON."""
        return json.dumps(report.to_dict(), indent=2)

    def _format_markdown(self, report: ChangeReport) -> str:
        """Format as Markdown."""
        lines = []
        c = report.changes

        lines.append("# Specification Change Report")
        lines.append("")
        lines.append(f"**Generated:** {report.timestamp.isoformat()}")
        lines.append("")

        if not c.has_changes:
            lines.append("No changes detected.")
            return "\n".join(lines)

        lines.append("## Summary")
        lines.append("")
        lines.append("| Category | Added | Modified | Deleted |")
        lines.append("|----------|-------|----------|---------|")
        for label, added, modified, deleted in report.categories():
            lines.append(f"| {label} | {len(added)} | {len(modified)} | {len(deleted)} |")
        lines.append("")

        flags = []
        if c.first_generation:
            flags.append("first generation")
        if c.architecture_changed:
            flags.append("architecture changed")
        if c.build_config_changed:
            flags.append("build config changed")
        if flags:
            lines.append(f"**Full regeneration triggers:** {', '.join(flags)}")
            lines.append("")

        for label, added, modified, deleted in report.categories():
            if not (added or modified or deleted):
                continue
            lines.append(f"### {label}")
            lines.append("")
            for name in added:
                lines.append(f"- ➕ `{name}`")
            for name in modified:
                lines.append(f"- ✏️ `{name}`")
            for name in deleted:
                lines.append(f"- ➖ `{name}`")
            lines.append("")

        if report.affected_packages:
            lines.append("## Affected Packages")
            lines.append("")
            for package in report.affected_packages:
                lines.append(f"- `{package}`")
            lines.append("")

        if report.affected_files:
            lines.append("## Files to Regenerate")
            lines.append("")
            for path in report.affected_files:
                lines.append(f"- `{path}`")
            lines.append("")

        return "\n".join(lines)
