"""Reporting on specification changes."""

from .reporter import ChangeReport, ChangeReportGenerator, ReportFormat

__all__ = [
    "ChangeReport",
    "ChangeReportGenerator",
    "ReportFormat",
]
