"""Persisted incremental generation state."""

from datetime import datetime

from pydantic import BaseModel, Field

from .spec import Specification

STATE_FORMAT_VERSION = "1.0"
SUPPORTED_STATE_VERSIONS = frozenset({STATE_FORMAT_VERSION})


class FileState(BaseModel):
    """State of a single generated file."""

    path: str
    checksum: str
    generated_at: datetime = Field(default_factory=datetime.utcnow)
    dependencies: list[str] = Field(default_factory=list, description="Entity names this file depends on")
    template: bool = Field(default=False, description="Rendered from a template rather than generated")
    task_id: str = ""


class IncrementalState(BaseModel):
    """Everything needed to decide what to regenerate on the next run."""

    spec_checksum: str = ""
    previous_spec: Specification | None = None
    generated_files: dict[str, FileState] = Field(default_factory=dict)
    dependency_graph: dict[str, list[str]] = Field(default_factory=dict)
    last_generation: datetime | None = None
    version: str = STATE_FORMAT_VERSION
