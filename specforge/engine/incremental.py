"""Incremental State Store - what was generated last time, and from what.

The state document lives at ``<output_dir>/.specforge/state.json`` and
records the previous specification snapshot, a checksum per generated
file and the file -> entity dependency graph used to decide what to
regenerate on the next run.
"""

import asyncio
import hashlib
import json
import posixpath
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

import structlog
from pydantic import ValidationError

from specforge.config import OrchestratorSettings, get_settings
from specforge.errors import StateIOError
from specforge.models.plan import Patch
from specforge.models.spec import Specification, canonical_json
from specforge.models.state import (
    STATE_FORMAT_VERSION,
    SUPPORTED_STATE_VERSIONS,
    FileState,
    IncrementalState,
)
from specforge.storage import FileStore, LocalFileStore

logger = structlog.get_logger()

DEFAULT_STATE_DIR = ".specforge"
DEFAULT_STATE_FILE = "state.json"

# Files rendered from boilerplate templates rather than generated
TEMPLATE_FILES = frozenset({
    "go.mod",
    "go.sum",
    "go.work",
    "pyproject.toml",
    "setup.cfg",
    "requirements.txt",
    "package.json",
    "Makefile",
    "Dockerfile",
    "docker-compose.yml",
    "docker-compose.yaml",
    ".gitignore",
    ".dockerignore",
    "LICENSE",
    "LICENSE.txt",
    "LICENSE.md",
    ".golangci.yml",
    ".golangci.yaml",
    ".editorconfig",
    ".env.example",
    ".env.template",
})


def compute_spec_checksum(spec: Specification) -> str:
    """SHA-256 of the snapshot's canonical JSON form."""
    return hashlib.sha256(canonical_json(spec).encode()).hexdigest()


def compute_file_checksum(content: str) -> str:
    return hashlib.sha256(content.encode()).hexdigest()


def normalize_path(path: str) -> str:
    """Collapse redundant separators and ``.``/``..`` segments."""
    if not path:
        return ""
    return posixpath.normpath(path.replace("\\", "/"))


def is_template_file(path: str) -> bool:
    return posixpath.basename(normalize_path(path)) in TEMPLATE_FILES


def extract_content_from_diff(diff: str) -> str:
    """Recover file content from a creation diff.

    Keeps added lines (minus the ``+`` marker) and drops ``+++`` and
    ``+@@`` header lines. A trailing newline on the diff is preserved when
    any content was recovered.
    """
    lines = [
        line[1:]
        for line in diff.splitlines()
        if line.startswith("+") and not line.startswith(("+++", "+@@"))
    ]
    content = "\n".join(lines)
    if diff.endswith("\n") and content:
        content += "\n"
    return content


class IncrementalStateStore:
    """Loads, updates and atomically persists incremental state.

    A single store instance owns the state document of one output
    directory. Use ``transaction()`` to serialize load/update/save
    sequences from concurrent coroutines.
    """

    def __init__(
        self,
        output_dir: str | Path,
        file_store: FileStore | None = None,
        state_dir_name: str = DEFAULT_STATE_DIR,
        state_file_name: str = DEFAULT_STATE_FILE,
    ):
        self.output_dir = Path(output_dir)
        self.file_store = file_store or LocalFileStore(self.output_dir)
        self.relative_state_path = posixpath.join(state_dir_name, state_file_name)
        self._state: IncrementalState | None = None
        self._lock = asyncio.Lock()
        self._logger = logger.bind(component="IncrementalStateStore")

    @classmethod
    def from_settings(
        cls,
        output_dir: str | Path,
        settings: OrchestratorSettings | None = None,
        file_store: FileStore | None = None,
    ) -> "IncrementalStateStore":
        """Create a store whose state location comes from settings."""
        settings = settings or get_settings()
        return cls(
            output_dir,
            file_store=file_store,
            state_dir_name=settings.state_dir_name,
            state_file_name=settings.state_file_name,
        )

    @property
    def state_path(self) -> str:
        return str(self.output_dir / self.relative_state_path)

    def load(self) -> IncrementalState:
        """Load state from disk; an absent file yields a fresh, empty state.

        Raises:
            StateIOError: If the file cannot be read or parsed, or has an
                unsupported format version
        """
        try:
            exists = self.file_store.exists(self.relative_state_path)
        except (OSError, ValueError) as e:
            raise StateIOError(self.state_path, "failed to stat state file", e) from e

        if not exists:
            self._logger.debug("No existing state file, starting fresh", path=self.state_path)
            self._state = IncrementalState()
            return self._state

        try:
            raw = self.file_store.read_text(self.relative_state_path)
        except (OSError, ValueError) as e:
            raise StateIOError(self.state_path, "failed to read state file", e) from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StateIOError(self.state_path, "failed to parse state file", e) from e

        if not isinstance(data, dict):
            raise StateIOError(self.state_path, "state file is not a JSON object")

        version = data.get("version")
        if version not in SUPPORTED_STATE_VERSIONS:
            raise StateIOError(self.state_path, f"unsupported state version {version!r}")

        try:
            state = IncrementalState.model_validate(data)
        except ValidationError as e:
            raise StateIOError(self.state_path, "invalid state document", e) from e

        self._logger.debug(
            "Loaded incremental state",
            path=self.state_path,
            files=len(state.generated_files),
            spec_checksum=state.spec_checksum,
        )

        self._state = state
        return state

    def save(self, state: IncrementalState) -> None:
        """Persist state atomically.

        Raises:
            StateIOError: If the write fails
        """
        state.version = STATE_FORMAT_VERSION
        payload = state.model_dump_json(indent=2, by_alias=True)

        try:
            self.file_store.write_atomic(self.relative_state_path, payload)
        except (OSError, ValueError) as e:
            raise StateIOError(self.state_path, "failed to write state file", e) from e

        self._logger.debug(
            "Saved incremental state",
            path=self.state_path,
            files=len(state.generated_files),
        )
        self._state = state

    def get_state(self) -> IncrementalState:
        """Return the in-memory state, loading it on first access."""
        if self._state is None:
            return self.load()
        return self._state

    def clear(self) -> None:
        """Remove the state file and forget the in-memory state."""
        try:
            self.file_store.remove(self.relative_state_path)
        except (OSError, ValueError) as e:
            raise StateIOError(self.state_path, "failed to remove state file", e) from e

        self._logger.debug("Cleared incremental state", path=self.state_path)
        self._state = None

    def update_state(
        self,
        spec: Specification,
        patches: Iterable[Patch],
        dependency_graph: dict[str, list[str]],
        *,
        template_paths: Iterable[str] | None = None,
        task_ids: dict[str, str] | None = None,
    ) -> IncrementalState:
        """Record a successful generation and persist it.

        Args:
            spec: Snapshot the files were generated from
            patches: Patches of the files that were generated this run
            dependency_graph: File path -> entity names, merged into the
                stored graph
            template_paths: Extra paths to flag as template-rendered
            task_ids: Optional file path -> producing task id

        Returns:
            The updated state
        """
        state = self.get_state().model_copy(deep=True)
        state.spec_checksum = compute_spec_checksum(spec)
        state.previous_spec = spec.model_copy(deep=True)
        state.last_generation = datetime.utcnow()

        self._merge_files(state, patches, dependency_graph, template_paths, task_ids)
        self.save(state)
        return state

    def record_files(
        self,
        patches: Iterable[Patch],
        dependency_graph: dict[str, list[str]],
        *,
        template_paths: Iterable[str] | None = None,
        task_ids: dict[str, str] | None = None,
    ) -> IncrementalState:
        """Record generated files without advancing the stored snapshot.

        Used after a partial run: the files that did complete are tracked,
        while the previous snapshot stays the baseline for change detection.
        """
        state = self.get_state().model_copy(deep=True)
        self._merge_files(state, patches, dependency_graph, template_paths, task_ids)
        self.save(state)
        return state

    def _merge_files(
        self,
        state: IncrementalState,
        patches: Iterable[Patch],
        dependency_graph: dict[str, list[str]],
        template_paths: Iterable[str] | None,
        task_ids: dict[str, str] | None,
    ) -> None:
        templates = {normalize_path(path) for path in template_paths or ()}
        task_ids = {normalize_path(path): task_id for path, task_id in (task_ids or {}).items()}

        normalized_graph = {
            normalize_path(path): list(deps) for path, deps in dependency_graph.items()
        }
        state.dependency_graph.update(normalized_graph)

        for patch in patches:
            path = normalize_path(patch.target_file)
            content = extract_content_from_diff(patch.diff)

            state.generated_files[path] = FileState(
                path=path,
                checksum=compute_file_checksum(content),
                generated_at=patch.applied_at,
                dependencies=normalized_graph.get(path, []),
                template=is_template_file(path) or path in templates,
                task_id=task_ids.get(path, ""),
            )

    def needs_regeneration(self, spec: Specification) -> bool:
        """True when nothing was generated yet or the snapshot changed."""
        state = self.get_state()
        if state.previous_spec is None:
            return True
        return state.spec_checksum != compute_spec_checksum(spec)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["IncrementalStateStore"]:
        """Hold the store's lock across a load/update/save sequence."""
        async with self._lock:
            yield self
