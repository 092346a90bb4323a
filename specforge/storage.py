"""File store used for persisting incremental state.

The state store relies on two guarantees: writes are atomic, and a read
returns exactly what was last atomically written.
"""

import os
import tempfile
from pathlib import Path
from typing import Protocol

import structlog

logger = structlog.get_logger()


class FileStore(Protocol):
    """Bounded, root-contained file access."""

    def read_text(self, path: str) -> str: ...

    def write_atomic(self, path: str, content: str) -> None: ...

    def exists(self, path: str) -> bool: ...

    def remove(self, path: str) -> bool: ...


class LocalFileStore:
    """FileStore backed by the local filesystem under a single root."""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self._logger = logger.bind(component="LocalFileStore")

    def resolve(self, path: str) -> Path:
        """Resolve a relative path inside the root, rejecting escapes."""
        candidate = (self.root / path).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise ValueError(f"path escapes store root: {path}")
        return candidate

    def read_text(self, path: str) -> str:
        return self.resolve(path).read_text(encoding="utf-8")

    def exists(self, path: str) -> bool:
        return self.resolve(path).exists()

    def write_atomic(self, path: str, content: str) -> None:
        """Write via temp file, flush, fsync and rename."""
        target = self.resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        self._logger.debug("Wrote file atomically", path=str(target), bytes=len(content))

    def remove(self, path: str) -> bool:
        target = self.resolve(path)
        if not target.exists():
            return False
        target.unlink()
        return True
