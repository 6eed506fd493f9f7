"""Persistence for reading progress behind a small storage port.

The pure transforms in ``progress`` never touch storage. This module reads
and writes whole snapshots through a ``StorageBackend`` and wraps the
apply-then-save cycle in ``ProgressStore``.
"""

from __future__ import annotations

import errno
import json
import logging
import os
import re
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Protocol

from .actions import Action, reduce
from .exceptions import (
    QuotaExceededError,
    SnapshotFormatError,
    StorageError,
    StorageReadError,
    StorageWriteError,
)
from .models import ProgressSnapshot, ReaderProgress, default_snapshot
from .progress import get_story_progress, snapshot_from_dict, snapshot_to_dict

logger = logging.getLogger(__name__)

_QUOTA_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


def read_json(path: Path, default: Optional[Any] = None) -> Any:
    """Read JSON from file with error handling.

    Returns default value if file doesn't exist or JSON is invalid.
    """
    if not path.exists():
        return default

    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except (ValueError, RecursionError) as e:
        logger.error(f"Failed to parse JSON from {path}: {e}")
        return default
    except IOError as e:
        logger.error(f"Failed to read file {path}: {e}")
        return default


def validate_slug(slug: str) -> str:
    """Validate a story slug before it is used as a key or a path segment.

    Args:
        slug: The slug to validate

    Returns:
        The validated slug

    Raises:
        ValueError: If slug is invalid or contains dangerous characters
    """
    if not slug:
        raise ValueError("Slug cannot be empty")

    # SECURITY: Prevent path traversal
    if ".." in slug or "/" in slug or "\\" in slug:
        raise ValueError("Invalid slug: contains path traversal characters")
    if slug.startswith(".") or slug.startswith("-"):
        raise ValueError("Invalid slug: cannot start with dot or dash")
    if not re.match(r"^[a-z0-9][a-z0-9\-]*[a-z0-9]$|^[a-z0-9]$", slug):
        raise ValueError("Invalid slug: must contain only lowercase letters, numbers, and hyphens")
    if len(slug) > 100:
        raise ValueError("Invalid slug: too long (max 100 characters)")

    return slug


# ── Backends ───────────────────────────────────────────────────


class StorageBackend(Protocol):
    """Reads and writes the single progress document. Both calls may raise."""

    def read(self) -> Optional[str]:
        ...

    def write(self, text: str) -> None:
        ...


class JsonFileStorage:
    """Keep the progress document in one JSON file, replaced atomically on write."""

    def __init__(self, path: str | Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> Optional[str]:
        if not self._path.exists():
            return None
        try:
            return self._path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageReadError(str(self._path), str(e)) from e

    def write(self, text: str) -> None:
        tmp_name = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp_name, self._path)
            tmp_name = None
        except OSError as e:
            if e.errno in _QUOTA_ERRNOS:
                raise QuotaExceededError(str(self._path), str(e)) from e
            raise StorageWriteError(str(self._path), str(e)) from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.debug("Could not remove temporary file %s", tmp_name)


class MemoryStorage:
    """In-process backend for tests and throwaway sessions."""

    def __init__(self, initial: Optional[str] = None, fail_reads: bool = False, fail_writes: bool = False):
        self.text = initial
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes
        self.writes = 0

    def read(self) -> Optional[str]:
        if self.fail_reads:
            raise StorageReadError("memory", "reads disabled")
        return self.text

    def write(self, text: str) -> None:
        if self.fail_writes:
            raise StorageWriteError("memory", "writes disabled")
        self.text = text
        self.writes += 1


# ── Load / save ────────────────────────────────────────────────


@dataclass(frozen=True)
class SaveResult:
    ok: bool
    error: Optional[StorageError] = None


def load_snapshot(backend: StorageBackend) -> ProgressSnapshot:
    """Load the persisted snapshot, falling back to defaults on any failure.

    Never raises: missing data, unreadable storage, invalid JSON and
    documents that fail validation or migration all yield a fresh default
    snapshot.
    """
    try:
        raw = backend.read()
    except StorageError:
        return default_snapshot()
    except Exception as e:
        logger.warning(f"Progress storage read failed: {e}")
        return default_snapshot()

    if raw is None or not raw.strip():
        return default_snapshot()

    try:
        data = json.loads(raw)
    except (ValueError, RecursionError) as e:
        logger.warning(f"Progress document is not valid JSON, starting fresh: {e}")
        return default_snapshot()

    try:
        snapshot = snapshot_from_dict(data)
    except SnapshotFormatError as e:
        logger.warning(f"Progress document rejected, starting fresh: {e.message}")
        return default_snapshot()

    logger.debug("Loaded progress for %d stories", len(snapshot.stories))
    return snapshot


def save_snapshot(backend: StorageBackend, snapshot: ProgressSnapshot) -> SaveResult:
    """Write the snapshot. Failures come back as a ``SaveResult`` instead of raising."""
    try:
        text = json.dumps(snapshot_to_dict(snapshot), indent=2)
        backend.write(text)
    except StorageError as e:
        return SaveResult(ok=False, error=e)
    except Exception as e:
        return SaveResult(ok=False, error=StorageWriteError(type(backend).__name__, str(e)))
    return SaveResult(ok=True)


# ── Store ──────────────────────────────────────────────────────

Listener = Callable[[ProgressSnapshot], None]


class ProgressStore:
    """Owns the live snapshot and serializes every apply-then-save cycle.

    Actions are always reduced against the latest snapshot under a lock, so
    two callers can never both build on the same stale copy. When a write
    fails the in-memory snapshot stays authoritative for the session.
    """

    def __init__(self, backend: StorageBackend):
        self._backend = backend
        self._snapshot: Optional[ProgressSnapshot] = None
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []
        self.last_save_error: Optional[StorageError] = None

    def hydrate(self) -> ProgressSnapshot:
        with self._lock:
            self._snapshot = load_snapshot(self._backend)
            return self._snapshot

    @property
    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            if self._snapshot is None:
                return self.hydrate()
            return self._snapshot

    def story(self, slug: str) -> ReaderProgress:
        return get_story_progress(self.snapshot, slug)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for new snapshots. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def dispatch(self, action: Action) -> SaveResult:
        with self._lock:
            previous = self.snapshot
            updated = reduce(previous, action)
            if updated is previous:
                return SaveResult(ok=True)

            self._snapshot = updated
            result = save_snapshot(self._backend, updated)
            self.last_save_error = result.error

        for listener in list(self._listeners):
            listener(updated)
        return result


def store_for_path(path: str | Path) -> ProgressStore:
    return ProgressStore(JsonFileStorage(path))

