"""
Key/value stores backing the envelope registry.

Stores map short symbolic keys to JSON-compatible values. Writes made inside
``store.atomic()`` are buffered and applied together when the block exits
cleanly; an exception discards the buffer, so a failed call never leaves
partial state behind.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from .exceptions import StorageError

logger = logging.getLogger(__name__)

_MISSING = object()


class KeyValueStore(ABC):
    """Abstract get/set store with all-or-nothing batches."""

    def __init__(self) -> None:
        self._pending: Optional[Dict[str, Any]] = None
        self._batch_lock = threading.RLock()

    @abstractmethod
    def _read(self, key: str) -> Any:
        """Return the committed value for ``key`` or ``_MISSING``."""

    @abstractmethod
    def _commit(self, writes: Dict[str, Any]) -> None:
        """Durably apply every write in one step."""

    # _pending belongs to the thread holding _batch_lock; other threads only
    # ever see committed state.

    def get(self, key: str, default: Any = None) -> Any:
        with self._batch_lock:
            if self._pending is not None and key in self._pending:
                return copy.deepcopy(self._pending[key])
            value = self._read(key)
            if value is _MISSING:
                return default
            return copy.deepcopy(value)

    def has(self, key: str) -> bool:
        with self._batch_lock:
            if self._pending is not None and key in self._pending:
                return True
            return self._read(key) is not _MISSING

    def set(self, key: str, value: Any) -> None:
        with self._batch_lock:
            if self._pending is not None:
                self._pending[key] = copy.deepcopy(value)
                return
            self._commit({key: copy.deepcopy(value)})

    @contextmanager
    def atomic(self) -> Iterator["KeyValueStore"]:
        """Buffer writes until the block exits; nested blocks join the outer batch."""
        with self._batch_lock:
            if self._pending is not None:
                yield self
                return
            self._pending = {}
            try:
                yield self
                writes = self._pending
            except BaseException:
                self._pending = None
                raise
            self._pending = None
            if writes:
                self._commit(writes)


class InMemoryStore(KeyValueStore):
    """Process-local store, used for tests and embedding."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        super().__init__()
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def _read(self, key: str) -> Any:
        return self._data.get(key, _MISSING)

    def _commit(self, writes: Dict[str, Any]) -> None:
        self._data.update(writes)

    def snapshot(self) -> Dict[str, Any]:
        """Committed state only; pending batch writes are excluded."""
        with self._batch_lock:
            return copy.deepcopy(self._data)


class JsonFileStore(KeyValueStore):
    """
    Store persisted as a single JSON document.

    Each commit rewrites the document through a temporary file followed by
    ``os.replace`` so readers only ever observe a complete state.
    """

    def __init__(self, storage_path: str) -> None:
        super().__init__()
        if not storage_path:
            raise ValueError("Storage path cannot be empty.")
        self.storage_path = storage_path
        self._data: Dict[str, Any] = {}
        self._load_state()

    def _read(self, key: str) -> Any:
        return self._data.get(key, _MISSING)

    def _commit(self, writes: Dict[str, Any]) -> None:
        updated = dict(self._data)
        updated.update(writes)
        self._persist_state(updated)
        self._data = updated

    def _persist_state(self, state: Dict[str, Any]) -> None:
        directory = os.path.dirname(os.path.abspath(self.storage_path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".sealvault-", suffix=".json", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(state, handle, indent=2)
                os.replace(tmp_path, self.storage_path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as exc:
            logger.error(
                "Failed to persist store: %s",
                exc,
                extra={"event": "storage.persist_failed", "path": self.storage_path},
            )
            raise StorageError(
                f"Failed to persist store to {self.storage_path}",
                details={"path": self.storage_path, "reason": str(exc)},
            ) from exc

    def _load_state(self) -> None:
        if not os.path.exists(self.storage_path):
            return
        try:
            with open(self.storage_path, "r", encoding="utf-8") as handle:
                loaded = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.error(
                "Failed to load store: %s",
                exc,
                extra={"event": "storage.load_failed", "path": self.storage_path},
            )
            raise StorageError(
                f"Failed to load store from {self.storage_path}",
                details={"path": self.storage_path, "reason": str(exc)},
                recoverable=False,
            ) from exc
        if not isinstance(loaded, dict):
            raise StorageError(
                f"Store document at {self.storage_path} is not a JSON object",
                recoverable=False,
            )
        self._data = loaded
        logger.debug("Loaded %d keys from %s", len(self._data), self.storage_path)
