"""Local key/value storage.

Stands in for browser local storage: string keys, JSON values, a single
writer. JsonFileStore keeps the whole store in one JSON document and
rewrites it atomically on every change.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Write to the local store failed."""
    pass


class StorageQuotaExceeded(StorageError):
    """Store would grow beyond its configured quota."""
    pass


class KeyValueStore(ABC):
    """Abstract key/value store with prefix listing."""

    def __init__(self, quota_bytes: int | None = None):
        self.quota_bytes = quota_bytes

    @abstractmethod
    def _read_all(self) -> dict[str, Any]:
        """Return the live mapping backing this store."""
        pass

    @abstractmethod
    def _commit(self, data: dict[str, Any]) -> None:
        """Persist a full replacement mapping."""
        pass

    def get(self, key: str, default: Any = None) -> Any:
        return self._read_all().get(key, default)

    def put(self, key: str, value: Any) -> None:
        """
        Store value under key, replacing any previous value.

        Raises:
            StorageQuotaExceeded: If the store would exceed quota_bytes
            StorageError: If the value is not JSON-serializable or the write fails
        """
        data = dict(self._read_all())
        data[key] = value
        self._check_quota(data)
        self._commit(data)

    def delete(self, key: str) -> bool:
        """Remove key. Returns False if it was absent."""
        data = self._read_all()
        if key not in data:
            return False
        data = dict(data)
        del data[key]
        self._commit(data)
        return True

    def keys(self) -> list[str]:
        return list(self._read_all().keys())

    def list_by_prefix(self, prefix: str) -> dict[str, Any]:
        """Return {key: value} for every key starting with prefix."""
        return {k: v for k, v in self._read_all().items() if k.startswith(prefix)}

    def delete_by_prefix(self, prefix: str) -> list[str]:
        """Remove every key starting with prefix. Returns the removed keys."""
        data = self._read_all()
        removed = [k for k in data if k.startswith(prefix)]
        if removed:
            self._commit({k: v for k, v in data.items() if k not in removed})
        return removed

    def _check_quota(self, data: dict[str, Any]) -> None:
        if self.quota_bytes is None:
            return
        try:
            size = len(json.dumps(data).encode("utf-8"))
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value is not JSON-serializable: {e}") from e
        if size > self.quota_bytes:
            raise StorageQuotaExceeded(
                f"Store size {size} bytes exceeds quota of {self.quota_bytes} bytes"
            )


class MemoryStore(KeyValueStore):
    """In-process store. Nothing survives the process."""

    def __init__(self, initial: dict[str, Any] | None = None, quota_bytes: int | None = None):
        super().__init__(quota_bytes=quota_bytes)
        self._data: dict[str, Any] = dict(initial or {})

    def _read_all(self) -> dict[str, Any]:
        return self._data

    def _commit(self, data: dict[str, Any]) -> None:
        try:
            # Round-trip so stored values are plain JSON like the file store.
            self._data = json.loads(json.dumps(data))
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value is not JSON-serializable: {e}") from e


class JsonFileStore(KeyValueStore):
    """
    Single-file JSON store.

    The file is read once on first access and cached; every change rewrites
    it with write-to-temp-then-rename. A missing or corrupt file reads as an
    empty store.
    """

    def __init__(self, path: Path | str, quota_bytes: int | None = None):
        super().__init__(quota_bytes=quota_bytes)
        self.path = Path(path).expanduser()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._cache: dict[str, Any] | None = None

    def _read_all(self) -> dict[str, Any]:
        if self._cache is None:
            self._cache = self._load()
        return self._cache

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Local store {self.path} unreadable, starting empty: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Local store {self.path} is not an object, starting empty")
            return {}
        return data

    def reload(self) -> None:
        """Drop the cached document so the next read goes to disk."""
        self._cache = None

    def _commit(self, data: dict[str, Any]) -> None:
        fd, temp_path = tempfile.mkstemp(
            suffix=".tmp",
            prefix="store_",
            dir=self.path.parent,
        )
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f)
            # Atomic rename
            os.replace(temp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            # Clean up temp file on error
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise StorageError(f"Failed to write {self.path}: {e}") from e
        self._cache = data


__all__ = [
    "StorageError",
    "StorageQuotaExceeded",
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
]
