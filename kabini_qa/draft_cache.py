"""
Draft cache for the Enhance Content page.

Persists the working draft under enhance_content_cache_<hash> after every
change and restores the most recently accessed entry on start-up.

Restore policy:
- URLs caught mid-extraction come back as pending (extraction is not resumable)
- an entry that fails validation is salvaged: bad list elements are dropped
  and other bad fields fall back to their defaults
- crawling/extracting/processing flags and per-item answer loading always
  come back cleared
- question_count always comes back at its default
- the restored entry's last_accessed is touched after restore, off the
  restore path
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from .cache_key import DRAFT_CACHE_PREFIX, draft_cache_key
from .schema import DraftCacheEntry, DraftState, UrlStatus, lift_flat_layout, now_ms
from .storage import KeyValueStore, StorageError

logger = logging.getLogger(__name__)


def _stored_key(data: dict[str, Any], loc_key: object) -> str | None:
    """Key in data holding the field an error location points at."""
    for name, info in DraftCacheEntry.model_fields.items():
        alias = info.alias or name
        if loc_key in (name, alias):
            for candidate in (alias, name):
                if candidate in data:
                    return candidate
            return None
    return None


def _salvage(key: str, raw: object) -> DraftCacheEntry | None:
    """
    Drop whatever fails validation and keep the rest.

    A bad list element (a QA item without a question, a URL without a url)
    is removed from its list. Any other bad field falls back to its default.
    """
    if not isinstance(raw, dict):
        logger.error(f"Draft cache entry {key} is not an object, skipped")
        return None
    data = lift_flat_layout(raw)

    while True:
        try:
            return DraftCacheEntry.model_validate(data)
        except ValidationError as e:
            errors = e.errors()

        bad_fields: set[str] = set()
        bad_elements: dict[str, set[int]] = {}
        for error in errors:
            loc = error["loc"]
            field_key = _stored_key(data, loc[0]) if loc else None
            if field_key is None:
                continue
            if len(loc) > 1 and isinstance(loc[1], int) and isinstance(data[field_key], list):
                bad_elements.setdefault(field_key, set()).add(loc[1])
            else:
                bad_fields.add(field_key)

        if not bad_fields and not bad_elements:
            logger.error(f"Draft cache entry {key} could not be salvaged: {errors}")
            return None

        data = dict(data)
        for field_key in bad_fields:
            logger.warning(f"Draft cache entry {key}: dropping invalid {field_key!r}")
            del data[field_key]
        for field_key, indexes in bad_elements.items():
            if field_key in bad_fields:
                continue
            logger.warning(f"Draft cache entry {key}: dropping {len(indexes)} invalid {field_key!r} items")
            data[field_key] = [v for i, v in enumerate(data[field_key]) if i not in indexes]


class DraftCache:
    """Content-addressed scratch storage for in-progress analyses."""

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], int] = now_ms,
        default_question_count: int = 1,
    ):
        self.store = store
        self.clock = clock
        self.default_question_count = default_question_count

    @staticmethod
    def key_for(state: DraftState) -> str:
        return draft_cache_key(state.content, state.url_strings())

    @staticmethod
    def _parse(key: str, raw: object) -> DraftCacheEntry | None:
        """
        Validate a stored value. Values may also be JSON-encoded strings.

        An entry that fails strict validation is salvaged field by field.
        """
        try:
            if isinstance(raw, str):
                raw = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Malformed draft cache entry {key}: {e}")
            return None
        try:
            return DraftCacheEntry.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Draft cache entry {key} failed validation, salvaging: {e.error_count()} errors")
        return _salvage(key, raw)

    def load(self, key: str) -> DraftCacheEntry | None:
        """Load and validate one entry. Missing or malformed entries read as None."""
        raw = self.store.get(key)
        if raw is None:
            return None
        return self._parse(key, raw)

    def entries(self) -> dict[str, DraftCacheEntry]:
        """All parseable draft entries by key."""
        result = {}
        for key, raw in self.store.list_by_prefix(DRAFT_CACHE_PREFIX).items():
            entry = self._parse(key, raw)
            if entry is not None:
                result[key] = entry
        return result

    def most_recent(self) -> tuple[str, DraftCacheEntry] | None:
        """Entry with the greatest last_accessed, first one on ties."""
        best: tuple[str, DraftCacheEntry] | None = None
        for key, entry in self.entries().items():
            if best is None or entry.last_accessed > best[1].last_accessed:
                best = (key, entry)
        return best

    def persist(self, state: DraftState) -> str | None:
        """
        Overwrite the entry for the state's current cache key.

        Trivial drafts (no content, URLs or QA items) are not written.
        Storage failures are logged and swallowed.

        Returns:
            The cache key written, or None if nothing was written
        """
        if state.is_trivial():
            return None

        key = self.key_for(state)
        now = self.clock()

        created_at = now
        previous = self.store.get(key)
        if isinstance(previous, dict) and isinstance(previous.get("createdAt"), int):
            created_at = previous["createdAt"]

        entry = DraftCacheEntry(
            **state.model_dump(),
            content_hash=key[len(DRAFT_CACHE_PREFIX):],
            last_accessed=now,
            created_at=created_at,
        )
        try:
            self.store.put(key, entry.to_json_dict())
        except StorageError as e:
            logger.error(f"Failed to persist draft {key}: {e}")
            return None
        return key

    def restore(self) -> DraftState | None:
        """
        Rehydrate the most recently accessed draft.

        Returns:
            Restored working state, or None if there is nothing to restore
        """
        found = self.most_recent()
        if found is None:
            return None
        key, entry = found

        state = DraftState.model_validate(entry.model_dump(exclude={"content_hash", "last_accessed", "created_at"}))
        for record in state.urls:
            if record.status == UrlStatus.EXTRACTING.value:
                record.status = UrlStatus.PENDING.value
        state.flags.crawling = False
        state.flags.extracting = False
        state.flags.processing = False
        state.answer_loading = []
        state.question_count = self.default_question_count

        self._schedule_touch(key)
        logger.info(f"Restored draft {key} ({len(state.qa_items)} QA items, {len(state.urls)} URLs)")
        return state

    def touch(self, key: str) -> None:
        """Rewrite last_accessed of an entry to now."""
        raw = self.store.get(key)
        if not isinstance(raw, dict):
            return
        try:
            self.store.put(key, {**raw, "lastAccessed": self.clock()})
        except StorageError as e:
            logger.warning(f"Failed to touch draft {key}: {e}")

    def _schedule_touch(self, key: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.touch(key)
            return
        loop.call_soon(self.touch, key)

    def clear_all(self) -> list[str]:
        """Remove every draft entry. Returns the removed keys."""
        try:
            removed = self.store.delete_by_prefix(DRAFT_CACHE_PREFIX)
        except StorageError as e:
            logger.error(f"Failed to clear draft cache: {e}")
            return []
        if removed:
            logger.info(f"Cleared {len(removed)} draft cache entries")
        return removed


__all__ = ["DraftCache"]
