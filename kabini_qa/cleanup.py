"""
Logout cleanup of analysis state in local storage.

Committed Q&A sessions (llm_qa_sessions, llm_qa_current_session) are never
touched here; everything else that belongs to an in-progress analysis is
removed so the next login starts from a fresh page.
"""

from __future__ import annotations

import logging

from .cache_key import DRAFT_CACHE_PREFIX
from .storage import KeyValueStore, StorageError

logger = logging.getLogger(__name__)

COMPETITOR_URLS_KEY = "llm_competitor_urls"

ANALYSIS_KEYS = (
    "llm_qa_current_work",
    "enhance_content_state",
    "ai_visibility_current_session",
    "ai_visibility_analysis_data",
    "content_analysis_current_session",
    "content_analysis_data",
    "structure_analysis_current_session",
    "structure_analysis_data",
    COMPETITOR_URLS_KEY,
    "session_index",
    "session_manager_sessions",
    "statistics_state",
    "shopify_connections",
    "current_analysis_session",
    "analysis_data",
    "analysis_results",
)

ANALYSIS_PREFIXES = (
    DRAFT_CACHE_PREFIX,
    "analysis_cache_",
    "ai_visibility_",
    "content_analysis_",
    "structure_analysis_",
)


def clear_all_analysis_data(store: KeyValueStore) -> list[str]:
    """
    Remove analysis keys and prefixed caches.

    Individual failures are logged and skipped.

    Returns:
        Keys that were removed
    """
    removed: list[str] = []
    for key in ANALYSIS_KEYS:
        try:
            if store.delete(key):
                removed.append(key)
        except StorageError as e:
            logger.warning(f"Failed to clear {key}: {e}")

    for prefix in ANALYSIS_PREFIXES:
        try:
            removed.extend(store.delete_by_prefix(prefix))
        except StorageError as e:
            logger.warning(f"Failed to clear keys with prefix {prefix}: {e}")

    logger.info(f"Cleared {len(removed)} analysis keys")
    return removed


def clear_user_specific_data(store: KeyValueStore, user_id: str | None) -> list[str]:
    """
    Remove per-user analysis keys, keeping per-user session history.

    Returns:
        Keys that were removed
    """
    if not user_id:
        return []

    candidates = [
        f"user_{user_id}_sessions",
        f"user_{user_id}_analysis_data",
        f"user_{user_id}_current_session",
    ]
    for key in store.keys():
        if key.startswith("llm_qa_") and key.endswith(f"_{user_id}"):
            if "sessions" not in key and "current_session" not in key:
                candidates.append(key)

    removed = []
    for key in candidates:
        try:
            if store.delete(key):
                removed.append(key)
        except StorageError as e:
            logger.warning(f"Failed to clear user-specific key {key}: {e}")
    return removed


__all__ = [
    "COMPETITOR_URLS_KEY",
    "ANALYSIS_KEYS",
    "ANALYSIS_PREFIXES",
    "clear_all_analysis_data",
    "clear_user_specific_data",
]
