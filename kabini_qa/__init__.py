"""kabini-qa: session and draft-cache manager for the kabini.ai Q&A workflow.

Client-side state layer of the Enhance Content page:
- Draft cache: content-addressed snapshots of the in-progress analysis
- Session store: committed Q&A sessions merged by content
- Controller: remote API orchestration against both
"""

__version__ = "0.1.0"

# Storage
from .storage import JsonFileStore, KeyValueStore, MemoryStore, StorageError, StorageQuotaExceeded
from .cache_key import DRAFT_CACHE_PREFIX, draft_cache_key, hash_content

# State
from .schema import DraftCacheEntry, DraftState, QAItem, SessionData, SessionStatistics, UrlRecord, UrlStatus
from .draft_cache import DraftCache
from .session_store import SessionStore
from .workspace import DraftWorkspace

# Remote & orchestration
from .api_client import APIError, KabiniAPIClient
from .controller import EnhanceContentController, InputError
from .task_queue import AnswerQueue, QueueResult

# Config
from .config import KabiniConfig, default_config

__all__ = [
    # Storage
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
    "StorageError",
    "StorageQuotaExceeded",
    "DRAFT_CACHE_PREFIX",
    "hash_content",
    "draft_cache_key",
    # State
    "UrlStatus",
    "UrlRecord",
    "QAItem",
    "DraftState",
    "DraftCacheEntry",
    "SessionStatistics",
    "SessionData",
    "DraftCache",
    "SessionStore",
    "DraftWorkspace",
    # Remote & orchestration
    "APIError",
    "KabiniAPIClient",
    "InputError",
    "EnhanceContentController",
    "AnswerQueue",
    "QueueResult",
    # Config
    "KabiniConfig",
    "default_config",
]
