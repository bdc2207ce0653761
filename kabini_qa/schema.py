"""
Schema models for kabini-qa.

Pydantic models for the draft cache entry and the session history as they
are stored in local storage. Stored JSON keeps the camelCase keys written
by the web client, so every field carries an alias.
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def new_id() -> str:
    return uuid.uuid4().hex[:12]


class StoredModel(BaseModel):
    """Base for models persisted as camelCase JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        extra="ignore",
    )

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class UrlStatus(str, Enum):
    """Extraction status of a source URL."""

    PENDING = "pending"
    EXTRACTING = "extracting"
    SUCCESS = "success"
    ERROR = "error"


# Allowed status transitions; success/error may be re-extracted.
URL_TRANSITIONS: dict[str, set[str]] = {
    UrlStatus.PENDING.value: {UrlStatus.EXTRACTING.value},
    UrlStatus.EXTRACTING.value: {UrlStatus.SUCCESS.value, UrlStatus.ERROR.value},
    UrlStatus.SUCCESS.value: {UrlStatus.EXTRACTING.value},
    UrlStatus.ERROR.value: {UrlStatus.EXTRACTING.value},
}


class UrlRecord(StoredModel):
    """One user-submitted source URL."""

    id: str = Field(default_factory=new_id)
    url: str
    content: str = ""
    status: UrlStatus = UrlStatus.PENDING
    tokens: float = 0
    cost: float = 0
    confidence: float = 0
    error: str | None = None

    def can_transition(self, status: str) -> bool:
        return status in URL_TRANSITIONS.get(self.status, set())


class QAItem(StoredModel):
    """
    One question/answer pair.

    total_tokens is derived from input_tokens + output_tokens and kept in
    sync by every constructor path (see model_post_init).
    """

    id: str = Field(default_factory=new_id)
    question: str
    answer: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0
    accuracy: str | float | None = ""
    sentiment: str = ""
    geo_score: float = 0
    citation_likelihood: float | None = 0
    semantic_relevance: str | None = None
    vector_similarity: float | None = None
    provider: str | None = None
    model: str | None = None

    @field_validator("input_tokens", "output_tokens", "total_tokens", mode="before")
    @classmethod
    def _coerce_tokens(cls, value: Any) -> int:
        return int(value or 0)

    def model_post_init(self, __context: Any) -> None:
        self.total_tokens = self.input_tokens + self.output_tokens

    @property
    def has_answer(self) -> bool:
        return bool(self.answer)

    @property
    def needs_rescore(self) -> bool:
        """Answered but missing sentiment or GEO score."""
        return self.has_answer and (not self.sentiment or self.geo_score == 0)


class ProviderSelection(StoredModel):
    """Question/answer provider and model pairs."""

    question_provider: str = "gemini"
    question_model: str = "gemini-1.5-flash"
    answer_provider: str = "gemini"
    answer_model: str = "gemini-1.5-flash"


class DraftMetrics(StoredModel):
    """Size and cost estimate of the draft content."""

    total_tokens: int = 0
    estimated_cost: float = 0
    confidence_score: float = 0
    content_length: int = 0


class DraftFlags(StoredModel):
    extracting: bool = False
    crawling: bool = False
    processing: bool = False


def lift_flat_layout(data: Any) -> Any:
    """Move provider and flag fields written at top level into their groups."""
    if not isinstance(data, dict):
        return data
    data = dict(data)
    if "providers" not in data:
        provider_keys = {
            key: data.pop(key)
            for key in ("questionProvider", "questionModel", "answerProvider", "answerModel")
            if key in data
        }
        if provider_keys:
            data["providers"] = provider_keys
    if "flags" not in data:
        flag_keys = {}
        for source, target in (
            ("extracting", "extracting"),
            ("crawling", "crawling"),
            ("isProcessing", "processing"),
        ):
            if isinstance(data.get(source), bool):
                flag_keys[target] = data.pop(source)
        if flag_keys:
            data["flags"] = flag_keys
    return data


class DraftState(StoredModel):
    """Working state of the Enhance Content page."""

    content: str = ""
    qa_content: str = ""
    new_url: str = ""
    urls: list[UrlRecord] = Field(default_factory=list)
    qa_items: list[QAItem] = Field(default_factory=list)
    selected_questions: list[str] = Field(default_factory=list)
    question_count: int = 1
    providers: ProviderSelection = Field(default_factory=ProviderSelection)
    metrics: DraftMetrics = Field(default_factory=DraftMetrics)
    flags: DraftFlags = Field(default_factory=DraftFlags)
    answer_loading: list[str] = Field(default_factory=list)
    show_analysis_notification: bool = False

    @model_validator(mode="before")
    @classmethod
    def _lift_flat_layout(cls, data: Any) -> Any:
        """Accept entries written with provider and flag fields at top level."""
        return lift_flat_layout(data)

    @field_validator("selected_questions", "answer_loading", mode="before")
    @classmethod
    def _only_item_ids(cls, value: Any) -> list[str]:
        # Index-addressed selections cannot be mapped onto item ids.
        if not isinstance(value, list):
            return []
        return [v for v in value if isinstance(v, str)]

    def is_trivial(self) -> bool:
        """True when there is nothing worth caching."""
        return not self.content.strip() and not self.urls and not self.qa_items

    def url_strings(self) -> list[str]:
        return [u.url for u in self.urls]


class DraftCacheEntry(DraftState):
    """One in-progress analysis snapshot, stored under enhance_content_cache_<hash>."""

    content_hash: str = "0"
    last_accessed: int = 0
    created_at: int = 0


class SessionType(str, Enum):
    QUESTION = "question"
    ANSWER = "answer"


class SessionStatistics(StoredModel):
    """
    Aggregate statistics of a session.

    Averages and cost are strings in stored data written by the web
    client; total_cost is normalised to a float on load.
    """

    total_questions: int = 0
    avg_accuracy: str = "0"
    avg_citation_likelihood: str = "0"
    total_cost: float = 0

    @field_validator("total_cost", mode="before")
    @classmethod
    def _coerce_cost(cls, value: Any) -> float:
        try:
            return float(value or 0)
        except (TypeError, ValueError):
            return 0.0

    @field_validator("avg_accuracy", "avg_citation_likelihood", mode="before")
    @classmethod
    def _coerce_average(cls, value: Any) -> str:
        return "0" if value is None else str(value)


class SessionData(StoredModel):
    """A committed, user-scoped analysis record."""

    id: str
    name: str = ""
    type: SessionType = SessionType.QUESTION
    timestamp: str = ""
    model: str = ""
    blog_content: str = ""
    qa_data: list[QAItem] = Field(default_factory=list)
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    statistics: SessionStatistics = Field(default_factory=SessionStatistics)
    user_id: str = "anonymous"

    def recompute_statistics(self) -> None:
        """Derive total_questions and total_cost from qa_data."""
        self.statistics.total_questions = len(self.qa_data)
        self.statistics.total_cost = sum(item.cost or 0 for item in self.qa_data)


__all__ = [
    "now_ms",
    "new_id",
    "StoredModel",
    "UrlStatus",
    "URL_TRANSITIONS",
    "lift_flat_layout",
    "UrlRecord",
    "QAItem",
    "ProviderSelection",
    "DraftMetrics",
    "DraftFlags",
    "DraftState",
    "DraftCacheEntry",
    "SessionType",
    "SessionStatistics",
    "SessionData",
]
