"""
Working-state reducer for the Enhance Content page.

Every URL and QA item is addressed by its stable id, and every update is
applied against the latest list held here. An async completion therefore
never overwrites changes made while it was in flight.
"""

from __future__ import annotations

import logging
import random
from typing import Any

from .schema import DraftMetrics, DraftState, QAItem, UrlRecord, UrlStatus

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
COST_PER_TOKEN = 0.0001


def estimate_tokens(text: str) -> float:
    return len(text) / CHARS_PER_TOKEN


def compute_metrics(text: str, rng: random.Random) -> DraftMetrics:
    """Size, cost and a confidence draw in [80, 100) for the draft content."""
    tokens = estimate_tokens(text)
    confidence = rng.random() * 0.2 + 0.8
    return DraftMetrics(
        total_tokens=round(tokens),
        estimated_cost=round(tokens * COST_PER_TOKEN, 4),
        confidence_score=round(confidence * 100, 1),
        content_length=len(text),
    )


def url_estimates(text: str, rng: random.Random) -> dict[str, float]:
    """Per-URL tokens, cost and a confidence draw in [0.7, 1.0)."""
    tokens = estimate_tokens(text)
    return {
        "tokens": tokens,
        "cost": tokens * COST_PER_TOKEN,
        "confidence": rng.random() * 0.3 + 0.7,
    }


class DraftWorkspace:
    """Holds the current DraftState and applies id-addressed mutations."""

    def __init__(
        self,
        state: DraftState | None = None,
        rng: random.Random | None = None,
        default_question_count: int = 1,
    ):
        self.default_question_count = default_question_count
        self.state = state or DraftState(question_count=default_question_count)
        self.rng = rng or random.Random()

    def reset(self) -> DraftState:
        """Replace the working state with defaults, keeping provider selections."""
        providers = self.state.providers.model_copy()
        self.state = DraftState(question_count=self.default_question_count, providers=providers)
        return self.state

    # =========================================================================
    # Content
    # =========================================================================

    def set_content(self, text: str) -> DraftMetrics:
        self.state.content = text
        self.state.metrics = compute_metrics(text, self.rng)
        return self.state.metrics

    def aggregate_content(self, base: str) -> str:
        """URL contents, in list order, followed by the base content."""
        return "\n\n".join(u.content for u in self.state.urls) + "\n\n" + base

    # =========================================================================
    # URLs
    # =========================================================================

    def add_url(self, url: str | None = None) -> UrlRecord | None:
        """
        Add a URL (defaults to the new_url input box).

        Blank or duplicate URLs are rejected. The input box is cleared only
        when the URL is accepted.

        Returns:
            The new record, or None if rejected
        """
        candidate = (self.state.new_url if url is None else url).strip()
        if not candidate or candidate in self.state.url_strings():
            logger.debug(f"Rejected URL {candidate!r}: empty or duplicate")
            return None

        record = UrlRecord(url=candidate)
        self.state.urls.append(record)
        self.state.new_url = ""
        return record

    def remove_url(self, index: int) -> UrlRecord | None:
        """Remove the URL at a display index. Out-of-range indexes are a no-op."""
        if not 0 <= index < len(self.state.urls):
            return None
        return self.state.urls.pop(index)

    def get_url(self, url_id: str) -> UrlRecord | None:
        for record in self.state.urls:
            if record.id == url_id:
                return record
        return None

    def update_url(self, url_id: str, **changes: Any) -> UrlRecord | None:
        """
        Update one URL record by id.

        Raises:
            ValueError: If the status change is not a legal transition

        Returns:
            The updated record, or None if the id is no longer in the list
        """
        for i, record in enumerate(self.state.urls):
            if record.id != url_id:
                continue
            status = changes.get("status")
            if status is not None:
                status = UrlStatus(status).value
                if status != record.status and not record.can_transition(status):
                    raise ValueError(f"Illegal URL transition {record.status} -> {status}")
            updated = UrlRecord.model_validate({**record.model_dump(), **changes})
            self.state.urls[i] = updated
            return updated
        logger.debug(f"URL {url_id} removed before update")
        return None

    def replace_urls(self, records: list[UrlRecord]) -> None:
        self.state.urls = list(records)

    # =========================================================================
    # QA items
    # =========================================================================

    def get_item(self, item_id: str) -> QAItem | None:
        for item in self.state.qa_items:
            if item.id == item_id:
                return item
        return None

    def append_qa_items(self, items: list[QAItem]) -> None:
        self.state.qa_items.extend(items)

    def update_qa_item(self, item_id: str, **changes: Any) -> QAItem | None:
        """Rebuild one item with changes applied; total_tokens is re-derived."""
        for i, item in enumerate(self.state.qa_items):
            if item.id == item_id:
                updated = QAItem.model_validate({**item.model_dump(), **changes})
                self.state.qa_items[i] = updated
                return updated
        return None

    def set_answer_loading(self, item_id: str, loading: bool) -> None:
        ids = [i for i in self.state.answer_loading if i != item_id]
        if loading:
            ids.append(item_id)
        self.state.answer_loading = ids

    # =========================================================================
    # Selection
    # =========================================================================

    def select_question(self, item_id: str, selected: bool = True) -> None:
        if self.get_item(item_id) is None:
            return
        ids = [i for i in self.state.selected_questions if i != item_id]
        if selected:
            ids.append(item_id)
        self.state.selected_questions = ids

    def select_all(self) -> None:
        self.state.selected_questions = [item.id for item in self.state.qa_items]

    def deselect_all(self) -> None:
        self.state.selected_questions = []

    def selected_items(self) -> list[QAItem]:
        """Selected items in list order."""
        selected = set(self.state.selected_questions)
        return [item for item in self.state.qa_items if item.id in selected]


__all__ = [
    "CHARS_PER_TOKEN",
    "COST_PER_TOKEN",
    "estimate_tokens",
    "compute_metrics",
    "url_estimates",
    "DraftWorkspace",
]
