"""
Enhance Content page controller.

Orchestrates the remote API against the working draft and the session
history on a single event loop:
- URL extraction and crawling (concurrent, applied by id)
- question generation, merged into the session history
- answer generation with scoring fan-out
- batch answers through a cancellable AnswerQueue
- New Analysis and logout cleanup

Every state-affecting call persists the draft before it returns.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import random
from collections.abc import Callable
from typing import Any

from .api_client import APIError, GeneratedAnswer, KabiniAPIClient
from .cleanup import COMPETITOR_URLS_KEY, clear_all_analysis_data, clear_user_specific_data
from .config import KabiniConfig
from .draft_cache import DraftCache
from .schema import DraftState, ProviderSelection, QAItem, UrlRecord, UrlStatus, now_ms
from .scoring import (
    DEFAULT_QUESTION_CONFIDENCE,
    analyze_sentiment,
    calculate_cost,
    calculate_geo_score,
    calculate_semantic_relevance,
    calculate_vector_similarity,
    parse_score,
)
from .session_store import SessionStore
from .storage import KeyValueStore, StorageError
from .task_queue import AnswerQueue, QueueResult
from .workspace import DraftWorkspace, url_estimates

logger = logging.getLogger(__name__)

# Model ids the UI offers but the API does not serve directly
MODEL_ALIASES = {"gemini-pro": "gemini-1.5-flash"}


class InputError(ValueError):
    """User input rejected before any state change."""


def api_model(model: str) -> str:
    return MODEL_ALIASES.get(model, model)


def _log_alert(message: str) -> None:
    logger.warning(f"ALERT: {message}")


class EnhanceContentController:
    """
    Page controller for draft, session and remote calls.

    Args:
        api: Remote API client
        store: Local key/value store shared by draft cache and sessions
        config: Defaults for crawling and generation
        user_id: Logged-in user, None for anonymous use
        alert: Blocking user notification for generation-level errors
        rng: Random source for confidence estimates
        clock: Epoch-millisecond clock
    """

    def __init__(
        self,
        api: KabiniAPIClient,
        store: KeyValueStore,
        config: KabiniConfig | None = None,
        user_id: str | None = None,
        alert: Callable[[str], None] | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.api = api
        self.store = store
        self.config = config or KabiniConfig()
        self.user_id = user_id
        self.alert = alert or _log_alert

        default_count = self.config.generation.default_question_count
        self.draft_cache = DraftCache(store, clock=clock, default_question_count=default_count)
        self.sessions = SessionStore(store, clock=clock, generation=self.config.generation)
        self.workspace = DraftWorkspace(rng=rng, default_question_count=default_count)
        self.workspace.state.providers = ProviderSelection(
            question_provider=self.config.generation.question_provider,
            question_model=self.config.generation.question_model,
            answer_provider=self.config.generation.answer_provider,
            answer_model=self.config.generation.answer_model,
        )
        self.answer_queue = AnswerQueue(self._generate_answer_strict)
        self._extractions = 0
        self._crawls = 0
        self._attempt_ids = itertools.count(1)
        self._url_attempts: dict[str, int] = {}

    @property
    def state(self) -> DraftState:
        return self.workspace.state

    @property
    def session_owner(self) -> str:
        return self.user_id or "anonymous"

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> bool:
        """
        Restore the most recent draft and seed the default session.

        Returns:
            True if a draft was restored
        """
        if self.user_id:
            self.sessions.ensure_default_session(self.user_id)

        restored = self.draft_cache.restore()
        if restored is None:
            return False
        self.workspace.state = restored
        self._save_competitor_urls()
        return True

    async def resume(self) -> bool:
        """
        Start, then rescore restored answers that are missing metrics.

        Returns:
            True if a draft was restored
        """
        restored = self.start()
        if restored and self.needs_recalculation:
            count = await self.recalculate_metrics()
            logger.info(f"Rescored {count} restored answers")
        return restored

    def persist(self) -> str | None:
        """Write the draft under its current cache key."""
        return self.draft_cache.persist(self.state)

    def new_analysis(self) -> list[str]:
        """
        Purge every cached draft and reset the working state.

        Returns:
            Draft cache keys that were removed
        """
        self.answer_queue.cancel()
        removed = self.draft_cache.clear_all()
        self.workspace.reset()
        self._save_competitor_urls()
        logger.info("Started new analysis")
        return removed

    def logout(self) -> list[str]:
        """
        Clear analysis state for the next login. Session history is kept.

        Returns:
            Storage keys that were removed
        """
        self.answer_queue.cancel()
        removed = clear_all_analysis_data(self.store)
        removed.extend(clear_user_specific_data(self.store, self.user_id))
        self.workspace.reset()
        self.sessions.expanded_sessions.clear()
        self.user_id = None
        return removed

    # =========================================================================
    # Draft edits
    # =========================================================================

    def set_content(self, text: str) -> None:
        self.workspace.set_content(text)
        self.persist()

    def set_new_url(self, text: str) -> None:
        self.state.new_url = text
        self.persist()

    def set_question_count(self, count: int) -> int:
        self.state.question_count = self.config.clamp_question_count(count)
        self.persist()
        return self.state.question_count

    def set_providers(self, **changes: Any) -> None:
        providers = self.state.providers
        self.state.providers = ProviderSelection.model_validate({**providers.model_dump(), **changes})
        self.persist()

    def add_url(self, url: str | None = None) -> UrlRecord | None:
        record = self.workspace.add_url(url)
        if record is not None:
            self._url_list_changed()
        return record

    def remove_url(self, index: int) -> UrlRecord | None:
        record = self.workspace.remove_url(index)
        if record is not None:
            self._url_list_changed()
        return record

    def select_question(self, item_id: str, selected: bool = True) -> None:
        self.workspace.select_question(item_id, selected)
        self.persist()

    def select_all(self) -> None:
        self.workspace.select_all()
        self.persist()

    def deselect_all(self) -> None:
        self.workspace.deselect_all()
        self.persist()

    def dismiss_analysis_notification(self) -> None:
        self.state.show_analysis_notification = False
        self.persist()

    def _url_list_changed(self) -> None:
        self._save_competitor_urls()
        self.persist()

    def _save_competitor_urls(self) -> None:
        try:
            self.store.put(COMPETITOR_URLS_KEY, self.state.url_strings())
        except StorageError as e:
            logger.warning(f"Failed to save competitor URLs: {e}")

    # =========================================================================
    # URL extraction
    # =========================================================================

    async def extract_url(self, url_id: str) -> UrlRecord | None:
        """
        Extract one URL's page content and fold it into the draft content.

        Failures are recorded on the URL record.

        Returns:
            The final record, or None if the URL was removed meanwhile
        """
        return await self._fetch_url(url_id, crawl=False)

    async def crawl_url(self, url_id: str) -> UrlRecord | None:
        """Crawl a whole site from one URL, bounded by CrawlConfig."""
        return await self._fetch_url(url_id, crawl=True)

    async def extract_single_url(self) -> UrlRecord | None:
        """
        Replace the URL list with the URL in the input box and extract it.

        Raises:
            InputError: If the input box is blank
        """
        url = self.state.new_url.strip()
        if not url:
            raise InputError("Please enter a URL first")

        record = UrlRecord(url=url)
        self.workspace.replace_urls([record])
        self.state.new_url = ""
        self._url_list_changed()
        return await self.extract_url(record.id)

    async def _fetch_url(self, url_id: str, crawl: bool) -> UrlRecord | None:
        record = self.workspace.get_url(url_id)
        if record is None:
            return None

        # Only the newest fetch of a URL may write its result
        attempt = next(self._attempt_ids)
        self._url_attempts[url_id] = attempt

        self.workspace.update_url(url_id, status=UrlStatus.EXTRACTING, error=None)
        self._extractions += 1
        self.state.flags.extracting = True
        if crawl:
            self._crawls += 1
            self.state.flags.crawling = True
        self.persist()

        try:
            if crawl:
                crawl_cfg = self.config.crawl
                result = await self.api.crawl_website(
                    record.url,
                    max_pages=crawl_cfg.max_pages,
                    max_depth=crawl_cfg.max_depth,
                    timeout_ms=crawl_cfg.timeout_ms,
                )
                if not result.success:
                    raise APIError("Crawl failed")
                text = result.content
                logger.info(f"Crawled {record.url}: {result.total_pages} pages, {len(text)} chars")
            else:
                text = await self.api.extract_content(record.url)
        except APIError as e:
            if self._is_superseded(url_id, attempt):
                logger.info(f"Dropping failed fetch of {record.url}, a newer one was started")
                return self.workspace.get_url(url_id)
            default = "Failed to crawl website" if crawl else "Failed to extract content"
            logger.error(f"URL fetch failed for {record.url}: {e}")
            return self.workspace.update_url(url_id, status=UrlStatus.ERROR, error=str(e) or default)
        finally:
            self._extractions -= 1
            self.state.flags.extracting = self._extractions > 0
            if crawl:
                self._crawls -= 1
                self.state.flags.crawling = self._crawls > 0
            self.persist()

        if self._is_superseded(url_id, attempt):
            logger.info(f"Dropping stale content for {record.url}, a newer fetch was started")
            return self.workspace.get_url(url_id)

        updated = self.workspace.update_url(
            url_id,
            status=UrlStatus.SUCCESS,
            content=text,
            error=None,
            **url_estimates(text, self.workspace.rng),
        )
        if updated is None:
            return None
        self.workspace.set_content(self.workspace.aggregate_content(self.state.content))
        self.persist()
        return updated

    def _is_superseded(self, url_id: str, attempt: int) -> bool:
        """True if a later fetch of the URL owns its result. Releases the URL otherwise."""
        if self._url_attempts.get(url_id) != attempt:
            return True
        del self._url_attempts[url_id]
        return False


    # =========================================================================
    # Question generation
    # =========================================================================

    async def generate_questions(self) -> list[QAItem]:
        """
        Generate questions for the current content and record them.

        Raises:
            InputError: If the content is blank

        Returns:
            The new QA items (empty if the API call failed)
        """
        content = self.state.content
        if not content.strip():
            raise InputError("Please enter some content first")

        count = self.config.clamp_question_count(self.state.question_count)
        providers = self.state.providers
        self.state.flags.processing = True
        self.persist()

        try:
            result = await self.api.generate_questions(
                content,
                count,
                providers.question_provider,
                api_model(providers.question_model),
            )
        except APIError as e:
            logger.error(f"Question generation failed: {e}")
            self.alert(f"Failed to generate questions: {e}")
            return []
        finally:
            self.state.flags.processing = False
            self.persist()

        items = [
            QAItem(
                question=question,
                input_tokens=result.input_tokens,
                output_tokens=result.output_tokens,
                provider=providers.question_provider,
                model=providers.question_model,
                vector_similarity=calculate_vector_similarity(question, content),
            )
            for question in result.questions[:count]
        ]
        self.workspace.append_qa_items(items)
        self.state.qa_content = content
        self.sessions.record_generation(content, items, user_id=self.session_owner)
        self.persist()
        logger.info(f"Generated {len(items)} questions")
        return items

    # =========================================================================
    # Answer generation and scoring
    # =========================================================================

    async def generate_answer(self, item_id: str) -> QAItem | None:
        """
        Generate and score the answer for one item.

        Errors are logged; the item's loading flag is always cleared.

        Returns:
            The updated item, or None on failure or if the item was removed
        """
        try:
            return await self._generate_answer_strict(item_id)
        except APIError as e:
            logger.error(f"Error generating answer for {item_id}: {e}")
            return None

    async def _generate_answer_strict(self, item_id: str) -> QAItem | None:
        item = self.workspace.get_item(item_id)
        if item is None:
            return None

        self.workspace.set_answer_loading(item_id, True)
        self.persist()
        try:
            providers = self.state.providers
            model = api_model(providers.answer_model)
            content = self.state.qa_content

            result = await self.api.generate_answers(
                content, [item.question], providers.answer_provider, model
            )
            answer = result.answers[0] if result.answers else GeneratedAnswer()
            scores = await self._score_answer(
                item.question, answer.answer, content, providers.answer_provider, model
            )
            updated = self.workspace.update_qa_item(
                item_id,
                answer=answer.answer,
                input_tokens=answer.input_tokens,
                output_tokens=answer.output_tokens,
                cost=calculate_cost(answer.input_tokens, answer.output_tokens, model),
                provider=providers.answer_provider,
                model=providers.answer_model,
                **scores,
            )
            if updated is not None:
                self.sessions.record_answer(self.state.qa_items, user_id=self.session_owner)
            return updated
        finally:
            self.workspace.set_answer_loading(item_id, False)
            self.persist()

    async def _score_answer(
        self, question: str, answer: str, content: str, provider: str, model: str
    ) -> dict[str, Any]:
        citation, accuracy = await asyncio.gather(
            self.api.calculate_citation_likelihood(answer, content, provider, model),
            self.api.calculate_accuracy(answer, content, provider, model),
        )
        accuracy_value = parse_score(accuracy)

        sentiment = analyze_sentiment(answer)
        important = [qa.question for qa in self.state.qa_items]
        geo = calculate_geo_score(
            accuracy_value,
            question,
            answer,
            important,
            content,
            confidences=[DEFAULT_QUESTION_CONFIDENCE] * len(important),
        )
        semantic = calculate_semantic_relevance(accuracy_value, geo.geo_score)
        vector = calculate_vector_similarity(f"{question} {answer}", content)

        return {
            "citation_likelihood": citation,
            "accuracy": accuracy,
            "sentiment": sentiment,
            "geo_score": geo.geo_score,
            "semantic_relevance": str(semantic),
            "vector_similarity": vector,
        }

    async def generate_answers_for_selected(self) -> QueueResult:
        """Answer the selected items one at a time, in list order."""
        ids = [item.id for item in self.workspace.selected_items()]
        result = await self.answer_queue.run(ids)
        logger.info(
            f"Batch answers: {len(result.completed)} done, {len(result.failed)} failed, "
            f"{len(result.skipped)} skipped"
        )
        return result

    def cancel_answers(self) -> None:
        self.answer_queue.cancel()

    async def recalculate_metrics(self) -> int:
        """
        Rescore every answered item. Unanswered items are left untouched.

        Returns:
            Number of items rescored
        """
        providers = self.state.providers
        model = api_model(providers.answer_model)
        content = self.state.qa_content
        answered = [item for item in self.state.qa_items if item.has_answer]

        async def rescore(item: QAItem) -> tuple[str, dict[str, Any] | None]:
            try:
                scores = await self._score_answer(
                    item.question, item.answer, content, providers.answer_provider, model
                )
            except APIError as e:
                logger.error(f"Error recalculating metrics for {item.id}: {e}")
                return item.id, None
            return item.id, scores

        results = await asyncio.gather(*(rescore(item) for item in answered))

        updated = 0
        for item_id, scores in results:
            if scores is not None and self.workspace.update_qa_item(item_id, **scores) is not None:
                updated += 1
        if updated:
            self.sessions.record_answer(self.state.qa_items, user_id=self.session_owner)
        self.persist()
        logger.info(f"Recalculated metrics for {updated} items")
        return updated

    @property
    def needs_recalculation(self) -> bool:
        return any(item.needs_rescore for item in self.state.qa_items)


__all__ = [
    "MODEL_ALIASES",
    "InputError",
    "api_model",
    "EnhanceContentController",
]
