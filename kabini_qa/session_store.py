"""
Session store for kabini-qa.

Manages the user's analysis history in local storage:
- llm_qa_sessions: ordered list of sessions, newest first
- llm_qa_current_session: the session new generations are merged into

A generation against the current session's exact content grows that
session; any other content starts a new one. Session statistics are
always recomputed from qa_data when answers change.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from pydantic import ValidationError

from .config import GenerationConfig
from .schema import QAItem, SessionData, SessionStatistics, SessionType, now_ms
from .scoring import calculate_cost
from .storage import KeyValueStore, StorageError

logger = logging.getLogger(__name__)

SESSIONS_KEY = "llm_qa_sessions"
CURRENT_SESSION_KEY = "llm_qa_current_session"
DEFAULT_SESSION_ID = "default"


class SessionStore:
    """
    Append-only, user-scoped list of analysis sessions.

    Storage failures are logged and never raised: the in-memory view keeps
    working and the next successful write catches storage up.
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], int] = now_ms,
        generation: GenerationConfig | None = None,
    ):
        self.store = store
        self.clock = clock
        self.generation = generation or GenerationConfig()
        self.expanded_sessions: set[str] = set()
        self._sessions: list[SessionData] = self._load_sessions()
        self._current: SessionData | None = self._load_current()

    # =========================================================================
    # Loading / saving
    # =========================================================================

    def _load_sessions(self) -> list[SessionData]:
        raw = self.store.get(SESSIONS_KEY)
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.warning(f"{SESSIONS_KEY} is not a list, ignoring stored sessions")
            return []

        sessions = []
        for item in raw:
            try:
                sessions.append(SessionData.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping malformed session: {e}")
        return sessions

    def _load_current(self) -> SessionData | None:
        raw = self.store.get(CURRENT_SESSION_KEY)
        if raw is None:
            return None
        try:
            current = SessionData.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Malformed current session, ignoring: {e}")
            return None
        # Prefer the list's copy so both views stay the same object
        return self.get(current.id) or current

    def _save_sessions(self) -> None:
        try:
            self.store.put(SESSIONS_KEY, [s.to_json_dict() for s in self._sessions])
        except StorageError as e:
            logger.error(f"Failed to save sessions: {e}")

    def _save_current(self) -> None:
        try:
            if self._current is None:
                self.store.delete(CURRENT_SESSION_KEY)
            else:
                self.store.put(CURRENT_SESSION_KEY, self._current.to_json_dict())
        except StorageError as e:
            logger.error(f"Failed to save current session: {e}")

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def sessions(self) -> list[SessionData]:
        return list(self._sessions)

    @property
    def current_session(self) -> SessionData | None:
        return self._current

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> SessionData | None:
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    def sessions_for_user(self, user_id: str) -> list[SessionData]:
        return [s for s in self._sessions if s.user_id == user_id]

    def history_items(self) -> list[QAItem]:
        """All QA items across sessions, in session order."""
        return [item for session in self._sessions for item in session.qa_data]

    def total_cost(self) -> float:
        return sum(s.statistics.total_cost for s in self._sessions)

    # =========================================================================
    # Mutations
    # =========================================================================

    def set_current(self, session_id: str | None) -> SessionData | None:
        """Mark a stored session current, or clear the pointer with None."""
        self._current = self.get(session_id) if session_id is not None else None
        self._save_current()
        return self._current

    def clear_current(self) -> None:
        self._current = None
        self._save_current()

    def ensure_default_session(self, user_id: str) -> SessionData | None:
        """
        Seed a "default" session when the store is empty.

        Returns:
            The seeded session, or None if sessions already exist
        """
        if self._sessions:
            return None

        session = SessionData(
            id=DEFAULT_SESSION_ID,
            name="Default Session",
            type=SessionType.QUESTION,
            timestamp=self._timestamp(),
            model=self.generation.session_model,
            user_id=user_id,
        )
        self._sessions = [session]
        self._current = session
        self._save_sessions()
        self._save_current()
        return session

    def record_generation(
        self,
        content: str,
        new_items: Iterable[QAItem],
        user_id: str = "anonymous",
    ) -> SessionData:
        """
        Record freshly generated questions.

        Appends to the current session when its blog_content equals content
        exactly; otherwise creates a new session, prepends it and marks it
        current.

        Returns:
            The session that received the items
        """
        items = [item.model_copy() for item in new_items]
        input_tokens = sum(item.input_tokens for item in items)
        output_tokens = sum(item.output_tokens for item in items)
        generation_cost = calculate_cost(input_tokens, output_tokens, self.generation.session_model)

        current = self._current
        if current is not None and current.blog_content == content:
            current.qa_data.extend(items)
            current.total_input_tokens += input_tokens
            current.total_output_tokens += output_tokens
            current.statistics.total_questions = len(current.qa_data)
            current.statistics.total_cost += generation_cost
            current.user_id = user_id
            self._replace(current)
            logger.info(f"Appended {len(items)} items to session {current.id}")
            return current

        now = self.clock()
        session = SessionData(
            id=self._new_session_id(now),
            name=f"Q&A Generation - {self._date_label(now)}",
            type=SessionType.QUESTION,
            timestamp=self._timestamp(now),
            model=self.generation.session_model,
            blog_content=content,
            qa_data=items,
            total_input_tokens=input_tokens,
            total_output_tokens=output_tokens,
            statistics=SessionStatistics(
                total_questions=len(items),
                avg_accuracy=self.generation.placeholder_accuracy,
                avg_citation_likelihood=self.generation.placeholder_citation_likelihood,
                total_cost=generation_cost,
            ),
            user_id=user_id,
        )
        self._sessions.insert(0, session)
        self._current = session
        self._save_sessions()
        self._save_current()
        logger.info(f"Created session {session.id} with {len(items)} items")
        return session

    def record_answer(self, qa_items: Iterable[QAItem], user_id: str | None = None) -> SessionData | None:
        """
        Replace the current session's qa_data with the updated draft items.

        Statistics are recomputed from the new item list.

        Returns:
            The updated session, or None if there is no current session
        """
        current = self._current
        if current is None:
            return None

        current.qa_data = [item.model_copy() for item in qa_items]
        current.recompute_statistics()
        if user_id is not None:
            current.user_id = user_id
        self._replace(current)
        return current

    def delete_session(self, session_id: str, confirm: Callable[[SessionData], bool]) -> bool:
        """
        Delete a session after explicit confirmation.

        Args:
            session_id: Session to delete
            confirm: Yes/no gate, called with the session about to be deleted

        Returns:
            True if the session was removed
        """
        session = self.get(session_id)
        if session is None:
            return False
        if not confirm(session):
            return False

        self._sessions = [s for s in self._sessions if s.id != session_id]
        self.expanded_sessions.discard(session_id)
        self._save_sessions()

        if self._current is not None and self._current.id == session_id:
            self.clear_current()
        logger.info(f"Deleted session {session_id}")
        return True

    def toggle_expanded(self, session_id: str) -> bool:
        """Toggle detail view tracking. Returns the new expanded state."""
        if session_id in self.expanded_sessions:
            self.expanded_sessions.discard(session_id)
            return False
        if self.get(session_id) is None:
            return False
        self.expanded_sessions.add(session_id)
        return True

    # =========================================================================
    # Helpers
    # =========================================================================

    def _replace(self, session: SessionData) -> None:
        if self.get(session.id) is None:
            self._sessions.insert(0, session)
        else:
            self._sessions = [session if s.id == session.id else s for s in self._sessions]
        self._save_sessions()
        self._save_current()

    def _new_session_id(self, now: int) -> str:
        session_id = f"qa-session-{now}"
        suffix = 1
        while self.get(session_id) is not None:
            session_id = f"qa-session-{now}-{suffix}"
            suffix += 1
        return session_id

    def _timestamp(self, now: int | None = None) -> str:
        now = self.clock() if now is None else now
        return datetime.fromtimestamp(now / 1000, tz=timezone.utc).isoformat()

    @staticmethod
    def _date_label(now: int) -> str:
        return datetime.fromtimestamp(now / 1000).strftime("%m/%d/%Y")


__all__ = [
    "SESSIONS_KEY",
    "CURRENT_SESSION_KEY",
    "DEFAULT_SESSION_ID",
    "SessionStore",
]
