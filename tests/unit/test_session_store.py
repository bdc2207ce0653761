"""Unit tests for SessionStore: merge, answer update and deletion."""

import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from kabini_qa.schema import QAItem, SessionData
from kabini_qa.scoring import calculate_cost
from kabini_qa.session_store import (
    CURRENT_SESSION_KEY,
    DEFAULT_SESSION_ID,
    SESSIONS_KEY,
    SessionStore,
)
from kabini_qa.storage import MemoryStore, StorageError


class FakeClock:
    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now


class ReadOnlyStore(MemoryStore):
    def _commit(self, data):
        raise StorageError("quota")


def items(*questions, tokens=(10, 5)):
    return [QAItem(question=q, input_tokens=tokens[0], output_tokens=tokens[1]) for q in questions]


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sessions(store, clock):
    return SessionStore(store, clock=clock)


class TestRecordGeneration:
    """Session merge on question generation."""

    def test_first_generation_creates_session(self, sessions, store, clock):
        session = sessions.record_generation("Hello world", items("a", "b", "c"), user_id="u1")

        assert session.id == f"qa-session-{clock.now}"
        assert session.name.startswith("Q&A Generation - ")
        assert session.blog_content == "Hello world"
        assert session.statistics.total_questions == 3
        assert session.statistics.avg_accuracy == "85"
        assert session.statistics.avg_citation_likelihood == "75"
        assert session.statistics.total_cost == pytest.approx(calculate_cost(30, 15, "gemini-pro"))
        assert session.total_input_tokens == 30
        assert session.total_output_tokens == 15
        assert session.user_id == "u1"
        assert sessions.current_session is session

        assert store.get(SESSIONS_KEY)[0]["blogContent"] == "Hello world"
        assert store.get(CURRENT_SESSION_KEY)["id"] == session.id

    def test_same_content_appends(self, sessions, clock):
        first = sessions.record_generation("X", items("a", "b"))
        clock.now += 1000
        second = sessions.record_generation("X", items("c"))

        assert second.id == first.id
        assert len(sessions) == 1
        assert [q.question for q in second.qa_data] == ["a", "b", "c"]
        assert second.statistics.total_questions == 3
        assert second.total_input_tokens == 30

    def test_merge_law(self, sessions, clock):
        """qaData after two same-content generations is the concatenation."""
        first_batch = items("a", "b")
        second_batch = items("c", "d")
        sessions.record_generation("X", first_batch)
        sessions.record_generation("X", second_batch)

        merged = sessions.current_session.qa_data
        assert [q.id for q in merged] == [q.id for q in first_batch + second_batch]

    def test_append_accumulates_cost(self, sessions):
        sessions.record_generation("X", items("a"))
        sessions.record_generation("X", items("b"))
        expected = 2 * calculate_cost(10, 5, "gemini-pro")
        assert sessions.current_session.statistics.total_cost == pytest.approx(expected)

    def test_different_content_creates_new_session(self, sessions, clock):
        first = sessions.record_generation("X", items("a"))
        clock.now += 1
        second = sessions.record_generation("Y", items("b"))

        assert second.id != first.id
        assert [s.id for s in sessions.sessions] == [second.id, first.id]
        assert sessions.current_session is second

    def test_exact_match_only(self, sessions, clock):
        sessions.record_generation("X", items("a"))
        clock.now += 1
        sessions.record_generation("X ", items("b"))
        assert len(sessions) == 2

    def test_same_millisecond_ids_are_unique(self, sessions):
        first = sessions.record_generation("X", items("a"))
        second = sessions.record_generation("Y", items("b"))
        assert first.id != second.id

    def test_items_are_copied(self, sessions):
        batch = items("a")
        session = sessions.record_generation("X", batch)
        batch[0].answer = "changed"
        assert session.qa_data[0].answer == ""


class TestRecordAnswer:
    """Answer/score updates."""

    def test_no_current_session(self, sessions):
        assert sessions.record_answer(items("a")) is None

    def test_replaces_qa_data_and_recomputes(self, sessions):
        sessions.record_generation("Hello world", items("a", "b", "c"))
        updated = [
            QAItem(question="a", answer="A", cost=0.5, input_tokens=1, output_tokens=2),
            QAItem(question="b"),
            QAItem(question="c"),
        ]
        session = sessions.record_answer(updated, user_id="u2")

        assert session.statistics.total_questions == 3
        assert session.statistics.total_cost == 0.5
        assert session.qa_data[0].answer == "A"
        assert session.user_id == "u2"

    def test_statistics_equal_derived_values(self, sessions):
        sessions.record_generation("X", items("a"))
        session = sessions.record_answer([QAItem(question="a", cost=0.1), QAItem(question="b", cost=0.2)])
        assert session.statistics.total_questions == len(session.qa_data)
        assert session.statistics.total_cost == pytest.approx(sum(q.cost for q in session.qa_data))

    def test_persisted(self, sessions, store):
        sessions.record_generation("X", items("a"))
        sessions.record_answer([QAItem(question="a", answer="A", cost=0.3)])
        assert store.get(SESSIONS_KEY)[0]["qaData"][0]["answer"] == "A"
        assert store.get(CURRENT_SESSION_KEY)["qaData"][0]["answer"] == "A"


class TestDeleteSession:
    """Session deletion."""

    def test_delete_requires_confirmation(self, sessions):
        session = sessions.record_generation("X", items("a"))
        assert sessions.delete_session(session.id, lambda s: False) is False
        assert len(sessions) == 1

    def test_delete_current_clears_pointer(self, sessions, store):
        session = sessions.record_generation("X", items("a"))
        sessions.toggle_expanded(session.id)

        assert sessions.delete_session(session.id, lambda s: True) is True
        assert len(sessions) == 0
        assert sessions.current_session is None
        assert session.id not in sessions.expanded_sessions
        assert store.get(CURRENT_SESSION_KEY) is None
        assert store.get(SESSIONS_KEY) == []

    def test_delete_other_keeps_current(self, sessions, clock):
        first = sessions.record_generation("X", items("a"))
        clock.now += 1
        second = sessions.record_generation("Y", items("b"))

        sessions.delete_session(first.id, lambda s: True)
        assert sessions.current_session is second

    def test_unknown_id_is_noop(self, sessions, store):
        sessions.record_generation("X", items("a"))
        before = store.get(SESSIONS_KEY)
        calls = []

        assert sessions.delete_session("nope", lambda s: calls.append(s) or True) is False
        assert calls == []
        assert store.get(SESSIONS_KEY) == before

    def test_confirm_receives_session(self, sessions):
        session = sessions.record_generation("X", items("a"))
        seen = []
        sessions.delete_session(session.id, lambda s: seen.append(s.id) or False)
        assert seen == [session.id]


class TestLoading:
    """Reload from storage."""

    def test_reload_restores_sessions_and_current(self, store, clock):
        SessionStore(store, clock=clock).record_generation("X", items("a"))
        reloaded = SessionStore(store, clock=clock)

        assert len(reloaded) == 1
        assert reloaded.current_session is reloaded.sessions[0]

    def test_malformed_sessions_skipped(self, store):
        store.put(SESSIONS_KEY, [{"name": "no id"}, {"id": "ok"}])
        assert [s.id for s in SessionStore(store).sessions] == ["ok"]

    def test_non_list_ignored(self, store):
        store.put(SESSIONS_KEY, {"id": "x"})
        assert len(SessionStore(store)) == 0

    def test_write_failure_keeps_memory_view(self, clock):
        sessions = SessionStore(ReadOnlyStore(), clock=clock)
        session = sessions.record_generation("X", items("a"))
        assert sessions.current_session is session
        assert len(sessions) == 1


class TestDefaultSession:
    def test_seeded_when_empty(self, sessions):
        session = sessions.ensure_default_session("u1")
        assert session.id == DEFAULT_SESSION_ID
        assert session.user_id == "u1"
        assert sessions.current_session is session

    def test_not_seeded_when_sessions_exist(self, sessions):
        sessions.record_generation("X", items("a"))
        assert sessions.ensure_default_session("u1") is None
        assert len(sessions) == 1


class TestQueries:
    def test_history_items_flattened(self, sessions, clock):
        sessions.record_generation("X", items("a", "b"))
        clock.now += 1
        sessions.record_generation("Y", items("c"))
        assert [q.question for q in sessions.history_items()] == ["c", "a", "b"]

    def test_sessions_for_user(self, sessions, clock):
        sessions.record_generation("X", items("a"), user_id="u1")
        clock.now += 1
        sessions.record_generation("Y", items("b"), user_id="u2")
        assert [s.blog_content for s in sessions.sessions_for_user("u1")] == ["X"]

    def test_toggle_expanded(self, sessions):
        session = sessions.record_generation("X", items("a"))
        assert sessions.toggle_expanded(session.id) is True
        assert sessions.toggle_expanded(session.id) is False
        assert sessions.toggle_expanded("missing") is False

    def test_set_current(self, sessions, clock):
        first = sessions.record_generation("X", items("a"))
        clock.now += 1
        sessions.record_generation("Y", items("b"))
        assert sessions.set_current(first.id) is first
        assert sessions.set_current(None) is None
