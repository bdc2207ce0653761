"""
Read-only views over the session history and session export.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .schema import QAItem, SessionData
from .session_store import SessionStore


class ExportFormat(Enum):
    """Supported export formats."""

    JSON = "json"
    MARKDOWN = "markdown"


@dataclass
class StatisticsView:
    """Sessions, the current session and cost across all sessions."""

    sessions: list[SessionData] = field(default_factory=list)
    current_session: SessionData | None = None
    total_cost: float = 0.0

    @property
    def total_questions(self) -> int:
        return sum(s.statistics.total_questions for s in self.sessions)


def history_items(store: SessionStore) -> list[QAItem]:
    """Flattened QA list across all sessions."""
    return store.history_items()


def statistics_view(store: SessionStore, user_id: str | None = None) -> StatisticsView:
    """Build the statistics page view, optionally scoped to one user."""
    sessions = store.sessions_for_user(user_id) if user_id else store.sessions
    return StatisticsView(
        sessions=sessions,
        current_session=store.current_session,
        total_cost=sum(s.statistics.total_cost for s in sessions),
    )


def _format_score(value: object) -> str:
    if value is None or value == "":
        return "-"
    return str(value)


def format_session_transcript(session: SessionData) -> str:
    """Render a session as a Markdown transcript."""
    stats = session.statistics
    lines = [
        f"# {session.name or session.id}",
        "",
        f"- Session: {session.id}",
        f"- Created: {session.timestamp}",
        f"- Model: {session.model}",
        f"- Questions: {stats.total_questions}",
        f"- Avg accuracy: {stats.avg_accuracy}",
        f"- Avg citation likelihood: {stats.avg_citation_likelihood}",
        f"- Total cost: ${stats.total_cost:.6f}",
        f"- Tokens: {session.total_input_tokens} in / {session.total_output_tokens} out",
    ]

    for i, item in enumerate(session.qa_data, 1):
        lines += ["", f"## Q{i}. {item.question}", ""]
        lines.append(item.answer if item.has_answer else "_No answer yet._")
        if item.has_answer:
            lines += [
                "",
                f"Accuracy: {_format_score(item.accuracy)} | "
                f"Citation likelihood: {_format_score(item.citation_likelihood)} | "
                f"GEO: {_format_score(item.geo_score)} | "
                f"Sentiment: {_format_score(item.sentiment)} | "
                f"Cost: ${item.cost:.6f}",
            ]

    return "\n".join(lines) + "\n"


def export_session(
    session: SessionData,
    path: Path | str,
    format: ExportFormat = ExportFormat.MARKDOWN,
) -> Path:
    """
    Write a session to disk.

    Returns:
        The path written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if format == ExportFormat.JSON:
        path.write_text(json.dumps(session.to_json_dict(), indent=2))
    else:
        path.write_text(format_session_transcript(session))
    return path


__all__ = [
    "ExportFormat",
    "StatisticsView",
    "history_items",
    "statistics_view",
    "format_session_transcript",
    "export_session",
]
