"""
kabini-qa command line.

Usage:
    kabini-qa sessions
    kabini-qa show qa-session-1700000000000
    kabini-qa export qa-session-1700000000000 out.md
    kabini-qa delete qa-session-1700000000000 --yes
    kabini-qa stats
    kabini-qa draft
    kabini-qa new-analysis
    kabini-qa logout
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .api_client import KabiniAPIClient
from .config import KabiniConfig
from .controller import EnhanceContentController
from .draft_cache import DraftCache
from .export import ExportFormat, export_session, format_session_transcript, statistics_view
from .schema import SessionData
from .session_store import SessionStore
from .storage import JsonFileStore


def _open_store(args: argparse.Namespace, config: KabiniConfig) -> JsonFileStore:
    path = args.store or config.storage.resolved_path
    return JsonFileStore(path, quota_bytes=config.storage.quota_bytes)


def _controller(args: argparse.Namespace, config: KabiniConfig) -> EnhanceContentController:
    return EnhanceContentController(
        KabiniAPIClient(config.api),
        _open_store(args, config),
        config=config,
        user_id=args.user,
    )


def cmd_sessions(args: argparse.Namespace, config: KabiniConfig) -> int:
    store = SessionStore(_open_store(args, config), generation=config.generation)
    sessions = store.sessions_for_user(args.user) if args.user else store.sessions
    if not sessions:
        print("No sessions.")
        return 0

    current = store.current_session
    for session in sessions:
        marker = "*" if current is not None and current.id == session.id else " "
        stats = session.statistics
        print(
            f"{marker} {session.id}  {session.name}  "
            f"{stats.total_questions} questions  ${stats.total_cost:.6f}"
        )
    return 0


def cmd_show(args: argparse.Namespace, config: KabiniConfig) -> int:
    store = SessionStore(_open_store(args, config), generation=config.generation)
    session = store.get(args.session_id)
    if session is None:
        print(f"Session not found: {args.session_id}", file=sys.stderr)
        return 1
    print(format_session_transcript(session), end="")
    return 0


def cmd_export(args: argparse.Namespace, config: KabiniConfig) -> int:
    store = SessionStore(_open_store(args, config), generation=config.generation)
    session = store.get(args.session_id)
    if session is None:
        print(f"Session not found: {args.session_id}", file=sys.stderr)
        return 1
    path = export_session(session, args.path, format=ExportFormat(args.format))
    print(f"Exported {session.id} to {path}")
    return 0


def cmd_delete(args: argparse.Namespace, config: KabiniConfig) -> int:
    store = SessionStore(_open_store(args, config), generation=config.generation)

    def confirm(session: SessionData) -> bool:
        if args.yes:
            return True
        answer = input(f"Delete session '{session.name or session.id}'? [y/N] ")
        return answer.strip().lower() in ("y", "yes")

    if store.get(args.session_id) is None:
        print(f"Session not found: {args.session_id}", file=sys.stderr)
        return 1
    if store.delete_session(args.session_id, confirm):
        print(f"Deleted {args.session_id}")
    else:
        print("Cancelled.")
    return 0


def cmd_stats(args: argparse.Namespace, config: KabiniConfig) -> int:
    store = SessionStore(_open_store(args, config), generation=config.generation)
    view = statistics_view(store, user_id=args.user)
    print(f"Sessions: {len(view.sessions)}")
    print(f"Questions: {view.total_questions}")
    print(f"Total cost: ${view.total_cost:.6f}")
    if view.current_session is not None:
        print(f"Current session: {view.current_session.id}")
    return 0


def cmd_draft(args: argparse.Namespace, config: KabiniConfig) -> int:
    cache = DraftCache(_open_store(args, config))
    found = cache.most_recent()
    if found is None:
        print("No cached draft.")
        return 0

    key, entry = found
    print(f"Key: {key}")
    print(f"Content: {len(entry.content)} chars")
    print(f"URLs: {len(entry.urls)}")
    for record in entry.urls:
        print(f"  [{record.status}] {record.url}")
    answered = sum(1 for item in entry.qa_items if item.has_answer)
    print(f"QA items: {len(entry.qa_items)} ({answered} answered)")
    return 0


def cmd_new_analysis(args: argparse.Namespace, config: KabiniConfig) -> int:
    removed = _controller(args, config).new_analysis()
    print(f"Removed {len(removed)} cached drafts.")
    return 0


def cmd_logout(args: argparse.Namespace, config: KabiniConfig) -> int:
    removed = _controller(args, config).logout()
    print(f"Cleared {len(removed)} keys. Session history kept.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kabini-qa",
        description="Inspect and manage kabini Q&A sessions and cached drafts",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Config file (default: ~/.kabini/qa-config.json)",
    )
    parser.add_argument(
        "--store",
        type=Path,
        help="Local store file (default: from config or KABINI_STORE_PATH)",
    )
    parser.add_argument("--user", help="Scope to one user id")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("sessions", help="List sessions").set_defaults(func=cmd_sessions)

    show = sub.add_parser("show", help="Print a session transcript")
    show.add_argument("session_id")
    show.set_defaults(func=cmd_show)

    export = sub.add_parser("export", help="Export a session to a file")
    export.add_argument("session_id")
    export.add_argument("path", type=Path)
    export.add_argument(
        "--format",
        choices=[f.value for f in ExportFormat],
        default=ExportFormat.MARKDOWN.value,
    )
    export.set_defaults(func=cmd_export)

    delete = sub.add_parser("delete", help="Delete a session")
    delete.add_argument("session_id")
    delete.add_argument("--yes", action="store_true", help="Skip confirmation")
    delete.set_defaults(func=cmd_delete)

    sub.add_parser("stats", help="Show totals across sessions").set_defaults(func=cmd_stats)
    sub.add_parser("draft", help="Show the most recent cached draft").set_defaults(func=cmd_draft)
    sub.add_parser("new-analysis", help="Purge cached drafts").set_defaults(func=cmd_new_analysis)
    sub.add_parser("logout", help="Clear analysis state, keep sessions").set_defaults(func=cmd_logout)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config = KabiniConfig.load(args.config)
    return args.func(args, config)


if __name__ == "__main__":
    sys.exit(main())
