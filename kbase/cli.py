"""
KBase CLI — Bootstrap and maintenance commands.

Commands:
- kbase init             — Create the database schema
- kbase feed             — Print the activity feed (newest first)
- kbase history DOC_ID   — Full activity trail for one document
- kbase versions DOC_ID  — Retained ledger versions for one document
- kbase replay-activity  — Re-insert activity entries spooled after write failures
- kbase cleanup-logs     — Apply log retention / compression
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional

from kbase.engine.errors import KBError

logger = logging.getLogger("kbase.cli")


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="kbase",
        description="KBase — Versioned knowledge-base document store",
    )
    parser.add_argument(
        "--config", default=None, help="Path to kbase.yaml (default: auto-discover)"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init", help="Create database tables")

    feed_parser = subparsers.add_parser("feed", help="Show the activity feed")
    feed_parser.add_argument("--offset", type=int, default=0, help="Entries to skip (default: 0)")
    feed_parser.add_argument("--limit", type=int, default=None, help="Page size (default: activity.page_size)")

    history_parser = subparsers.add_parser("history", help="Full activity trail for a document")
    history_parser.add_argument("doc_id", type=int, help="Document id")

    versions_parser = subparsers.add_parser("versions", help="Retained versions of a document")
    versions_parser.add_argument("doc_id", type=int, help="Document id")
    versions_parser.add_argument(
        "--include-deleted", action="store_true", help="Also resolve soft-deleted documents"
    )

    subparsers.add_parser("replay-activity", help="Replay spooled activity entries")
    subparsers.add_parser("cleanup-logs", help="Prune and compress old log files")

    args = parser.parse_args(argv)

    if args.command == "init":
        return cmd_init(args)
    elif args.command == "feed":
        return cmd_feed(args)
    elif args.command == "history":
        return cmd_history(args)
    elif args.command == "versions":
        return cmd_versions(args)
    elif args.command == "replay-activity":
        return cmd_replay_activity(args)
    elif args.command == "cleanup-logs":
        return cmd_cleanup_logs(args)
    else:
        parser.print_help()
        return 0


def _start(args: argparse.Namespace, create_tables: bool = False):
    from kbase.engine.config import load_config
    from kbase.runtime import KnowledgeBase

    config = load_config(args.config)
    return KnowledgeBase(config, create_tables=create_tables).startup()


def _stop(kb) -> None:
    asyncio.run(kb.shutdown())


def cmd_init(args: argparse.Namespace) -> int:
    """Load config and create all tables."""
    try:
        kb = _start(args, create_tables=True)
    except KBError as e:
        print(f"[ERROR] {e.message}")
        return 1
    except Exception as e:
        print(f"[ERROR] Failed to create tables: {e}")
        return 1

    print(f"[OK] Database ready: {kb.config.database.url}")
    print(f"[OK] Logs: {kb.config.logging.directory}")
    _stop(kb)
    return 0


def cmd_feed(args: argparse.Namespace) -> int:
    kb = _start(args)
    try:
        page = kb.store.activity_feed(args.offset, args.limit or kb.config.activity.page_size)
        for activity in page.activities:
            print(
                f"{activity.created_at:%Y-%m-%d %H:%M:%S}  user {activity.user_id} "
                f"{activity.action_text} \"{activity.document_title}\" "
                f"(#{activity.document_id}, v{activity.version_number})"
            )
        print(f"-- {len(page.activities)} of {page.total}{' (more)' if page.has_more else ''}")
        return 0
    finally:
        _stop(kb)


def cmd_history(args: argparse.Namespace) -> int:
    kb = _start(args)
    try:
        trail = kb.store.document_history(args.doc_id)
        if not trail:
            print(f"[ERROR] No activity for document {args.doc_id}")
            return 1
        for activity in trail:
            changed = ", ".join(activity.changes.changed_fields()) or "-"
            print(
                f"{activity.created_at:%Y-%m-%d %H:%M:%S}  {activity.action.value:<16} "
                f"v{activity.version_number}  user {activity.user_id}  [{changed}]"
            )
        return 0
    finally:
        _stop(kb)


def cmd_versions(args: argparse.Namespace) -> int:
    kb = _start(args)
    try:
        document = kb.store.get(args.doc_id, include_deleted=args.include_deleted)
        print(f"Document #{document.id}: {document.title} (current v{document.current_version})")
        for version in sorted(document.versions, key=lambda v: v.version_number, reverse=True):
            changed = ", ".join(version.changes.changed_fields()) or "-"
            note = f"  {version.note}" if version.note else ""
            print(f"  v{version.version_number:<4} by user {version.edited_by}  [{changed}]{note}")
        return 0
    except KBError as e:
        print(f"[ERROR] {e.message}")
        return 1
    finally:
        _stop(kb)


def cmd_replay_activity(args: argparse.Namespace) -> int:
    kb = _start(args)
    try:
        restored = kb.replay_activity()
        print(f"[OK] Replayed {restored} activity entr{'y' if restored == 1 else 'ies'}")
        return 0
    except Exception as e:
        print(f"[ERROR] Replay failed: {e}")
        return 1
    finally:
        _stop(kb)


def cmd_cleanup_logs(args: argparse.Namespace) -> int:
    kb = _start(args)
    try:
        result = kb.cleanup_logs()
        print(f"[OK] Deleted {result['deleted']}, compressed {result['compressed']} log files")
        return 0
    finally:
        _stop(kb)
