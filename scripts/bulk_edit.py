#!/usr/bin/env python3
"""
Bulk edit employee records and manage the change audit trail.

Usage:
    python -m scripts.bulk_edit --database-url URL init-db
    python -m scripts.bulk_edit --database-url URL seed --employees JSON
    python -m scripts.bulk_edit --database-url URL submit --changes JSON [--schedule ISO8601]
    python -m scripts.bulk_edit --database-url URL cancel BATCH_ID
    python -m scripts.bulk_edit --database-url URL revert-batch BATCH_ID
    python -m scripts.bulk_edit --database-url URL revert-log LOG_ID
    python -m scripts.bulk_edit --database-url URL batches [--status STATUS]
    python -m scripts.bulk_edit --database-url URL logs BATCH_ID

Examples:
    # Give two employees a new department right away
    python -m scripts.bulk_edit --database-url sqlite:///roster.db submit \\
        --changes '{"e1": {"department": "Eng"}, "e2": {"department": "Eng"}}'

    # Undo it
    python -m scripts.bulk_edit --database-url sqlite:///roster.db revert-batch 1

Output is one JSON document on stdout.  Typed errors print
``{"error": ..., "code": ...}`` and exit with status 1.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import asdict, is_dataclass
from datetime import datetime
from typing import Any, Sequence

from roster_batch.domain.types import ChangeBatchStatus
from roster_batch.entities.sql import SqlEntityStore
from roster_batch.orchestrator import BulkEditOrchestrator
from roster_config import get_active_config
from roster_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from roster_kernel.exceptions import RosterKernelError
from roster_kernel.logging_config import configure_logging

DEFAULT_DB_URL = os.environ.get("ROSTER_DATABASE_URL", "sqlite:///roster.db")


# =============================================================================
# Output helpers
# =============================================================================


def _jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def emit(value: Any) -> None:
    print(json.dumps(_jsonable(value), indent=2, default=str))


def _parse_json_object(text: str, flag: str) -> dict[str, Any]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise argparse.ArgumentTypeError(f"{flag} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise argparse.ArgumentTypeError(f"{flag} must be a JSON object")
    return data


def _parse_timestamp(text: str) -> datetime:
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"--schedule is not ISO-8601: {text}") from exc


# =============================================================================
# Commands
# =============================================================================


def cmd_init_db(args: argparse.Namespace, orchestrator: BulkEditOrchestrator) -> Any:
    create_tables()
    return {"initialized": True}


def cmd_seed(args: argparse.Namespace, orchestrator: BulkEditOrchestrator) -> Any:
    employees = _parse_json_object(args.employees, "--employees")
    store = SqlEntityStore(get_session_factory())
    for entity_id, values in employees.items():
        store.add(str(entity_id), **values)
    return {"seeded": sorted(str(k) for k in employees)}


def cmd_submit(args: argparse.Namespace, orchestrator: BulkEditOrchestrator) -> Any:
    changes = _parse_json_object(args.changes, "--changes")
    entity_ids = args.entity_ids.split(",") if args.entity_ids else list(changes)
    return orchestrator.submit_batch(
        entity_ids,
        changes,
        scheduled_for=args.schedule,
        submitter_id=args.submitter,
    )


def cmd_cancel(args: argparse.Namespace, orchestrator: BulkEditOrchestrator) -> Any:
    return orchestrator.cancel_batch(args.batch_id, submitter_id=args.submitter)


def cmd_revert_batch(args: argparse.Namespace, orchestrator: BulkEditOrchestrator) -> Any:
    return orchestrator.revert_batch(args.batch_id, submitter_id=args.submitter)


def cmd_revert_log(args: argparse.Namespace, orchestrator: BulkEditOrchestrator) -> Any:
    return orchestrator.revert_log(args.log_id, submitter_id=args.submitter)


def cmd_batches(args: argparse.Namespace, orchestrator: BulkEditOrchestrator) -> Any:
    with orchestrator.selector() as selector:
        if args.view == "scheduled":
            return selector.list_scheduled()
        if args.view == "history":
            return selector.list_history()
        return selector.list_batches(status=args.status)


def cmd_logs(args: argparse.Namespace, orchestrator: BulkEditOrchestrator) -> Any:
    with orchestrator.selector() as selector:
        return selector.list_logs(args.batch_id)


# =============================================================================
# Parser
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bulk_edit",
        description="Bulk edit employee records with a revertible audit trail.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--database-url", "--db-url", dest="database_url", default=DEFAULT_DB_URL,
        help=f"Database URL (default: {DEFAULT_DB_URL})",
    )
    parser.add_argument(
        "--config", default="default",
        help="Configuration set name (default: default)",
    )
    parser.add_argument(
        "--submitter", default=None,
        help="Identity recorded as submitter of the change",
    )
    parser.add_argument(
        "--verbose", action="store_true",
        help="Write structured JSON logs to stderr",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create tables")
    p.set_defaults(handler=cmd_init_db)

    p = sub.add_parser("seed", help="Insert employee records")
    p.add_argument("--employees", required=True, help='JSON: {"id": {"attr": value}}')
    p.set_defaults(handler=cmd_seed)

    p = sub.add_parser("submit", help="Submit a bulk edit")
    p.add_argument("--changes", required=True, help='JSON: {"id": {"attr": value}}')
    p.add_argument(
        "--entity-ids", default=None,
        help="Comma-separated ids to target (default: keys of --changes)",
    )
    p.add_argument(
        "--schedule", type=_parse_timestamp, default=None,
        help="ISO-8601 timestamp; records a Scheduled batch instead of applying",
    )
    p.set_defaults(handler=cmd_submit)

    p = sub.add_parser("cancel", help="Cancel a Scheduled batch")
    p.add_argument("batch_id", type=int)
    p.set_defaults(handler=cmd_cancel)

    p = sub.add_parser("revert-batch", help="Revert a completed batch")
    p.add_argument("batch_id", type=int)
    p.set_defaults(handler=cmd_revert_batch)

    p = sub.add_parser("revert-log", help="Revert a single change log")
    p.add_argument("log_id", type=int)
    p.set_defaults(handler=cmd_revert_log)

    p = sub.add_parser("batches", help="List change batches")
    p.add_argument(
        "--status", default=None,
        choices=[s.value for s in ChangeBatchStatus],
        help="Only batches with this status",
    )
    p.add_argument(
        "--view", choices=("all", "scheduled", "history"), default="all",
        help="scheduled: soonest first; history: executed batches, newest first",
    )
    p.set_defaults(handler=cmd_batches)

    p = sub.add_parser("logs", help="List the change logs of a batch")
    p.add_argument("batch_id", type=int)
    p.set_defaults(handler=cmd_logs)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        configure_logging(level=logging.DEBUG, stream=sys.stderr)
    else:
        logging.disable(logging.CRITICAL)

    try:
        init_engine_from_url(args.database_url)
        orchestrator = BulkEditOrchestrator.from_session_factory(
            get_session_factory(),
            config=get_active_config(args.config),
        )
        emit(args.handler(args, orchestrator))
        return 0
    except RosterKernelError as exc:
        emit({"error": str(exc), "code": exc.code})
        return 1
    except argparse.ArgumentTypeError as exc:
        emit({"error": str(exc), "code": "INVALID_ARGUMENT"})
        return 1
    finally:
        reset_engine()
        if not args.verbose:
            logging.disable(logging.NOTSET)


if __name__ == "__main__":
    sys.exit(main())
