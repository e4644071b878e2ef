"""
Review Synthesis CLI
====================

Command-line interface for the synthesis engine.

Commands:
    generate  - Generate (or refresh) the synthesis of one movie
    status    - Show a movie's synthesis status and recent log
    refresh   - Run one refresh tick over stale records
    schedule  - Run the refresh scheduler as a daemon
    init-db   - Create the review_synthesis table and indexes

Usage:
    python -m src.orchestrator.cli generate --subject-id 550 --force
    python -m src.orchestrator.cli status --subject-id 550
    python -m src.orchestrator.cli refresh --limit 5
    python -m src.orchestrator.cli schedule
    python -m src.orchestrator.cli init-db
"""

import argparse
import asyncio
import json
import logging
import sys

from ..api.services import build_services
from ..data.config import get_settings
from ..synthesis.store import PostgresSynthesisStore
from .logging_config import setup_logging
from .synthesis_orchestrator import SynthesisError


def cmd_generate(args):
    """Generate the synthesis of one movie."""
    services = build_services()

    try:
        run = asyncio.run(services.orchestrator.generate_synthesis(args.subject_id, force=args.force))
    except SynthesisError as e:
        print(f"ERROR: {e}")
        return 1

    record = run.record
    print("=" * 60)
    print(f"SYNTHESIS {args.subject_id}: {run.outcome.value.upper()}")
    print("=" * 60)
    if record is None:
        return 0

    if args.json:
        print(json.dumps(record.to_dict(), indent=2, default=str))
        return 0

    print(f"Title: {record.title} ({record.year or 'N/A'})")
    print(f"Status: {record.status.value}")
    print(f"Reviews: {record.review_count} {record.sources}")
    print(f"Sentiment: {record.sentiment.classification.value} ({record.sentiment.score})")
    print(f"Positive: {record.positive_percentage}%")
    print(f"Popularity score: {record.popularity_score}")
    print()
    print(record.summary)
    return 0


def cmd_status(args):
    """Show a movie's synthesis status."""
    services = build_services()
    record = services.store.get(args.subject_id)

    if record is None:
        print(f"No synthesis for {args.subject_id} (not_started)")
        return 0

    if args.json:
        print(json.dumps(record.to_dict(), indent=2, default=str))
        return 0

    print(f"Status: {record.status.value}")
    print(f"Last updated: {record.last_updated.isoformat() if record.last_updated else 'never'}")
    print(f"Needs update: {record.needs_update}")
    print("Recent log:")
    for entry in record.recent_log(args.entries):
        print(f"  [{entry.timestamp.isoformat()}] {entry.step} ({entry.status.value}): {entry.message}")
    return 0


def cmd_refresh(args):
    """Run one refresh tick."""
    services = build_services()
    result = asyncio.run(services.scheduler.run_once(limit=args.limit))

    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.status != "failed" else 1


def cmd_schedule(args):
    """Run the scheduler daemon."""
    services = build_services()
    asyncio.run(services.scheduler.serve_forever())
    return 0


def cmd_init_db(args):
    """Create the synthesis table and indexes."""
    try:
        PostgresSynthesisStore().ensure_schema()
    except Exception as e:
        print(f"ERROR: Schema creation failed: {e}")
        logging.exception("init-db failed")
        return 1
    print("review_synthesis schema ready")
    return 0


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="review-synthesis",
        description="Review Synthesis Engine CLI",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    generate_parser = subparsers.add_parser("generate", help="Generate one movie's synthesis")
    generate_parser.add_argument("--subject-id", type=int, required=True, help="TMDb movie id")
    generate_parser.add_argument("--force", action="store_true", help="Regenerate even if fresh")
    generate_parser.add_argument("--json", action="store_true", help="Output the record as JSON")

    status_parser = subparsers.add_parser("status", help="Show synthesis status")
    status_parser.add_argument("--subject-id", type=int, required=True, help="TMDb movie id")
    status_parser.add_argument("--entries", type=int, default=3, help="Log entries to show (default: 3)")
    status_parser.add_argument("--json", action="store_true", help="Output the record as JSON")

    refresh_parser = subparsers.add_parser("refresh", help="Run one refresh tick")
    refresh_parser.add_argument("--limit", type=int, help="Max records to refresh")

    subparsers.add_parser("schedule", help="Run the refresh scheduler daemon")
    subparsers.add_parser("init-db", help="Create the synthesis schema")

    args = parser.parse_args()

    log_config = get_settings().logging
    setup_logging(
        level="DEBUG" if args.verbose else log_config.level,
        json_output=log_config.json_logs,
        log_file=log_config.log_file,
    )

    if args.command is None:
        parser.print_help()
        return 1

    commands = {
        "generate": cmd_generate,
        "status": cmd_status,
        "refresh": cmd_refresh,
        "schedule": cmd_schedule,
        "init-db": cmd_init_db,
    }

    handler = commands.get(args.command)
    if handler:
        return handler(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
