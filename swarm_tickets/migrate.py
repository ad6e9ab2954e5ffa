"""Copy tickets from a JSON file into SQLite or Supabase storage.

The copy is one-directional and re-runnable: tickets whose ID already exists
at the destination are skipped, and the source file is never written.

    swarm-tickets-migrate sqlite --json-path ./tickets.json --sqlite-path ./tickets.db
    swarm-tickets-migrate supabase --database-url postgresql://...
"""
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from swarm_tickets.core.config import get_settings
from swarm_tickets.schemas.ticket import TicketCreate, upgrade_legacy_ticket
from swarm_tickets.storage.base import StorageAdapter
from swarm_tickets.storage.factory import StorageConfig, StorageKind, create_storage_adapter

logger = logging.getLogger("swarm-tickets.migrate")

TARGETS = (StorageKind.SQLITE.value, StorageKind.SUPABASE.value)


class MigrationReport(BaseModel):
    migrated: int = 0
    skipped: int = 0
    failed: int = 0
    failures: Dict[str, str] = Field(default_factory=dict, description="Ticket ID to error message.")


def load_snapshot(path) -> List[Dict[str, Any]]:
    """Raw ticket dicts from a ``{"tickets": [...]}`` document."""
    document = json.loads(Path(path).read_text(encoding="utf-8") or "{}")
    return list(document.get("tickets") or [])


def migrate_tickets(tickets: List[Dict[str, Any]], target: StorageAdapter) -> MigrationReport:
    """
    Create each ticket at ``target`` with its original ID, timestamps,
    actions and comments. A failure on one ticket is recorded and the
    rest still run.
    """
    report = MigrationReport()

    for position, raw in enumerate(tickets):
        ticket_id = raw.get("id")
        if not ticket_id:
            # Re-runs must not mint a second copy.
            ticket_id = f"<missing id #{position}>"
            logger.error(f"Ticket at position {position} has no ID, not migrating it")
            report.failed += 1
            report.failures[ticket_id] = "Ticket has no ID"
            continue

        try:
            data = TicketCreate.model_validate(upgrade_legacy_ticket(raw))
            if target.get_ticket(data.id) is not None:
                logger.info(f"{ticket_id} already exists, skipping")
                report.skipped += 1
                continue

            target.create_ticket(data)
            logger.info(f"Migrated {ticket_id}")
            report.migrated += 1
        except Exception as exc:
            logger.error(f"Failed to migrate {ticket_id}: {exc}")
            report.failed += 1
            report.failures[ticket_id] = str(exc)

    return report


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="swarm-tickets-migrate",
        description="Migrate tickets from a JSON file to SQLite or Supabase storage.",
    )
    parser.add_argument("target", choices=TARGETS, help="Destination storage backend")
    parser.add_argument("--json-path", default=None, help="Source JSON file (default: SWARM_TICKETS_JSON_PATH)")
    parser.add_argument("--sqlite-path", default=None, help="SQLite database file (default: SWARM_TICKETS_SQLITE_PATH)")
    parser.add_argument("--database-url", default=None, help="Postgres connection string (default: SUPABASE_DB_URL)")
    return parser


def target_config(args: argparse.Namespace) -> StorageConfig:
    settings = get_settings()
    config = settings.storage_config()
    return config.model_copy(
        update={
            "kind": StorageKind(args.target),
            "sqlite_path": args.sqlite_path or config.sqlite_path,
            "supabase_db_url": args.database_url or config.supabase_db_url,
        }
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    json_path = Path(args.json_path or settings.SWARM_TICKETS_JSON_PATH)
    if not json_path.exists():
        print(f"Source file not found: {json_path}", file=sys.stderr)
        return 1

    try:
        tickets = load_snapshot(json_path)
    except ValueError as exc:
        print(f"Failed to read {json_path}: {exc}", file=sys.stderr)
        return 1

    if not tickets:
        print("No tickets to migrate.")
        return 0

    print(f"Found {len(tickets)} tickets in {json_path}")

    try:
        target = create_storage_adapter(target_config(args))
    except Exception as exc:
        # StorageUnavailable, or the driver refusing the connection.
        print(f"Failed to connect to {args.target}: {exc}", file=sys.stderr)
        return 1

    try:
        report = migrate_tickets(tickets, target)
    finally:
        target.close()

    print("Migration summary:")
    print(f"  Migrated: {report.migrated}")
    print(f"  Skipped:  {report.skipped}")
    print(f"  Failed:   {report.failed}")
    if report.migrated:
        print(f"To use it, start the server with SWARM_TICKETS_STORAGE={args.target}")
    print(f"{json_path} was not modified.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
