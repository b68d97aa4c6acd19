"""
Maintenance CLI for the content core.

Usage:
    content-core [--config core.yaml] [--database-url URL] COMMAND ...

Commands:
    init-db               create every table
    load-workflows        register workflow definitions from YAML
    purge-versions        delete versions past the retention window
    relay-notifications   deliver pending notify-events (to the log)
    skip-overdue          skip optional stages waiting longer than a window

Each command is intended for cron or a one-off operator run; exit status
is 0 on success and 1 on a ContentCoreError.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from datetime import timedelta
from uuid import UUID

from content_config import get_settings
from content_kernel.db.engine import create_tables, get_engine
from content_kernel.domain.workflow import NotifyEvent
from content_kernel.exceptions import ContentCoreError
from content_kernel.logging_config import configure_logging, get_logger
from content_services.core import ContentWorkflowCore

logger = get_logger("services.cli")


class LogNotifierGateway:
    """Gateway that writes each event to the log instead of a transport."""

    def publish(self, event: NotifyEvent) -> None:
        logger.info(
            "notify_event_published",
            extra={
                "event_id": str(event.event_id),
                "sequence": event.sequence,
                "kind": event.kind.value,
                "request_id": str(event.request_id),
                "recipient_id": str(event.recipient_id) if event.recipient_id else None,
                "recipient_role": event.recipient_role,
            },
        )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="content-core",
        description="Content approval and version history maintenance",
    )
    parser.add_argument("--config", help="path to a core settings YAML file")
    parser.add_argument("--database-url", help="override settings.database_url")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="create all tables")

    load = sub.add_parser("load-workflows", help="register workflows from YAML")
    load.add_argument("--path", help="workflows YAML file (default: bundled set)")

    purge = sub.add_parser("purge-versions", help="purge expired versions")
    purge.add_argument("--retention-days", type=int)
    purge.add_argument("--content-id", type=UUID)

    sub.add_parser("relay-notifications", help="deliver pending notify-events")

    skip = sub.add_parser("skip-overdue", help="skip overdue optional stages")
    skip.add_argument("--window-hours", type=float, required=True)
    skip.add_argument("--actor-id", type=UUID, required=True)

    return parser


def _run_command(args: argparse.Namespace, core: ContentWorkflowCore) -> None:
    if args.command == "init-db":
        create_tables(get_engine())
        print("Tables created.")

    elif args.command == "load-workflows":
        for definition in core.load_workflows_from_config(args.path):
            print(
                f"  {definition.campaign_id:<20} {definition.name:<24} "
                f"v{definition.version}  {definition.workflow_id}"
            )

    elif args.command == "purge-versions":
        purged = core.purge_expired_versions(
            retention_days=args.retention_days, content_id=args.content_id,
        )
        print(f"Purged {purged} version(s).")

    elif args.command == "relay-notifications":
        result = core.relay_notifications()
        print(
            f"Dispatched {result.dispatched}, failed attempts "
            f"{result.failed_attempts}, dead-lettered {result.dead_lettered}."
        )

    elif args.command == "skip-overdue":
        skipped = core.skip_overdue_optional_stages(
            as_of=core.clock.now(),
            window=timedelta(hours=args.window_hours),
            actor_id=args.actor_id,
        )
        print(f"Skipped {len(skipped)} optional stage(s).")


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    settings = get_settings(args.config)
    if args.database_url:
        settings = replace(settings, database_url=args.database_url)
    configure_logging(level=settings.log_level)

    core = ContentWorkflowCore.from_settings(settings, gateway=LogNotifierGateway())
    try:
        _run_command(args, core)
    except ContentCoreError as exc:
        logger.error("cli_command_failed", extra={"command": args.command}, exc_info=True)
        print(f"Error [{exc.code}]: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
