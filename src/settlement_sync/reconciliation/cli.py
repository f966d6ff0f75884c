#!/usr/bin/env python3
"""Command-line interface for the settlement sync engine.

Meant to be invoked by a scheduler (cron or similar) for sync and
reconciliation passes, and by operators for summaries.

Usage:
    settlement-sync sync
    settlement-sync sync --button 3f1c... --from 2024-01-01 --to 2024-01-31
    settlement-sync reconcile --organization 8a2e... --exclusive
    settlement-sync backfill
    settlement-sync summary --organization 8a2e... --format text --output summary.txt

Exit codes: 0 on success, 1 on partial failure or bad arguments, 2 on failure.
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timedelta
from typing import Optional

from ..database import DatabaseManager, PaymentButtonRepository
from ..errors import SyncValidationError
from .matcher import MatchingEngine
from .models import MatchPolicy
from .report import REPORT_FORMATS, ReportGenerator
from .summary import SummaryAggregator
from .sync import SyncEngine

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_FAILED = 2


def parse_datetime(dt_string: str) -> datetime:
    """Parse datetime string in various formats.

    Raises:
        ValueError: If the string cannot be parsed.
    """
    formats = [
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%dT%H:%M:%S.%f",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%d",
    ]

    for fmt in formats:
        try:
            return datetime.strptime(dt_string, fmt)
        except ValueError:
            continue

    raise ValueError(
        f"Unable to parse datetime: {dt_string}. "
        f"Expected formats: YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS"
    )


def parse_window(start: Optional[str], end: Optional[str]):
    """Parse optional --from/--to values; a bare end date covers that whole day."""
    start_time = parse_datetime(start) if start else None
    end_time = parse_datetime(end) if end else None
    if end_time is not None and "T" not in end and " " not in end:
        end_time = end_time + timedelta(days=1) - timedelta(seconds=1)
    return start_time, end_time


def write_output(output: str, output_file: Optional[str]) -> None:
    if output_file:
        with open(output_file, "w") as f:
            f.write(output)
        logger.info(f"Output written to {output_file}")
    else:
        print(output)


async def run_sync_async(
    database_url: Optional[str] = None,
    organization_id: Optional[str] = None,
    button_id: Optional[str] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
) -> int:
    """Sync one button, one organization, or every button.

    Returns:
        Exit code.
    """
    db_manager = DatabaseManager(database_url=database_url)
    await db_manager.initialize()

    try:
        async with db_manager.session() as session:
            engine = SyncEngine(session)
            buttons_repo = PaymentButtonRepository(session)

            if button_id:
                button = await buttons_repo.get_by_id(button_id)
                if button is None:
                    logger.error(f"Payment button {button_id} not found")
                    return EXIT_PARTIAL
                result = await engine.sync_payment_button(button, from_date, to_date)
                print(json.dumps(
                    {**result.model_dump(mode="json"), "success": result.success}, indent=2
                ))
                return EXIT_OK if result.success else EXIT_FAILED

            buttons = None
            if organization_id:
                buttons = await buttons_repo.list_by_organization(organization_id)
            fleet = await engine.sync_all(buttons)
            print(json.dumps(fleet.to_summary_dict(), indent=2))

            if fleet.success:
                return EXIT_OK
            failed = fleet.failed_buttons
            if fleet.buttons and len(failed) == len(fleet.buttons):
                logger.error("Sync failed for every payment button")
                return EXIT_FAILED
            logger.warning(f"Sync completed with failures: {', '.join(failed) or 'backfill'}")
            return EXIT_PARTIAL
    finally:
        await db_manager.shutdown()


async def run_reconcile_async(
    organization_id: str,
    database_url: Optional[str] = None,
    order: str = "earliest",
    exclusive: bool = False,
) -> int:
    db_manager = DatabaseManager(database_url=database_url)
    await db_manager.initialize()

    try:
        async with db_manager.session() as session:
            engine = MatchingEngine(session, policy=MatchPolicy(order=order, exclusive=exclusive))
            result = await engine.reconcile(organization_id)
            print(json.dumps(result.model_dump(mode="json"), indent=2))

            if not result.success:
                logger.error(f"Reconciliation failed: {result.error_message}")
                return EXIT_FAILED
            if result.skipped_buttons:
                logger.warning(
                    f"Reconciliation skipped locked buttons: {', '.join(result.skipped_buttons)}"
                )
                return EXIT_PARTIAL
            return EXIT_OK
    finally:
        await db_manager.shutdown()


async def run_backfill_async(database_url: Optional[str] = None) -> int:
    db_manager = DatabaseManager(database_url=database_url)
    await db_manager.initialize()

    try:
        async with db_manager.session() as session:
            result = await MatchingEngine(session).backfill_expected_dates()
            print(json.dumps(result.model_dump(mode="json"), indent=2))
            return EXIT_OK if result.success else EXIT_FAILED
    finally:
        await db_manager.shutdown()


async def run_summary_async(
    organization_id: str,
    database_url: Optional[str] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    output_format: str = "json",
    output_file: Optional[str] = None,
) -> int:
    db_manager = DatabaseManager(database_url=database_url)
    await db_manager.initialize()

    try:
        async with db_manager.session() as session:
            summary = await SummaryAggregator(session).summarize(
                organization_id, from_date, to_date
            )
            write_output(ReportGenerator(summary).render(output_format), output_file)
            return EXIT_OK
    finally:
        await db_manager.shutdown()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="settlement-sync",
        description="Sync processor transactions and liquidations and reconcile them.",
    )
    parser.add_argument(
        "--database-url",
        help="Database URL (default: DATABASE_URL environment variable)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Sync transactions and liquidations")
    target = sync_parser.add_mutually_exclusive_group()
    target.add_argument("--organization", help="Only sync this organization's buttons")
    target.add_argument("--button", help="Only sync this payment button")
    sync_parser.add_argument("--from", dest="start", help="Window start (only with --button)")
    sync_parser.add_argument("--to", dest="end", help="Window end (only with --button)")

    # Reconcile command
    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Match completed transactions to liquidations",
    )
    reconcile_parser.add_argument("--organization", required=True, help="Organization id")
    reconcile_parser.add_argument(
        "--order",
        choices=["earliest", "storage"],
        default="earliest",
        help="Candidate liquidation order (default: earliest)",
    )
    reconcile_parser.add_argument(
        "--exclusive",
        action="store_true",
        help="Let each liquidation absorb at most one transaction per run",
    )

    # Backfill command
    subparsers.add_parser("backfill", help="Fill missing expected settlement dates")

    # Summary command
    summary_parser = subparsers.add_parser("summary", help="Print a reconciliation summary")
    summary_parser.add_argument("--organization", required=True, help="Organization id")
    summary_parser.add_argument("--start", "-s", help="Window start (default: first of month)")
    summary_parser.add_argument("--end", "-e", help="Window end (default: now)")
    summary_parser.add_argument(
        "--format", "-f",
        choices=list(REPORT_FORMATS),
        default="json",
        help="Output format (default: json)",
    )
    summary_parser.add_argument("--output", "-o", help="Output file path (default: stdout)")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if not parsed_args.command:
        parser.print_help()
        return EXIT_PARTIAL

    try:
        if parsed_args.command == "sync":
            start_time, end_time = parse_window(parsed_args.start, parsed_args.end)
            if (start_time or end_time) and not parsed_args.button:
                raise SyncValidationError("--from/--to require --button")
            return asyncio.run(run_sync_async(
                database_url=parsed_args.database_url,
                organization_id=parsed_args.organization,
                button_id=parsed_args.button,
                from_date=start_time,
                to_date=end_time,
            ))

        if parsed_args.command == "reconcile":
            return asyncio.run(run_reconcile_async(
                organization_id=parsed_args.organization,
                database_url=parsed_args.database_url,
                order=parsed_args.order,
                exclusive=parsed_args.exclusive,
            ))

        if parsed_args.command == "backfill":
            return asyncio.run(run_backfill_async(database_url=parsed_args.database_url))

        if parsed_args.command == "summary":
            start_time, end_time = parse_window(parsed_args.start, parsed_args.end)
            return asyncio.run(run_summary_async(
                organization_id=parsed_args.organization,
                database_url=parsed_args.database_url,
                from_date=start_time,
                to_date=end_time,
                output_format=parsed_args.format,
                output_file=parsed_args.output,
            ))
    except (ValueError, SyncValidationError) as e:
        logger.error(str(e))
        return EXIT_PARTIAL

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
