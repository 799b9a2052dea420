"""CLI command for the explicit failed-migration retry batch.

Usage:
    python -m evidvault.cli [OPTIONS]

Examples:
    # Retry every failed migration
    python -m evidvault.cli

    # Only one wallet's records
    python -m evidvault.cli --wallet 0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb0

    # List what would be retried without touching anything
    python -m evidvault.cli --dry-run

    # Verbose logging
    python -m evidvault.cli -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from evidvault.core import timezone  # noqa: F401
from evidvault.core.config import Settings, configure_logging
from evidvault.core.database import setup_db_session
from evidvault.core.dependencies import build_services
from evidvault.services.evidence_intake import normalize_owner_address
from evidvault.uow import create_uow_factory
from evidvault.workers.migration_worker import BatchResult

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Retry failed durable storage migrations",
        epilog="Stale 'uploading' records are reclaimed first; records run one at a time",
    )

    parser.add_argument(
        "--wallet",
        help="Only retry records owned by this wallet address",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List failed and stale records without migrating",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


def exit_code_for(batch: BatchResult) -> int:
    """0 when everything completed (or nothing was pending), 2 partial, 1 none."""
    if batch.processed == 0 or batch.completed == batch.processed:
        return 0
    if batch.completed > 0:
        return 2
    return 1


def print_summary(batch: BatchResult) -> None:
    print("\n" + "=" * 60)
    print("Migration Retry Summary")
    print("=" * 60)
    print(f"Stale uploads reclaimed: {batch.reclaimed}")
    print(f"Records processed: {batch.processed}")
    print(f"Completed: {batch.completed}")
    print(f"Failed: {batch.failed}")
    print(f"Blocked by payment gate: {batch.blocked}")

    problems = [o for o in batch.outcomes if o.result in ("failed", "blocked")]
    if problems:
        print(f"\nErrors encountered: {len(problems)}")
        for outcome in problems[:5]:
            print(f"  - {outcome.file_record_id}: {outcome.error}")
        if len(problems) > 5:
            print(f"  ... and {len(problems) - 5} more errors")
    print("=" * 60 + "\n")


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 2 (partial success)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    owner = None
    if args.wallet:
        try:
            owner = normalize_owner_address(args.wallet)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    logger.info("cli.started", wallet=owner, dry_run=args.dry_run)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    try:
        if args.dry_run:
            async with await uow_factory() as uow:
                failed = await uow.file_records.get_failed(owner)
                counts = await uow.file_records.count_by_status(owner)
            print(f"Failed records to retry: {len(failed)}")
            for record in failed[:20]:
                print(f"  - {record.id} {record.original_filename}: {record.last_error}")
            print(f"Currently uploading: {counts['uploading']}")
            print("\n[DRY RUN] No migrations were attempted")
            return 0

        services = build_services(settings, uow_factory)
        batch = await services.orchestrator.retry_failed(owner)
        print_summary(batch)

        code = exit_code_for(batch)
        if code == 0:
            logger.info("cli.success", processed=batch.processed)
        elif code == 2:
            logger.warning("cli.partial_success", completed=batch.completed, failed=batch.failed)
        else:
            logger.error("cli.failure", failed=batch.failed, blocked=batch.blocked)
        return code

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nRetry interrupted by user", file=sys.stderr)
        return 130  # Standard exit code for SIGINT

    except Exception as e:
        logger.error(
            "cli.unexpected_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
