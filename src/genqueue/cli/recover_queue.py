"""CLI command for recovering queue items abandoned by a crashed worker.

Runs the same sweep the queue worker runs at startup, without starting the
server.

Usage:
    python -m genqueue.cli.recover_queue [OPTIONS]

Examples:
    # Reset abandoned items and remove stale locks
    python -m genqueue.cli.recover_queue

    # Show what would be reset (no database writes)
    python -m genqueue.cli.recover_queue --dry-run

    # Also trim terminal queue history
    python -m genqueue.cli.recover_queue --cleanup-history

    # Verbose logging
    python -m genqueue.cli.recover_queue -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from genqueue.core import timezone  # noqa: F401
from genqueue.core.config import Settings, configure_logging
from genqueue.core.database import setup_db_session
from genqueue.repositories.queue import QUEUE_HISTORY_RETENTION
from genqueue.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Reset queue items left in 'processing' by a crashed worker",
        epilog="Items with a stale lock or no lock at all go back to 'queued'",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report the recovery plan without database writes",
    )

    parser.add_argument(
        "--cleanup-history",
        action="store_true",
        help=f"Keep only the {QUEUE_HISTORY_RETENTION} most recent terminal queue rows",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    logger.info("cli.started", dry_run=args.dry_run, cleanup_history=args.cleanup_history)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    try:
        async with await uow_factory() as uow:
            plan = await uow.locks.plan_stale_recovery()

            print("\n" + "=" * 60)
            print("Queue Recovery Summary")
            print("=" * 60)
            print(f"Items with stale locks: {len(plan.items_to_reset) - len(plan.orphaned_item_ids)}")
            print(f"Processing items without a lock: {len(plan.orphaned_item_ids)}")
            print(f"Generations to reset: {len(plan.generation_ids)}")

            if args.dry_run:
                for item_id in plan.items_to_reset:
                    print(f"  - {item_id}")
                print("\n[DRY RUN] No changes were persisted to database")
                print("=" * 60 + "\n")
                return 0

            reset_count = await uow.locks.reset_stale_processing_items()
            stale_locks = await uow.locks.cleanup_stale_locks()
            print(f"Items reset to queued: {reset_count}")
            print(f"Stale locks removed: {stale_locks}")

            if args.cleanup_history:
                trimmed = await uow.queue.cleanup_queue()
                print(f"History rows removed: {trimmed}")

            print("=" * 60 + "\n")

        logger.info("cli.success", items_reset=reset_count, stale_locks_removed=stale_locks)
        return 0

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nRecovery interrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        logger.error(
            "cli.unexpected_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1

    finally:
        engine = session_factory.kw.get("bind")
        if engine is not None:
            await engine.dispose()


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
