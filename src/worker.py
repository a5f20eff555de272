"""Outbox worker process: dispatcher threads plus a stale-claim sweep."""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from datetime import timedelta

from sqlalchemy.exc import OperationalError

from config import settings
from outbox.dispatcher import DispatcherPool
from outbox.handlers import build_handlers
from outbox.store import OutboxStore
from services.database import check_connection, get_sync_session, run_migrations_sync
from shared.logging import configure_logging

logger = logging.getLogger(__name__)


def run_worker(
    store: OutboxStore,
    pool: DispatcherPool,
    *,
    stale_after: timedelta,
    sweep_interval_seconds: float,
) -> None:
    """Run dispatchers until the pool's stop event is set.

    The calling thread sweeps stale claims every ``sweep_interval_seconds``;
    a failed sweep is retried on the next interval.
    """
    pool.start()
    try:
        while not pool.stop_event.wait(sweep_interval_seconds):
            try:
                store.reclaim_stale(stale_after)
            except OperationalError as exc:
                logger.warning("Stale claim sweep failed: error=%s", exc)
    finally:
        pool.stop(timeout=sweep_interval_seconds)


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Deliver outbox entries")
    parser.add_argument(
        "--workers",
        type=int,
        default=settings.outbox.workers,
        help="Number of dispatcher threads",
    )
    parser.add_argument(
        "--sweep-interval",
        type=float,
        default=settings.celery.reclaim_interval_seconds,
        help="Seconds between stale-claim sweeps",
    )
    parser.add_argument(
        "--migrate",
        action="store_true",
        help="Apply database migrations before starting",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    args = parser.parse_args()

    configure_logging(
        level="DEBUG" if args.verbose else settings.log_level,
        json_output=settings.log_json,
        service="lazyfill-worker",
    )
    if args.migrate:
        run_migrations_sync()
    if not check_connection():
        raise SystemExit("Database is not reachable")

    store = OutboxStore(get_sync_session)
    pool = DispatcherPool(store, build_handlers(), workers=args.workers)

    def _request_stop(signum, frame) -> None:
        logger.info("Stop requested: signal=%s", signum)
        pool.stop_event.set()

    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGTERM, _request_stop)
        signal.signal(signal.SIGINT, _request_stop)

    run_worker(
        store,
        pool,
        stale_after=timedelta(seconds=settings.outbox.stale_after_seconds),
        sweep_interval_seconds=args.sweep_interval,
    )


if __name__ == "__main__":
    main()
