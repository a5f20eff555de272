"""Celery entry point for periodic outbox maintenance."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from celery import Celery

from config import settings
from outbox.dispatcher import OutboxDispatcher
from outbox.handlers import build_handlers
from outbox.store import OutboxStore
from services.database import get_sync_session

LOGGER = logging.getLogger(__name__)

RECLAIM_TASK_NAME = "outbox.reclaim_stale"
DRAIN_TASK_NAME = "outbox.drain"

celery_app = Celery("lazyfill.outbox")
celery_app.conf.broker_url = settings.celery.broker_url
celery_app.conf.result_backend = settings.celery.result_backend
celery_app.conf.task_default_queue = settings.celery.queue_name
celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.enable_utc = True
celery_app.conf.timezone = "UTC"

beat_schedule = celery_app.conf.get("beat_schedule")
if beat_schedule is None:
    beat_schedule = {}
beat_schedule[RECLAIM_TASK_NAME] = {
    "task": RECLAIM_TASK_NAME,
    "schedule": settings.celery.reclaim_interval_seconds,
}
beat_schedule[DRAIN_TASK_NAME] = {
    "task": DRAIN_TASK_NAME,
    "schedule": settings.celery.drain_interval_seconds,
}
celery_app.conf.beat_schedule = beat_schedule


def _session_factory():
    """Return a new synchronous SQLAlchemy session for outbox tasks."""
    return get_sync_session()


def reclaim_stale_entries(store: OutboxStore, older_than_seconds: float) -> dict[str, Any]:
    """Run one stale-claim sweep and summarize it."""
    result = store.reclaim_stale(timedelta(seconds=older_than_seconds))
    return {
        "requeued": len(result.requeued),
        "abandoned": len(result.abandoned),
    }


def drain_entries(dispatcher: OutboxDispatcher, limit: int) -> dict[str, int]:
    """Deliver up to ``limit`` entries and summarize the outcomes."""
    result = dispatcher.drain(limit)
    return {
        "processed": result.processed,
        "done": result.done,
        "retried": result.retried,
        "failed": result.failed,
        "lost": result.lost,
    }


@celery_app.task(name=RECLAIM_TASK_NAME)
def reclaim_stale(older_than_seconds: float | None = None) -> dict[str, Any]:
    """Celery beat job that releases claims held past the stale threshold."""
    threshold = (
        older_than_seconds
        if older_than_seconds is not None
        else settings.outbox.stale_after_seconds
    )
    summary = reclaim_stale_entries(OutboxStore(_session_factory), threshold)
    if summary["requeued"] or summary["abandoned"]:
        LOGGER.info("Stale outbox sweep: %s", summary)
    return summary


@celery_app.task(name=DRAIN_TASK_NAME, acks_late=True)
def drain(limit: int | None = None) -> dict[str, int]:
    """Celery beat job that delivers a bounded batch of pending entries."""
    dispatcher = OutboxDispatcher(OutboxStore(_session_factory), build_handlers(), name="celery-drain")
    return drain_entries(dispatcher, limit or settings.outbox.drain_batch_size)
