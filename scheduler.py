"""Background housekeeping: expire idle conversations and report stale drafts."""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

from assembler import ListingAssembler
from config import STALE_DRAFT_HOURS, SWEEP_INTERVAL_MINUTES
from conversation import ConversationStateMachine
from errors import IngestError

logger = logging.getLogger(__name__)

_scheduler: Optional[BackgroundScheduler] = None
_lock = threading.Lock()
_last_result: Optional[dict] = None


def run_sweep(assembler: ListingAssembler,
              conversations: Optional[ConversationStateMachine] = None,
              stale_hours: float = STALE_DRAFT_HOURS) -> dict:
    """One housekeeping pass. Returns a summary dict."""
    global _last_result

    expired = conversations.expire_idle() if conversations is not None else []
    cutoff = (datetime.now(timezone.utc) - timedelta(hours=stale_hours)).isoformat()

    try:
        stale = assembler.stale_drafts(cutoff)
    except IngestError as e:
        logger.error(f"Stale draft lookup failed: {e}")
        stale = []

    pending_ids = set()
    if conversations is not None:
        pending_ids = {r.listing_id for r in conversations.store.snapshot().values()}

    orphaned = [d for d in stale if d.id not in pending_ids]
    for draft in orphaned:
        logger.warning(
            f"Draft {draft.id} ({draft.title!r}, {draft.source_url}) created {draft.created_at} "
            f"has no active conversation and needs manual recovery"
        )

    result = {
        "expired_conversations": len(expired),
        "stale_drafts": [d.id for d in orphaned],
        "finished_at": datetime.now(timezone.utc).isoformat(),
    }
    _last_result = result
    return result


def start_scheduler(assembler: ListingAssembler,
                    conversations: Optional[ConversationStateMachine] = None,
                    interval_minutes: float = SWEEP_INTERVAL_MINUTES,
                    stale_hours: float = STALE_DRAFT_HOURS):
    """Start the background scheduler."""
    global _scheduler

    with _lock:
        if _scheduler and _scheduler.running:
            _scheduler.shutdown(wait=False)

        _scheduler = BackgroundScheduler()
        _scheduler.add_job(
            run_sweep,
            "interval",
            minutes=interval_minutes,
            kwargs={"assembler": assembler, "conversations": conversations, "stale_hours": stale_hours},
            id="sweep_job",
            replace_existing=True,
        )
        _scheduler.start()
        logger.info(f"Scheduler started: sweeping every {interval_minutes} min")


def stop_scheduler():
    global _scheduler

    with _lock:
        if _scheduler and _scheduler.running:
            _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Scheduler stopped")


def get_status() -> dict:
    running = _scheduler is not None and _scheduler.running
    status = {"running": running, "last_result": _last_result}
    if running:
        job = _scheduler.get_job("sweep_job")
        if job and job.next_run_time:
            status["next_run"] = job.next_run_time.isoformat()
    return status
