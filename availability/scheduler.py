"""In-process trigger for the expired-hold sweep (APScheduler).

Usage from the FastAPI lifespan::

    start_sweep_scheduler(interval_minutes=settings.hold_sweep_interval_minutes)
    ...
    shutdown_sweep_scheduler()
"""

from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from availability.holds import cleanup_expired_temporary_reservations

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "expired_hold_sweep"

_scheduler: Optional[BackgroundScheduler] = None


def expired_hold_sweep_job() -> int:
    result = cleanup_expired_temporary_reservations()
    return result.cleaned_count


def start_sweep_scheduler(interval_minutes: int) -> Optional[BackgroundScheduler]:
    global _scheduler

    if interval_minutes <= 0:
        logger.info("Expired hold sweep disabled")
        return None
    if _scheduler is not None:
        logger.warning("Sweep scheduler is already running")
        return _scheduler

    _scheduler = BackgroundScheduler(timezone="UTC")
    _scheduler.add_job(
        expired_hold_sweep_job,
        trigger=IntervalTrigger(minutes=interval_minutes),
        id=SWEEP_JOB_ID,
        name="Expire stale temporary reservations",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    _scheduler.start()
    logger.info("Sweep scheduler started (every %d minutes)", interval_minutes)
    return _scheduler


def shutdown_sweep_scheduler() -> None:
    global _scheduler

    if _scheduler is None:
        return

    _scheduler.shutdown(wait=False)
    _scheduler = None
    logger.info("Sweep scheduler stopped")


def get_sweep_scheduler() -> Optional[BackgroundScheduler]:
    return _scheduler
