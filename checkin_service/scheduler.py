# checkin_service/scheduler.py
"""
Background task scheduler for session lifecycle and capacity upkeep.

Uses APScheduler to run periodic background jobs for:
- Opening sessions shortly before they start
- Ending sessions after their end time (plus grace)
- Reconciling capacity counters with live check-ins

Every process that serves check-ins may run its own scheduler. Jobs are safe
to run concurrently across processes because lifecycle transitions and
counter fixes are conditional writes.
"""

import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.schedulers.base import STATE_PAUSED, STATE_RUNNING

from checkin_service.background_tasks.session_lifecycle_tasks import (
    auto_end_sessions,
    auto_open_sessions,
)
from checkin_service.background_tasks.capacity_tasks import reconcile_capacity_counters
from checkin_service.core.config import settings

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = None

_STATE_NAMES = {STATE_RUNNING: "running", STATE_PAUSED: "paused"}


def _on_job_error(event):
    """Log scheduler job errors with full context."""
    exc = event.exception
    logger.error(
        "Scheduled job FAILED: job_id=%s error=%s",
        event.job_id, exc,
        exc_info=(type(exc), exc, None) if exc else None,
    )
    if event.traceback:
        logger.error("Traceback for job %s:\n%s", event.job_id, event.traceback)


def _on_job_missed(event):
    """Log when a scheduled job misses its execution window."""
    logger.warning(
        "Scheduled job MISSED: job_id=%s scheduled_run_time=%s",
        event.job_id,
        event.scheduled_run_time,
    )


def init_scheduler():
    """
    Initialize the background scheduler with all periodic tasks.

    This is called once when the application starts up.
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already initialized")
        return scheduler

    interval = settings.SESSION_CHECK_INTERVAL_SECONDS
    scheduler = BackgroundScheduler(
        timezone="UTC",
        job_defaults={
            'coalesce': True,  # Combine missed executions
            'max_instances': 1,  # Only one instance of each job at a time
            'misfire_grace_time': interval,
        }
    )

    scheduler.add_job(
        func=auto_open_sessions,
        trigger=IntervalTrigger(seconds=interval),
        id='auto_open_sessions',
        name='Auto-Open Scheduled Sessions',
        replace_existing=True
    )
    logger.info(f"Scheduled job: auto_open_sessions (every {interval}s)")

    if settings.AUTO_END_ENABLED:
        scheduler.add_job(
            func=auto_end_sessions,
            trigger=IntervalTrigger(seconds=interval),
            id='auto_end_sessions',
            name='Auto-End Finished Sessions',
            replace_existing=True
        )
        logger.info(f"Scheduled job: auto_end_sessions (every {interval}s)")
    else:
        logger.info("Auto-end disabled; auto_end_sessions not scheduled")

    scheduler.add_job(
        func=reconcile_capacity_counters,
        trigger=IntervalTrigger(seconds=settings.RECONCILE_INTERVAL_SECONDS),
        id='reconcile_capacity_counters',
        name='Reconcile Session Capacity Counters',
        replace_existing=True
    )
    logger.info(
        f"Scheduled job: reconcile_capacity_counters (every {settings.RECONCILE_INTERVAL_SECONDS}s)"
    )

    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    scheduler.add_listener(_on_job_missed, EVENT_JOB_MISSED)

    scheduler.start()
    logger.info("Background scheduler started successfully")

    return scheduler


def shutdown_scheduler():
    """
    Gracefully shutdown the scheduler.

    This is called when the application shuts down.
    """
    global scheduler

    if scheduler is not None:
        scheduler.shutdown(wait=True)
        logger.info("Background scheduler shutdown complete")
        scheduler = None


def pause_scheduler() -> bool:
    """
    Stop running jobs without tearing the scheduler down.

    Returns False when there is no running scheduler to pause.
    """
    if scheduler is None or scheduler.state != STATE_RUNNING:
        return False
    scheduler.pause()
    logger.warning("Background scheduler paused; lifecycle jobs will not run")
    return True


def resume_scheduler() -> bool:
    if scheduler is None or scheduler.state != STATE_PAUSED:
        return False
    scheduler.resume()
    logger.info("Background scheduler resumed")
    return True


def get_scheduler_status():
    """
    Get the current status of all scheduled jobs.

    Returns:
        Dict with scheduler state and job details (next run time, trigger).
    """
    if scheduler is None:
        return {"status": "not_initialized", "jobs": []}

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger)
        })

    return {
        "status": _STATE_NAMES.get(scheduler.state, "stopped"),
        "jobs": jobs
    }
