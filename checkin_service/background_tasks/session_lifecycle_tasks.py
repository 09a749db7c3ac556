# checkin_service/background_tasks/session_lifecycle_tasks.py
"""
Background tasks for session lifecycle automation.

Run periodically by the in-process APScheduler (see checkin_service/scheduler.py)
and exposed as Celery tasks for the worker queue:
- auto_open_sessions(): every SESSION_CHECK_INTERVAL_SECONDS
- auto_end_sessions(): every SESSION_CHECK_INTERVAL_SECONDS
"""

import logging

from checkin_service.db.session import SessionLocal
from checkin_service.services.providers import get_lifecycle_scheduler

logger = logging.getLogger(__name__)


def auto_open_sessions():
    """
    Background task: open SCHEDULED sessions that reached their auto-open time.
    """
    db = SessionLocal()
    try:
        opened = get_lifecycle_scheduler().run_auto_open(db)
        return len(opened)
    except Exception as e:
        logger.error(f"Error in auto_open_sessions: {e}", exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


def auto_end_sessions():
    """
    Background task: end sessions past their end time plus grace.
    """
    db = SessionLocal()
    try:
        ended = get_lifecycle_scheduler().run_auto_end(db)
        return len(ended)
    except Exception as e:
        logger.error(f"Error in auto_end_sessions: {e}", exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


def run_lifecycle_cycle():
    """Auto-open then auto-end in one pass. Used by the force-cycle endpoint."""
    db = SessionLocal()
    try:
        return get_lifecycle_scheduler().run_cycle(db)
    finally:
        db.close()
