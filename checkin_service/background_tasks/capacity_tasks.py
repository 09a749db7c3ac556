# checkin_service/background_tasks/capacity_tasks.py
"""
Periodic capacity counter reconciliation.

Heals counters that drifted because a process died between reserving a slot
and persisting (or releasing) the check-in.
"""

import logging

from checkin_service.db.session import SessionLocal
from checkin_service.services.providers import get_admission_controller

logger = logging.getLogger(__name__)


def reconcile_capacity_counters():
    """
    Background task: recompute session counters from live check-ins.

    Should run every RECONCILE_INTERVAL_SECONDS.
    """
    db = SessionLocal()
    try:
        report = get_admission_controller().reconcile(db)
        return report.model_dump()
    except Exception as e:
        logger.error(f"Error in reconcile_capacity_counters: {e}", exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()
