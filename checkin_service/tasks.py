# checkin_service/tasks.py
import logging

from checkin_service.worker import celery_app
from checkin_service.background_tasks import session_lifecycle_tasks, capacity_tasks

logger = logging.getLogger(__name__)


@celery_app.task
def run_lifecycle_cycle():
    """
    Celery task to run one auto-open/auto-end pass over all sessions.
    Returns the ids that changed state.
    """
    result = session_lifecycle_tasks.run_lifecycle_cycle()
    logger.info(
        f"Lifecycle cycle finished: {len(result['opened'])} opened, {len(result['ended'])} ended"
    )
    return result


@celery_app.task
def reconcile_capacity_counters():
    """Celery task to recompute capacity counters from live check-ins."""
    return capacity_tasks.reconcile_capacity_counters()
