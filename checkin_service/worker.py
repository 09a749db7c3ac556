from celery import Celery
from checkin_service.core.config import settings

# Initialize Celery
celery_app = Celery("worker", broker=settings.REDIS_URL, backend=settings.REDIS_URL)

# Tell Celery where to find our tasks
celery_app.conf.imports = ("checkin_service.tasks",)

# Beat runs the same upkeep as the in-process scheduler for deployments
# that disable SCHEDULER_ENABLED on the API pods.
celery_app.conf.beat_schedule = {
    "session-lifecycle-cycle": {
        "task": "checkin_service.tasks.run_lifecycle_cycle",
        "schedule": float(settings.SESSION_CHECK_INTERVAL_SECONDS),
    },
    "reconcile-capacity-counters": {
        "task": "checkin_service.tasks.reconcile_capacity_counters",
        "schedule": float(settings.RECONCILE_INTERVAL_SECONDS),
    },
}
