# checkin_service/services/providers.py
"""
Process-wide service instances.

Each factory is cached so request handlers, APScheduler jobs and Celery tasks
in the same process share one cache facade (and therefore one single-flight
map and one circuit breaker). Tests replace these through
``app.dependency_overrides`` or ``cache_clear()``.
"""

import logging
from functools import lru_cache

from checkin_service.core.config import settings
from checkin_service.db.redis import redis_client
from checkin_service.services.admission_controller import AdmissionController
from checkin_service.services.cache_facade import CacheFacade
from checkin_service.services.check_in_service import CheckInService
from checkin_service.services.event_sink import (
    InProcessEventSink,
    LifecycleEventSink,
    RedisEventSink,
)
from checkin_service.services.lifecycle_scheduler import SessionLifecycleScheduler

logger = logging.getLogger(__name__)


@lru_cache()
def get_cache_facade() -> CacheFacade:
    return CacheFacade(client=redis_client)


@lru_cache()
def get_event_sink() -> LifecycleEventSink:
    if settings.EVENT_SINK_BACKEND == "memory":
        logger.info("Using in-process event sink")
        return InProcessEventSink()
    return RedisEventSink(redis_client, settings.LIFECYCLE_EVENTS_CHANNEL)


@lru_cache()
def get_admission_controller() -> AdmissionController:
    return AdmissionController(get_cache_facade())


@lru_cache()
def get_lifecycle_scheduler() -> SessionLifecycleScheduler:
    return SessionLifecycleScheduler(get_cache_facade(), get_event_sink())


@lru_cache()
def get_check_in_service() -> CheckInService:
    return CheckInService(
        get_cache_facade(), get_admission_controller(), get_event_sink()
    )
