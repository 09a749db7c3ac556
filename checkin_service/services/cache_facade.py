"""
Read-through cache for the entities the check-in path touches on every scan.

Values are stored as JSON ``{"data": ..., "cachedAt": <epoch ms>}``. The
wrapper is what marks a lookup as done: ``data: null`` means "we looked and
the entity does not exist", while a missing key means "never looked". That
keeps repeated scans of an unknown badge from hammering the database.

Concurrent misses for the same key inside one process are coalesced into a
single load (see SingleFlight). This does NOT deduplicate across processes;
each worker process may still issue its own load for a cold key.

Redis is never allowed to fail a request: every read and write goes through
the shared circuit breaker and errors are logged and treated as a miss.
"""

import json
import logging
import threading
from concurrent.futures import Future
from typing import Callable, Dict, Generic, Optional, Type, TypeVar

import redis
from pydantic import BaseModel
from sqlalchemy.orm import Session

from checkin_service import crud
from checkin_service.core.clock import epoch_millis
from checkin_service.core.config import settings
from checkin_service.db.redis import CacheCircuitBreaker, cache_breaker, cache_key, redis_client
from checkin_service.schemas.check_in import CapacityStatus
from checkin_service.schemas.participant import Participant
from checkin_service.schemas.session import Session as SessionSchema, SessionStats

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

# Distinguishes "not in cache" from a cached None
_MISS = object()


class SingleFlight:
    """Coalesce concurrent calls for the same key into one execution (per process)."""

    def __init__(self):
        self._lock = threading.Lock()
        self._calls: Dict[str, Future] = {}

    def do(self, key: str, fn: Callable):
        with self._lock:
            future = self._calls.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._calls[key] = future

        if not leader:
            return future.result()

        try:
            result = fn()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._calls.pop(key, None)

    def in_flight(self) -> int:
        with self._lock:
            return len(self._calls)


class EntityCache(Generic[T]):
    """One cached entity type: a key namespace, a schema and a TTL tier."""

    def __init__(
        self,
        client: redis.Redis,
        breaker: CacheCircuitBreaker,
        flights: SingleFlight,
        namespace: str,
        model: Type[T],
        ttl: int,
    ):
        self.client = client
        self.breaker = breaker
        self.flights = flights
        self.namespace = namespace
        self.model = model
        self.ttl = ttl

    def key(self, entity_key: str) -> str:
        return cache_key(self.namespace, entity_key)

    def get(self, entity_key: str, loader: Callable[[], object]) -> Optional[T]:
        """
        Return the cached value, or run ``loader`` once and cache its result.

        ``loader`` returns an ORM row (or anything ``model`` can validate from
        attributes) or None.
        """
        key = self.key(entity_key)
        cached = self._read(key)
        if cached is not _MISS:
            logger.debug("Cache hit: %s", key)
            return cached

        def load() -> Optional[T]:
            logger.debug("Cache miss: %s", key)
            row = loader()
            value = self.model.model_validate(row) if row is not None else None
            self._write(key, value)
            return value

        return self.flights.do(key, load)

    def get_or_compute(
        self, entity_key: str, factory: Callable[[], T], ttl: Optional[int] = None
    ) -> Optional[T]:
        """For aggregates: no sentinel, so a None result is returned but never cached."""
        key = self.key(entity_key)
        cached = self._read(key)
        if cached is not _MISS and cached is not None:
            return cached

        def compute() -> Optional[T]:
            value = factory()
            if value is not None:
                self._write(key, value, ttl)
            return value

        return self.flights.do(key, compute)

    def invalidate(self, *entity_keys: str):
        if not entity_keys or not self.breaker.allow():
            return
        try:
            self.client.delete(*[self.key(k) for k in entity_keys])
            self.breaker.record_success()
        except redis.RedisError as exc:
            self.breaker.record_failure(exc)

    def _read(self, key: str):
        if not self.breaker.allow():
            return _MISS
        try:
            raw = self.client.get(key)
            self.breaker.record_success()
        except redis.RedisError as exc:
            self.breaker.record_failure(exc)
            return _MISS

        if raw is None:
            return _MISS
        try:
            data = json.loads(raw)["data"]
            return self.model.model_validate(data) if data is not None else None
        except (ValueError, KeyError, TypeError) as exc:
            # Corrupt or foreign payload; reload from the database
            logger.warning("Discarding unreadable cache entry %s: %s", key, exc)
            return _MISS

    def _write(self, key: str, value: Optional[T], ttl: Optional[int] = None):
        if not self.breaker.allow():
            return
        payload = {
            "data": value.model_dump(mode="json") if value is not None else None,
            "cachedAt": epoch_millis(),
        }
        try:
            self.client.setex(key, ttl or self.ttl, json.dumps(payload))
            self.breaker.record_success()
        except redis.RedisError as exc:
            self.breaker.record_failure(exc)


class CacheFacade:
    """Per-entity accessors over EntityCache, one instance per process."""

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        breaker: Optional[CacheCircuitBreaker] = None,
        flights: Optional[SingleFlight] = None,
    ):
        self.client = client if client is not None else redis_client
        self.breaker = breaker if breaker is not None else cache_breaker
        self.flights = flights if flights is not None else SingleFlight()

        def tier(namespace, model, ttl):
            return EntityCache(self.client, self.breaker, self.flights, namespace, model, ttl)

        self.sessions = tier("session", SessionSchema, settings.SESSION_CACHE_TTL_SECONDS)
        self.participants = tier(
            "participant", Participant, settings.PARTICIPANT_CACHE_TTL_SECONDS
        )
        self.participants_by_qr = tier(
            "participant:qr", Participant, settings.PARTICIPANT_CACHE_TTL_SECONDS
        )
        self.stats = tier("stats", SessionStats, settings.STATS_CACHE_TTL_SECONDS)
        self.capacity = tier("capacity", CapacityStatus, settings.CAPACITY_CACHE_TTL_SECONDS)

    # --- Sessions ---

    def get_session(self, db: Session, session_id: str) -> Optional[SessionSchema]:
        return self.sessions.get(session_id, lambda: crud.session.get(db, session_id))

    def invalidate_session(self, session_id: str):
        """Call only after the session's durable write has committed."""
        self.sessions.invalidate(session_id)
        self.capacity.invalidate(session_id)
        self.stats.invalidate("sessions")

    def get_session_stats(self, db: Session) -> SessionStats:
        return self.stats.get_or_compute("sessions", lambda: crud.session.get_stats(db))

    # --- Participants ---

    def get_participant(self, db: Session, participant_id: str) -> Optional[Participant]:
        return self.participants.get(
            participant_id, lambda: crud.participant.get(db, participant_id)
        )

    def get_participant_by_qr(self, db: Session, qr_code: str) -> Optional[Participant]:
        return self.participants_by_qr.get(
            qr_code, lambda: crud.participant.get_by_qr_code(db, qr_code=qr_code)
        )

    def invalidate_participant(self, participant_id: str, qr_code: Optional[str] = None):
        self.participants.invalidate(participant_id)
        if qr_code:
            self.participants_by_qr.invalidate(qr_code)
