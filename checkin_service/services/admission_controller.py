"""
Capacity admission control for session check-ins.

A reservation is a provisional +1 on a session's occupancy counter. It is
decided in two atomic steps that must agree:

1. Redis gate: a Lua script compares the cached counter with the capacity and
   increments it in the same server-side step, tagging the increment with a
   per-reservation marker key so it can be released exactly once.
2. Durable commit: a single conditional UPDATE on ``sessions.check_ins_count``
   that only matches while the session is under capacity.

If Redis is unavailable the conditional UPDATE alone decides. The database
counter is therefore always the authority; the Redis counter only lets a full
session reject scans without touching the database row lock.

The marker lives until the check-in row is committed (``confirm_slot``) or the
reservation is released, so reconciliation can tell a leaked unit from one
that is still in flight.

Counter mutation lives here and nowhere else: reserve, release and reconcile.
"""

import logging
import math
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

import redis
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from checkin_service import crud
from checkin_service.core.clock import utcnow
from checkin_service.core.config import settings
from checkin_service.core.exceptions import AdmissionFailedError, EntityNotFoundError
from checkin_service.db.redis import CacheCircuitBreaker, cache_key
from checkin_service.models.check_in import CheckIn
from checkin_service.models.session import Session as SessionModel
from checkin_service.schemas.check_in import (
    CapacityStatus,
    ReconciliationReport,
    SessionReconciliation,
)
from checkin_service.services.cache_facade import CacheFacade

logger = logging.getLogger(__name__)

COUNTER_NAMESPACE = "counter"
RESERVATION_NAMESPACE = "reservation"

# KEYS: counter, reservation marker
# ARGV: capacity, enforced (1/0), seed count, counter ttl, marker ttl
RESERVE_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if current then
    current = tonumber(current)
else
    current = tonumber(ARGV[3])
end
local capacity = tonumber(ARGV[1])
if ARGV[2] == '1' and capacity > 0 and current >= capacity then
    redis.call('SET', KEYS[1], current, 'EX', ARGV[4])
    return {0, current}
end
current = current + 1
redis.call('SET', KEYS[1], current, 'EX', ARGV[4])
redis.call('SET', KEYS[2], '1', 'EX', ARGV[5])
return {1, current}
"""

# Decrements only if this call removed the marker, so a reservation is released once.
# KEYS: counter, reservation marker
RELEASE_SCRIPT = """
if redis.call('DEL', KEYS[2]) == 0 then
    return -1
end
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current > 0 then
    return redis.call('DECR', KEYS[1])
end
return 0
"""

# Floor-at-zero decrement for removals that carry no reservation marker.
# KEYS: counter
DECREMENT_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if not current then
    return -1
end
if tonumber(current) > 0 then
    return redis.call('DECR', KEYS[1])
end
return 0
"""

# KEYS: counter. ARGV: observed value, corrected value, ttl
COMPARE_AND_SET_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    redis.call('SET', KEYS[1], ARGV[2], 'EX', ARGV[3])
    return 1
end
return 0
"""


@dataclass
class Reservation:
    """Outcome of ``reserve_slot``. Pass it back to ``release_slot`` to undo."""

    session_id: str
    token: str = field(default_factory=lambda: uuid.uuid4().hex)
    admitted: bool = False
    count: int = 0
    capacity: int = 0
    via_cache: bool = False
    durable: bool = False
    confirmed: bool = False
    released: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def claim_release(self) -> bool:
        """True exactly once, for the first caller that releases this reservation."""
        with self._lock:
            if self.released:
                return False
            self.released = True
            return True


def build_capacity_status(
    session_id: str,
    capacity: Optional[int],
    count: int,
    enforced: bool,
    near_percent: int = settings.NEAR_CAPACITY_PERCENT,
) -> CapacityStatus:
    capacity = capacity or 0
    if capacity <= 0:
        return CapacityStatus(
            session_id=session_id,
            capacity=0,
            check_ins_count=count,
            remaining=-1,
            percent_full=0,
            is_at_capacity=False,
            is_near_capacity=False,
            capacity_enforced=enforced,
        )
    # Half-up rounding, not banker's rounding
    percent_full = math.floor(count * 100 / capacity + 0.5)
    return CapacityStatus(
        session_id=session_id,
        capacity=capacity,
        check_ins_count=count,
        remaining=max(0, capacity - count),
        percent_full=percent_full,
        is_at_capacity=count >= capacity,
        is_near_capacity=percent_full >= near_percent,
        capacity_enforced=enforced,
    )


class AdmissionController:
    def __init__(
        self,
        cache: CacheFacade,
        clock: Callable[[], datetime] = utcnow,
        counter_ttl: int = settings.CAPACITY_CACHE_TTL_SECONDS,
        marker_ttl: int = settings.RESERVATION_MARKER_TTL_SECONDS,
        batch_size: int = settings.RECONCILE_BATCH_SIZE,
    ):
        self.cache = cache
        self.client: redis.Redis = cache.client
        self.breaker: CacheCircuitBreaker = cache.breaker
        self.clock = clock
        self.counter_ttl = counter_ttl
        self.marker_ttl = marker_ttl
        self.batch_size = batch_size
        # session_id -> over-count seen by the previous pass while the cache was down
        self._suspected: Dict[str, int] = {}
        self._suspected_lock = threading.Lock()

        self._reserve = self.client.register_script(RESERVE_SCRIPT)
        self._release = self.client.register_script(RELEASE_SCRIPT)
        self._decrement = self.client.register_script(DECREMENT_SCRIPT)
        self._compare_and_set = self.client.register_script(COMPARE_AND_SET_SCRIPT)

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    @staticmethod
    def counter_key(session_id: str) -> str:
        return cache_key(COUNTER_NAMESPACE, session_id)

    @staticmethod
    def reservation_key(session_id: str, token: str) -> str:
        return cache_key(RESERVATION_NAMESPACE, session_id, token)

    # ------------------------------------------------------------------
    # Reserve / release
    # ------------------------------------------------------------------

    def reserve_slot(self, db: Session, session_id: str) -> Reservation:
        """
        Atomically take one unit of a session's capacity.

        Returns a Reservation with ``admitted`` False when the session is full;
        the caller must not create a check-in in that case. Raises
        AdmissionFailedError if the database fails, after undoing any Redis
        increment already made.
        """
        row = (
            db.query(
                SessionModel.capacity,
                SessionModel.capacity_enforced,
                SessionModel.check_ins_count,
            )
            .filter(SessionModel.id == session_id)
            .first()
        )
        if row is None:
            raise EntityNotFoundError("Session", session_id)

        reservation = Reservation(session_id=session_id, capacity=row.capacity or 0)

        if self.breaker.allow():
            try:
                admitted, count = self._reserve(
                    keys=[
                        self.counter_key(session_id),
                        self.reservation_key(session_id, reservation.token),
                    ],
                    args=[
                        reservation.capacity,
                        1 if row.capacity_enforced else 0,
                        row.check_ins_count,
                        self.counter_ttl,
                        self.marker_ttl,
                    ],
                )
                self.breaker.record_success()
            except redis.RedisError as exc:
                # Fall through to the database-only path
                self.breaker.record_failure(exc)
            else:
                if not admitted:
                    reservation.count = int(count)
                    logger.warning(
                        "Capacity gate rejected session %s (count=%s capacity=%s)",
                        session_id, count, reservation.capacity,
                    )
                    return reservation
                reservation.via_cache = True

        try:
            count = self._durable_increment(db, session_id)
        except SQLAlchemyError as exc:
            db.rollback()
            self._release_cache(reservation)
            logger.error(
                "Durable reservation failed for session %s: %s", session_id, exc
            )
            raise AdmissionFailedError(session_id) from exc

        if count is None:
            # The database disagrees with the cache; it wins
            self._release_cache(reservation)
            reservation.count = row.check_ins_count
            logger.warning(
                "Session %s is at capacity (%s); reservation rejected",
                session_id, reservation.capacity,
            )
            return reservation

        reservation.admitted = True
        reservation.durable = True
        reservation.count = count
        self.cache.capacity.invalidate(session_id)
        logger.info(
            "Reserved slot for session %s (%s/%s)",
            session_id, count, reservation.capacity or "unlimited",
        )
        return reservation

    def release_slot(
        self, db: Session, session_id: str, reservation: Optional[Reservation] = None
    ) -> bool:
        """
        Give one unit of capacity back.

        With a reservation, only the first release has any effect. Without one
        (removing an existing check-in) the counters are decremented once;
        callers guarantee that by releasing only after their delete succeeded.
        Both counters saturate at zero.
        """
        if reservation is not None:
            if not reservation.admitted or not reservation.claim_release():
                return False
            if reservation.durable:
                self._durable_decrement(db, session_id)
                reservation.durable = False
            self._release_cache(reservation)
        else:
            self._durable_decrement(db, session_id)
            if self.breaker.allow():
                try:
                    self._decrement(keys=[self.counter_key(session_id)])
                    self.breaker.record_success()
                except redis.RedisError as exc:
                    self.breaker.record_failure(exc)

        self.cache.capacity.invalidate(session_id)
        logger.info("Released slot for session %s", session_id)
        return True

    def confirm_slot(self, reservation: Reservation):
        """
        Mark an admitted reservation as backed by a committed check-in row.

        Drops the reservation marker; the counters are left as they are.
        """
        if not reservation.admitted or reservation.confirmed or reservation.released:
            return
        reservation.confirmed = True
        if not reservation.via_cache or not self.breaker.allow():
            return
        try:
            self.client.delete(
                self.reservation_key(reservation.session_id, reservation.token)
            )
            self.breaker.record_success()
        except redis.RedisError as exc:
            # The marker expires on its own; reconciliation only waits longer
            self.breaker.record_failure(exc)

    def _durable_increment(self, db: Session, session_id: str) -> Optional[int]:
        """Conditional +1. Returns the new count, or None when the session is full."""
        result = db.execute(
            update(SessionModel)
            .where(
                SessionModel.id == session_id,
                or_(
                    SessionModel.capacity_enforced.is_(False),
                    SessionModel.capacity.is_(None),
                    SessionModel.capacity <= 0,
                    SessionModel.check_ins_count < SessionModel.capacity,
                ),
            )
            .values(
                check_ins_count=SessionModel.check_ins_count + 1,
                updated_at=self.clock(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            return None
        # Same transaction, so this reads our own increment
        count = (
            db.query(SessionModel.check_ins_count)
            .filter(SessionModel.id == session_id)
            .scalar()
        )
        db.commit()
        return count

    def _durable_decrement(self, db: Session, session_id: str):
        db.execute(
            update(SessionModel)
            .where(SessionModel.id == session_id, SessionModel.check_ins_count > 0)
            .values(
                check_ins_count=SessionModel.check_ins_count - 1,
                updated_at=self.clock(),
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()

    def _release_cache(self, reservation: Reservation):
        if not reservation.via_cache:
            return
        reservation.via_cache = False
        if not self.breaker.allow():
            # The counter key expires on its own and is reseeded from the database
            return
        try:
            if reservation.confirmed:
                # Marker already gone; claim_release kept this to a single call
                self._decrement(keys=[self.counter_key(reservation.session_id)])
            else:
                self._release(
                    keys=[
                        self.counter_key(reservation.session_id),
                        self.reservation_key(reservation.session_id, reservation.token),
                    ]
                )
            self.breaker.record_success()
        except redis.RedisError as exc:
            self.breaker.record_failure(exc)

    # ------------------------------------------------------------------
    # Capacity status
    # ------------------------------------------------------------------

    def get_capacity_status(self, db: Session, session_id: str) -> CapacityStatus:
        def load():
            row = (
                db.query(
                    SessionModel.capacity,
                    SessionModel.capacity_enforced,
                    SessionModel.check_ins_count,
                )
                .filter(SessionModel.id == session_id)
                .first()
            )
            if row is None:
                return None
            return build_capacity_status(
                session_id, row.capacity, row.check_ins_count, row.capacity_enforced
            )

        status = self.cache.capacity.get(session_id, load)
        if status is None:
            raise EntityNotFoundError("Session", session_id)
        return status

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, db: Session) -> ReconciliationReport:
        """
        Recompute every counter from the live check-in rows, then bring the
        Redis counters in line with the database.

        An under-count is always fixed. An over-count may be a reservation
        whose check-in row is not committed yet, so it is only fixed when the
        session has no reservation marker outstanding. While the cache is down
        there are no markers to look at; an over-count is then fixed once two
        consecutive passes have seen the same drift.
        """
        report = ReconciliationReport()
        cache_up = self.breaker.allow()
        with self._suspected_lock:
            previous = self._suspected
        suspected: Dict[str, int] = {}

        last_id = None
        while True:
            page = self._count_page(db, after_id=last_id)
            if not page:
                break
            for session_id, stored, live in page:
                report.checked += 1
                if stored != live:
                    report.sessions.append(
                        self._reconcile_drift(
                            db, session_id, stored, live, cache_up, previous, suspected
                        )
                    )
            last_id = page[-1][0]

        with self._suspected_lock:
            self._suspected = suspected

        report.fixed = sum(1 for s in report.sessions if s.fixed)
        self._reconcile_cache(db, report)

        if report.fixed or report.cache_keys_fixed:
            logger.warning(
                "Reconciliation fixed %s session counters and %s cache counters",
                report.fixed, report.cache_keys_fixed,
            )
        else:
            logger.debug("Reconciliation checked %s sessions, no drift fixed", report.checked)
        return report

    def reconcile_session(self, db: Session, session_id: str) -> SessionReconciliation:
        """Recompute one session's counter now, even with reservations in flight."""
        stored = (
            db.query(SessionModel.check_ins_count)
            .filter(SessionModel.id == session_id)
            .scalar()
        )
        if stored is None:
            raise EntityNotFoundError("Session", session_id)
        live = crud.check_in.count_by_session(db, session_id=session_id)
        if stored == live:
            return SessionReconciliation(session_id=session_id, expected=live, actual=stored, fixed=False)
        result = self._fix_session(db, session_id, stored, live)
        if result.fixed:
            self._set_cache_counter(session_id, live)
        return result

    def _reconcile_drift(
        self,
        db: Session,
        session_id: str,
        stored: int,
        live: int,
        cache_up: bool,
        previous: Dict[str, int],
        suspected: Dict[str, int],
    ) -> SessionReconciliation:
        drift = stored - live
        if drift > 0:
            in_flight = self._has_reservations_in_flight(session_id) if cache_up else None
            if in_flight:
                logger.debug("Session %s has reservations in flight; deferring", session_id)
                return SessionReconciliation(
                    session_id=session_id, expected=live, actual=stored, fixed=False, deferred=True
                )
            if in_flight is None and previous.get(session_id) != drift:
                suspected[session_id] = drift
                return SessionReconciliation(
                    session_id=session_id, expected=live, actual=stored, fixed=False, deferred=True
                )
        return self._fix_session(db, session_id, stored, live)

    def _has_reservations_in_flight(self, session_id: str) -> Optional[bool]:
        """None when the cache cannot answer."""
        try:
            for _ in self.client.scan_iter(
                match=self.reservation_key(session_id, "*"), count=self.batch_size
            ):
                return True
            self.breaker.record_success()
            return False
        except redis.RedisError as exc:
            self.breaker.record_failure(exc)
            return None

    def _count_page(self, db: Session, *, after_id: Optional[str]) -> List[tuple]:
        live_count = (
            select(func.count(CheckIn.id))
            .where(CheckIn.session_id == SessionModel.id)
            .correlate(SessionModel)
            .scalar_subquery()
        )
        query = db.query(SessionModel.id, SessionModel.check_ins_count, live_count)
        if after_id is not None:
            query = query.filter(SessionModel.id > after_id)
        return query.order_by(SessionModel.id).limit(self.batch_size).all()

    def _fix_session(
        self, db: Session, session_id: str, stored: int, live: int
    ) -> SessionReconciliation:
        live_count = (
            select(func.count(CheckIn.id))
            .where(CheckIn.session_id == session_id)
            .scalar_subquery()
        )
        conditions = [
            SessionModel.id == session_id,
            # Skip if a reservation or release landed since we read the row
            SessionModel.check_ins_count == stored,
        ]
        try:
            result = db.execute(
                update(SessionModel)
                .where(*conditions)
                .values(check_ins_count=live_count)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Failed to reconcile session %s: %s", session_id, exc)
            return SessionReconciliation(
                session_id=session_id, expected=live, actual=stored, fixed=False
            )

        fixed = result.rowcount == 1
        if fixed:
            logger.warning(
                "Reconciled session %s counter: stored=%s live=%s", session_id, stored, live
            )
            self.cache.capacity.invalidate(session_id)
        return SessionReconciliation(
            session_id=session_id, expected=live, actual=stored, fixed=fixed
        )

    def _reconcile_cache(self, db: Session, report: ReconciliationReport):
        """Cursor SCAN over counter keys, one MGET and one DB query per batch."""
        if not self.breaker.allow():
            return
        pattern = self.counter_key("*")
        prefix = self.counter_key("")
        try:
            batch: List[str] = []
            for key in self.client.scan_iter(match=pattern, count=self.batch_size):
                batch.append(key)
                if len(batch) >= self.batch_size:
                    self._reconcile_cache_batch(db, batch, prefix, report)
                    batch = []
            if batch:
                self._reconcile_cache_batch(db, batch, prefix, report)
            self.breaker.record_success()
        except redis.RedisError as exc:
            self.breaker.record_failure(exc)

    def _reconcile_cache_batch(
        self, db: Session, keys: List[str], prefix: str, report: ReconciliationReport
    ):
        values = self.client.mget(keys)
        session_ids = [key[len(prefix):] for key in keys]
        stored = dict(
            db.query(SessionModel.id, SessionModel.check_ins_count)
            .filter(SessionModel.id.in_(session_ids))
            .all()
        )
        for key, session_id, cached in zip(keys, session_ids, values):
            if cached is None:
                continue  # expired between SCAN and MGET
            report.cache_keys_checked += 1
            if session_id not in stored:
                self.client.delete(key)
                report.cache_keys_fixed += 1
                continue
            expected = stored[session_id]
            if int(cached) != expected:
                if self._has_reservations_in_flight(session_id) is not False:
                    # The cache runs ahead of the store while a reservation is open
                    continue
                if self._compare_and_set(
                    keys=[key], args=[cached, expected, self.counter_ttl]
                ):
                    report.cache_keys_fixed += 1
                    logger.warning(
                        "Reconciled cache counter %s: cached=%s stored=%s",
                        key, cached, expected,
                    )

    def _set_cache_counter(self, session_id: str, value: int):
        if not self.breaker.allow():
            return
        try:
            self.client.set(self.counter_key(session_id), value, ex=self.counter_ttl)
            self.breaker.record_success()
        except redis.RedisError as exc:
            self.breaker.record_failure(exc)
