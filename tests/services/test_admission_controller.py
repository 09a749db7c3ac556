import threading
from unittest.mock import patch

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from checkin_service import crud
from checkin_service.core.exceptions import AdmissionFailedError, EntityNotFoundError
from checkin_service.db.redis import CacheCircuitBreaker
from checkin_service.db.session import SessionLocal
from checkin_service.models.session import Session as SessionModel
from checkin_service.services.admission_controller import (
    AdmissionController,
    build_capacity_status,
)
from checkin_service.services.cache_facade import CacheFacade
from tests.utils.factories import create_participant, create_session, insert_raw_check_in


def stored_count(db, session_id):
    db.expire_all()
    return (
        db.query(SessionModel.check_ins_count)
        .filter(SessionModel.id == session_id)
        .scalar()
    )


def test_reserve_increments_store_and_cache(admission, db_session, fake_redis):
    session = create_session(db_session, capacity=10)

    reservation = admission.reserve_slot(db_session, session.id)

    assert reservation.admitted
    assert reservation.via_cache
    assert reservation.count == 1
    assert stored_count(db_session, session.id) == 1
    assert fake_redis.get(admission.counter_key(session.id)) == "1"


def test_reserve_rejects_when_full(admission, db_session):
    session = create_session(db_session, capacity=1)

    first = admission.reserve_slot(db_session, session.id)
    second = admission.reserve_slot(db_session, session.id)

    assert first.admitted
    assert not second.admitted
    assert second.capacity == 1
    assert stored_count(db_session, session.id) == 1


def test_reserve_unknown_session(admission, db_session):
    with pytest.raises(EntityNotFoundError):
        admission.reserve_slot(db_session, "ses_missing")


def test_unlimited_sessions_still_count(admission, db_session):
    session = create_session(db_session, capacity=0)

    for _ in range(3):
        assert admission.reserve_slot(db_session, session.id).admitted

    status = admission.get_capacity_status(db_session, session.id)
    assert status.check_ins_count == 3
    assert status.remaining == -1
    assert not status.is_at_capacity


def test_soft_limit_allows_overflow(admission, db_session):
    session = create_session(db_session, capacity=1, capacity_enforced=False)

    assert admission.reserve_slot(db_session, session.id).admitted
    assert admission.reserve_slot(db_session, session.id).admitted
    assert stored_count(db_session, session.id) == 2


def test_release_is_symmetric_and_idempotent(admission, db_session, fake_redis):
    session = create_session(db_session, capacity=5)
    reservation = admission.reserve_slot(db_session, session.id)

    assert admission.release_slot(db_session, session.id, reservation)
    assert not admission.release_slot(db_session, session.id, reservation)

    assert stored_count(db_session, session.id) == 0
    assert fake_redis.get(admission.counter_key(session.id)) == "0"


def test_release_without_reservation_saturates_at_zero(admission, db_session):
    session = create_session(db_session, capacity=5)

    admission.release_slot(db_session, session.id)

    assert stored_count(db_session, session.id) == 0


def test_rejected_reservation_cannot_be_released(admission, db_session):
    session = create_session(db_session, capacity=1)
    admission.reserve_slot(db_session, session.id)
    rejected = admission.reserve_slot(db_session, session.id)

    assert not admission.release_slot(db_session, session.id, rejected)
    assert stored_count(db_session, session.id) == 1


def test_store_wins_when_cache_counter_is_low(admission, db_session, fake_redis):
    session = create_session(db_session, capacity=1)
    admission.reserve_slot(db_session, session.id)
    # Cache drifted below the durable counter
    fake_redis.set(admission.counter_key(session.id), 0)

    reservation = admission.reserve_slot(db_session, session.id)

    assert not reservation.admitted
    assert stored_count(db_session, session.id) == 1
    # The provisional cache increment was rolled back
    assert fake_redis.get(admission.counter_key(session.id)) == "0"


def test_durable_failure_releases_cache_increment(admission, db_session, fake_redis):
    session = create_session(db_session, capacity=5)
    error = OperationalError("UPDATE sessions", {}, Exception("disk I/O error"))

    with patch.object(admission, "_durable_increment", side_effect=error):
        with pytest.raises(AdmissionFailedError):
            admission.reserve_slot(db_session, session.id)

    assert fake_redis.get(admission.counter_key(session.id)) == "0"
    assert stored_count(db_session, session.id) == 0


def test_store_only_mode_when_cache_disabled(fake_redis, db_session):
    cache = CacheFacade(client=fake_redis, breaker=CacheCircuitBreaker(enabled=False))
    admission = AdmissionController(cache)
    session = create_session(db_session, capacity=2)

    results = [admission.reserve_slot(db_session, session.id).admitted for _ in range(3)]

    assert results == [True, True, False]
    assert fake_redis.keys("*") == []


def test_capacity_invariant_under_concurrent_reservations(admission, db_session):
    session = create_session(db_session, capacity=3)
    session_id = session.id
    admitted = []
    lock = threading.Lock()

    def worker():
        db = SessionLocal()
        try:
            reservation = admission.reserve_slot(db, session_id)
            with lock:
                admitted.append(reservation.admitted)
        finally:
            db.close()

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert admitted.count(True) == 3
    assert admitted.count(False) == 7
    assert stored_count(db_session, session_id) == 3


def test_reconcile_heals_drift_in_both_directions(admission, db_session):
    low = create_session(db_session, name="Under-counted", capacity=10)
    high = create_session(db_session, name="Over-counted", capacity=10)
    for name in ("Ada Lovelace", "Alan Turing"):
        insert_raw_check_in(db_session, create_participant(db_session, name=name), low)
    db_session.execute(
        update(SessionModel).where(SessionModel.id == high.id).values(check_ins_count=5)
    )
    db_session.commit()

    report = admission.reconcile(db_session)

    assert report.fixed == 2
    assert stored_count(db_session, low.id) == 2
    assert stored_count(db_session, high.id) == 0
    by_id = {s.session_id: s for s in report.sessions}
    assert by_id[low.id].expected == 2 and by_id[low.id].actual == 0
    assert by_id[high.id].expected == 0 and by_id[high.id].actual == 5


def test_reconcile_fixes_stale_counter_with_default_settings(cache, db_session):
    admission = AdmissionController(cache)
    session = create_session(db_session, capacity=10)
    db_session.execute(
        update(SessionModel).where(SessionModel.id == session.id).values(check_ins_count=4)
    )
    db_session.commit()

    report = admission.reconcile(db_session)

    assert report.fixed == 1
    assert stored_count(db_session, session.id) == 0


def test_reconcile_defers_while_reservation_in_flight(admission, db_session, fake_redis):
    session = create_session(db_session, capacity=10)
    reservation = admission.reserve_slot(db_session, session.id)

    # Slot taken but the check-in row is not written yet
    deferred = admission.reconcile(db_session)

    assert deferred.fixed == 0
    assert deferred.sessions[0].deferred is True
    assert stored_count(db_session, session.id) == 1

    # The request died before writing its row and the marker expired
    fake_redis.delete(admission.reservation_key(session.id, reservation.token))
    healed = admission.reconcile(db_session)

    assert healed.fixed == 1
    assert stored_count(db_session, session.id) == 0


def test_cache_counter_left_alone_while_reservation_in_flight(
    admission, db_session, fake_redis
):
    session = create_session(db_session, capacity=10)
    reservation = admission.reserve_slot(db_session, session.id)
    fake_redis.set(admission.counter_key(session.id), 5)

    admission.reconcile(db_session)
    assert fake_redis.get(admission.counter_key(session.id)) == "5"

    admission.confirm_slot(reservation)
    report = admission.reconcile(db_session)

    # No row was ever written, so both counters drop to zero
    assert report.fixed == 1
    assert report.cache_keys_fixed == 1
    assert fake_redis.get(admission.counter_key(session.id)) == "0"


def test_confirmed_reservation_drops_marker(admission, db_session, fake_redis):
    session = create_session(db_session, capacity=10)
    reservation = admission.reserve_slot(db_session, session.id)
    marker = admission.reservation_key(session.id, reservation.token)
    assert fake_redis.exists(marker)

    admission.confirm_slot(reservation)

    assert not fake_redis.exists(marker)
    assert fake_redis.get(admission.counter_key(session.id)) == "1"
    # Releasing a confirmed slot still gives the unit back exactly once
    assert admission.release_slot(db_session, session.id, reservation)
    assert fake_redis.get(admission.counter_key(session.id)) == "0"
    assert stored_count(db_session, session.id) == 0


def test_reconcile_without_cache_fixes_over_count_on_second_pass(fake_redis, db_session):
    cache = CacheFacade(client=fake_redis, breaker=CacheCircuitBreaker(enabled=False))
    admission = AdmissionController(cache)
    session = create_session(db_session, capacity=10)
    db_session.execute(
        update(SessionModel).where(SessionModel.id == session.id).values(check_ins_count=3)
    )
    db_session.commit()

    first = admission.reconcile(db_session)
    second = admission.reconcile(db_session)

    assert first.fixed == 0 and first.sessions[0].deferred is True
    assert second.fixed == 1
    assert stored_count(db_session, session.id) == 0


def test_reconcile_without_cache_restarts_when_drift_changes(fake_redis, db_session):
    cache = CacheFacade(client=fake_redis, breaker=CacheCircuitBreaker(enabled=False))
    admission = AdmissionController(cache)
    session = create_session(db_session, capacity=10)
    db_session.execute(
        update(SessionModel).where(SessionModel.id == session.id).values(check_ins_count=3)
    )
    db_session.commit()

    admission.reconcile(db_session)
    db_session.execute(
        update(SessionModel).where(SessionModel.id == session.id).values(check_ins_count=4)
    )
    db_session.commit()

    assert admission.reconcile(db_session).fixed == 0
    assert admission.reconcile(db_session).fixed == 1


def test_counters_converge_while_check_ins_stream_in(
    check_in_service, admission, db_session
):
    session = create_session(db_session, capacity=0)
    session_id = session.id
    participant_ids = [
        create_participant(db_session, name=f"Guest{i} Example").id for i in range(20)
    ]
    errors = []
    done = threading.Event()

    def stream():
        db = SessionLocal()
        try:
            for participant_id in participant_ids:
                check_in_service.check_in(
                    db, participant_id=participant_id, session_id=session_id
                )
        except Exception as exc:
            errors.append(exc)
        finally:
            db.close()
            done.set()

    worker = threading.Thread(target=stream)
    worker.start()
    passes = 0
    while not done.is_set() or passes == 0:
        admission.reconcile(db_session)
        passes += 1
    worker.join(timeout=60)

    final = admission.reconcile(db_session)

    assert errors == []
    assert final.fixed == 0
    assert stored_count(db_session, session_id) == len(participant_ids)
    assert crud.check_in.count_by_session(db_session, session_id=session_id) == len(
        participant_ids
    )


def test_reconcile_fixes_cache_counters(admission, db_session, fake_redis):
    session = create_session(db_session, capacity=10)
    insert_raw_check_in(db_session, create_participant(db_session), session)
    db_session.execute(
        update(SessionModel).where(SessionModel.id == session.id).values(check_ins_count=1)
    )
    db_session.commit()
    fake_redis.set(admission.counter_key(session.id), 7)
    fake_redis.set(admission.counter_key("ses_deleted"), 3)

    report = admission.reconcile(db_session)

    assert fake_redis.get(admission.counter_key(session.id)) == "1"
    assert fake_redis.get(admission.counter_key("ses_deleted")) is None
    assert report.cache_keys_checked == 2
    assert report.cache_keys_fixed == 2


def test_reconcile_pages_through_sessions(cache, db_session):
    admission = AdmissionController(cache, batch_size=2)
    sessions = [create_session(db_session, name=f"S{i}") for i in range(5)]
    for s in sessions:
        db_session.execute(
            update(SessionModel).where(SessionModel.id == s.id).values(check_ins_count=1)
        )
    db_session.commit()

    report = admission.reconcile(db_session)

    assert report.checked == 5
    assert report.fixed == 5


def test_capacity_status_is_cached_and_invalidated(admission, db_session):
    session = create_session(db_session, capacity=4)

    assert admission.get_capacity_status(db_session, session.id).check_ins_count == 0
    admission.reserve_slot(db_session, session.id)
    # Reservation invalidates the capacity tier
    assert admission.get_capacity_status(db_session, session.id).check_ins_count == 1


@pytest.mark.parametrize(
    "capacity,count,remaining,percent,at_capacity,near",
    [
        (10, 8, 2, 80, False, True),
        (10, 7, 3, 70, False, False),
        (5, 5, 0, 100, True, True),
        (8, 1, 7, 13, False, False),
        (3, 4, 0, 133, True, True),
    ],
)
def test_build_capacity_status(capacity, count, remaining, percent, at_capacity, near):
    status = build_capacity_status("ses_1", capacity, count, True, near_percent=80)

    assert status.remaining == remaining
    assert status.percent_full == percent
    assert status.is_at_capacity is at_capacity
    assert status.is_near_capacity is near


def test_build_capacity_status_unlimited():
    status = build_capacity_status("ses_1", None, 12, True)

    assert status.capacity == 0
    assert status.remaining == -1
    assert status.percent_full == 0
