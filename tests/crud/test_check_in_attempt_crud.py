from datetime import datetime, timedelta

from checkin_service import crud
from checkin_service.schemas.check_in_attempt import CheckInAttemptCreate
from tests.utils.factories import create_participant, create_session


def record(db, participant, session, status, at):
    return crud.check_in_attempt.create(
        db,
        obj_in=CheckInAttemptCreate(
            participant_id=participant.id, session_id=session.id, status=status
        ),
        extra={"attempt_time": at},
    )


def test_attempts_are_listed_newest_first(db_session):
    session = create_session(db_session)
    participant = create_participant(db_session)
    start = datetime(2025, 6, 1, 9, 0)
    older = record(db_session, participant, session, "declined", start)
    newer = record(db_session, participant, session, "failed", start + timedelta(minutes=5))

    attempts = crud.check_in_attempt.get_multi_filtered(db_session, session_id=session.id)

    assert [a.id for a in attempts] == [newer.id, older.id]
    assert older.id.startswith("att_")


def test_stats_count_by_status(db_session):
    session = create_session(db_session)
    other = create_session(db_session, name="Other")
    participant = create_participant(db_session)
    now = datetime(2025, 6, 1, 9, 0)
    record(db_session, participant, session, "declined", now)
    record(db_session, participant, session, "failed", now)
    record(db_session, participant, other, "failed", now)

    assert crud.check_in_attempt.get_stats(db_session).failed == 2
    scoped = crud.check_in_attempt.get_stats(db_session, session_id=session.id)
    assert (scoped.total, scoped.declined, scoped.failed) == (2, 1, 1)
