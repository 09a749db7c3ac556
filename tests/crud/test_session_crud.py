from datetime import datetime, timedelta
from unittest.mock import MagicMock

from checkin_service import crud
from checkin_service.crud.crud_session import CRUDSession
from checkin_service.models.session import Session as SessionModel, SessionStatus
from checkin_service.schemas.session import SessionCreate
from tests.utils.factories import create_session

session_crud = CRUDSession(SessionModel)


def test_create_session():
    """
    Tests the inherited create method for Sessions.
    """
    db_session = MagicMock()
    start = datetime(2025, 6, 1, 9, 0)
    session_in = SessionCreate(
        name="Opening Keynote",
        start_time=start,
        end_time=start + timedelta(hours=1),
        capacity=200,
    )

    session_crud.create(db=db_session, obj_in=session_in)

    db_session.add.assert_called_once()
    db_session.commit.assert_called_once()
    db_session.refresh.assert_called_once()


def test_auto_open_candidates_exclude_finished_and_open(db_session):
    now = datetime.utcnow()
    upcoming = create_session(
        db_session, start_time=now + timedelta(hours=1), status=SessionStatus.SCHEDULED
    )
    create_session(
        db_session, start_time=now - timedelta(hours=3), status=SessionStatus.SCHEDULED
    )
    create_session(db_session, status=SessionStatus.OPEN)

    candidates = crud.session.get_auto_open_candidates(db_session, now=now)

    assert [s.id for s in candidates] == [upcoming.id]


def test_auto_end_candidates_include_unopened_sessions(db_session):
    now = datetime.utcnow()
    past_open = create_session(
        db_session, start_time=now - timedelta(hours=3), status=SessionStatus.OPEN
    )
    past_scheduled = create_session(
        db_session, start_time=now - timedelta(hours=2), status=SessionStatus.SCHEDULED
    )
    create_session(db_session, start_time=now - timedelta(hours=4), status=SessionStatus.ENDED)
    create_session(db_session, status=SessionStatus.OPEN)

    candidates = crud.session.get_auto_end_candidates(db_session, now=now)

    assert [s.id for s in candidates] == [past_open.id, past_scheduled.id]


def test_transition_succeeds_only_once(db_session):
    session = create_session(db_session, status=SessionStatus.SCHEDULED)
    kwargs = dict(
        session_id=session.id,
        expected_status=SessionStatus.SCHEDULED.value,
        expected_is_open=False,
        new_status=SessionStatus.OPEN.value,
        new_is_open=True,
    )

    assert crud.session.transition(db_session, **kwargs) is True
    assert crud.session.transition(db_session, **kwargs) is False


def test_get_stats(db_session):
    create_session(db_session, status=SessionStatus.OPEN, capacity=2, check_ins_count=2)
    create_session(db_session, status=SessionStatus.OPEN, check_ins_count=3)
    create_session(db_session, status=SessionStatus.ENDED)

    stats = crud.session.get_stats(db_session)

    assert stats.total == 3
    assert stats.open == 2
    assert stats.ended == 1
    assert stats.scheduled == 0
    assert stats.total_check_ins == 5
    # Unlimited sessions never count as full
    assert stats.sessions_at_capacity == 1
