# checkin_service/services/lifecycle_scheduler.py
"""
Session lifecycle automation.

Sessions move SCHEDULED -> OPEN a few minutes before they start and
OPEN/SCHEDULED -> ENDED once their end time (plus grace) has passed. Every
automatic transition is a conditional write on the state that was read, so
when several processes run the same job only one of them changes the row and
only that one emits the event. Operators may override at any time through
``manual_transition``.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from checkin_service import crud
from checkin_service.core.clock import utcnow
from checkin_service.core.config import settings
from checkin_service.core.exceptions import EntityNotFoundError
from checkin_service.models.session import Session as SessionModel, SessionStatus
from checkin_service.schemas.events import SessionLifecycleEvent
from checkin_service.schemas.session import (
    SchedulerConfig,
    Session as SessionSchema,
    UpcomingAutoOpen,
)
from checkin_service.services.cache_facade import CacheFacade
from checkin_service.services.event_sink import LifecycleEventSink

logger = logging.getLogger(__name__)


class SessionLifecycleScheduler:
    def __init__(
        self,
        cache: CacheFacade,
        sink: LifecycleEventSink,
        clock: Callable[[], datetime] = utcnow,
        auto_open_minutes_before: int = settings.AUTO_OPEN_MINUTES_BEFORE,
        auto_end_enabled: bool = settings.AUTO_END_ENABLED,
        auto_end_grace_minutes: int = settings.AUTO_END_GRACE_MINUTES,
    ):
        self.cache = cache
        self.sink = sink
        self.clock = clock
        self.auto_open_minutes_before = auto_open_minutes_before
        self.auto_end_enabled = auto_end_enabled
        self.auto_end_grace_minutes = auto_end_grace_minutes

    # --- thresholds ---

    def auto_open_at(self, session) -> datetime:
        minutes = session.auto_open_minutes_before
        if minutes is None:
            minutes = self.auto_open_minutes_before
        return session.start_time - timedelta(minutes=minutes)

    def auto_end_at(self, session) -> datetime:
        minutes = session.auto_end_grace_minutes
        if minutes is None:
            minutes = self.auto_end_grace_minutes
        return session.end_time + timedelta(minutes=minutes)

    # --- jobs ---

    def run_auto_open(self, db: Session) -> List[str]:
        """Open every SCHEDULED session whose auto-open threshold has passed."""
        now = self.clock()
        opened = []
        for session in crud.session.get_auto_open_candidates(db, now=now):
            if now < self.auto_open_at(session):
                continue
            try:
                if self._transition(
                    db, session, SessionStatus.OPEN, True, reason="auto_open"
                ):
                    opened.append(session.id)
            except SQLAlchemyError as exc:
                db.rollback()
                logger.error(f"Auto-open failed for session {session.id}: {exc}")
        if opened:
            logger.info(f"Auto-opened {len(opened)} session(s): {opened}")
        return opened

    def run_auto_end(self, db: Session) -> List[str]:
        """End every OPEN or SCHEDULED session past its end time plus grace."""
        if not self.auto_end_enabled:
            return []
        now = self.clock()
        ended = []
        for session in crud.session.get_auto_end_candidates(db, now=now):
            if now < self.auto_end_at(session):
                continue
            try:
                if self._transition(
                    db, session, SessionStatus.ENDED, False, reason="auto_end"
                ):
                    ended.append(session.id)
            except SQLAlchemyError as exc:
                db.rollback()
                logger.error(f"Auto-end failed for session {session.id}: {exc}")
        if ended:
            logger.info(f"Auto-ended {len(ended)} session(s): {ended}")
        return ended

    def run_cycle(self, db: Session) -> Dict[str, List[str]]:
        return {"opened": self.run_auto_open(db), "ended": self.run_auto_end(db)}

    # --- manual override ---

    def manual_transition(self, db: Session, session_id: str, is_open: bool) -> SessionSchema:
        """
        Open or close a session regardless of its schedule.

        Closing a session before its auto-open time puts it back to SCHEDULED,
        so the auto-open job still opens it on time. Closing it any later ends
        it; otherwise the next auto-open pass would undo the close. An ended
        session can still be reopened here.
        """
        session = crud.session.get(db, session_id)
        if session is None:
            raise EntityNotFoundError("Session", session_id)

        now = self.clock()
        if is_open:
            new_status = SessionStatus.OPEN
        elif now < self.auto_open_at(session):
            new_status = SessionStatus.SCHEDULED
        else:
            new_status = SessionStatus.ENDED

        if session.status == new_status.value and session.is_open == is_open:
            return SessionSchema.model_validate(session)

        previous_status, previous_is_open = session.status, session.is_open
        crud.session.set_status(
            db, session_id=session_id, new_status=new_status.value, new_is_open=is_open
        )
        self._after_transition(
            session, previous_status, previous_is_open, new_status, is_open, "manual"
        )
        db.refresh(session)
        return SessionSchema.model_validate(session)

    # --- introspection ---

    def get_upcoming_auto_open(self, db: Session, window_minutes: int = 60) -> List[UpcomingAutoOpen]:
        now = self.clock()
        horizon = now + timedelta(minutes=window_minutes)
        upcoming = []
        for session in crud.session.get_auto_open_candidates(db, now=now):
            open_at = self.auto_open_at(session)
            if now <= open_at <= horizon:
                upcoming.append(
                    UpcomingAutoOpen(
                        id=session.id,
                        name=session.name,
                        start_time=session.start_time,
                        auto_open_at=open_at,
                        minutes_until_open=int((open_at - now).total_seconds() // 60),
                    )
                )
        return sorted(upcoming, key=lambda s: s.auto_open_at)

    def get_config(self) -> SchedulerConfig:
        return SchedulerConfig(
            enabled=settings.SCHEDULER_ENABLED,
            auto_open_minutes_before=self.auto_open_minutes_before,
            auto_end_enabled=self.auto_end_enabled,
            auto_end_grace_minutes=self.auto_end_grace_minutes,
            check_interval_seconds=settings.SESSION_CHECK_INTERVAL_SECONDS,
            late_threshold_minutes=settings.CHECKIN_LATE_THRESHOLD_MINUTES,
        )

    # --- internals ---

    def _transition(
        self,
        db: Session,
        session: SessionModel,
        new_status: SessionStatus,
        new_is_open: bool,
        reason: str,
    ) -> bool:
        previous_status, previous_is_open = session.status, session.is_open
        if previous_status == new_status.value and previous_is_open == new_is_open:
            return False

        won = crud.session.transition(
            db,
            session_id=session.id,
            expected_status=previous_status,
            expected_is_open=previous_is_open,
            new_status=new_status.value,
            new_is_open=new_is_open,
        )
        if not won:
            logger.debug(f"Session {session.id} changed concurrently; skipping {reason}")
            return False

        self._after_transition(
            session, previous_status, previous_is_open, new_status, new_is_open, reason
        )
        return True

    def _after_transition(
        self,
        session: SessionModel,
        previous_status: str,
        previous_is_open: bool,
        new_status: SessionStatus,
        new_is_open: bool,
        reason: str,
    ):
        self.cache.invalidate_session(session.id)
        logger.info(
            f"Session {session.id} {previous_status} -> {new_status.value} ({reason})"
        )
        self.sink.publish(
            SessionLifecycleEvent(
                session_id=session.id,
                session_name=session.name,
                previous_status=previous_status,
                new_status=new_status.value,
                previous_is_open=previous_is_open,
                new_is_open=new_is_open,
                reason=reason,
                timestamp=self.clock(),
            )
        )
