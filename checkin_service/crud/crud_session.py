# checkin_service/crud/crud_session.py
from datetime import datetime
from typing import List

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from .base import CRUDBase
from checkin_service.core.clock import utcnow
from checkin_service.models.session import Session as SessionModel, SessionStatus
from checkin_service.schemas.session import SessionCreate, SessionStats


class CRUDSession(CRUDBase[SessionModel, SessionCreate]):
    def get_auto_open_candidates(self, db: Session, *, now: datetime) -> List[SessionModel]:
        """SCHEDULED sessions that have not ended yet. Thresholds are applied by the caller."""
        return (
            db.query(self.model)
            .filter(
                self.model.status == SessionStatus.SCHEDULED.value,
                self.model.end_time > now,
            )
            .order_by(self.model.start_time)
            .all()
        )

    def get_auto_end_candidates(self, db: Session, *, now: datetime) -> List[SessionModel]:
        """OPEN or SCHEDULED sessions whose end_time has already passed."""
        return (
            db.query(self.model)
            .filter(
                self.model.status.in_(
                    [SessionStatus.OPEN.value, SessionStatus.SCHEDULED.value]
                ),
                self.model.end_time <= now,
            )
            .order_by(self.model.end_time)
            .all()
        )

    def transition(
        self,
        db: Session,
        *,
        session_id: str,
        expected_status: str,
        expected_is_open: bool,
        new_status: str,
        new_is_open: bool,
    ) -> bool:
        """
        Conditionally move a session to a new status.

        The WHERE clause re-checks the state the caller observed, so when several
        scheduler processes race on the same row exactly one of them wins.
        Returns True only for the winner.
        """
        result = db.execute(
            update(self.model)
            .where(
                self.model.id == session_id,
                self.model.status == expected_status,
                self.model.is_open == expected_is_open,
            )
            .values(status=new_status, is_open=new_is_open, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    def set_status(
        self, db: Session, *, session_id: str, new_status: str, new_is_open: bool
    ) -> bool:
        """Unconditional write used by manual overrides."""
        result = db.execute(
            update(self.model)
            .where(self.model.id == session_id)
            .values(status=new_status, is_open=new_is_open, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    def get_stats(self, db: Session) -> SessionStats:
        rows = (
            db.query(self.model.status, func.count(self.model.id))
            .group_by(self.model.status)
            .all()
        )
        by_status = {status: count for status, count in rows}
        total_check_ins = db.query(
            func.coalesce(func.sum(self.model.check_ins_count), 0)
        ).scalar()
        at_capacity = (
            db.query(func.count(self.model.id))
            .filter(
                self.model.capacity > 0,
                self.model.check_ins_count >= self.model.capacity,
            )
            .scalar()
        )
        return SessionStats(
            total=sum(by_status.values()),
            scheduled=by_status.get(SessionStatus.SCHEDULED.value, 0),
            open=by_status.get(SessionStatus.OPEN.value, 0),
            ended=by_status.get(SessionStatus.ENDED.value, 0),
            total_check_ins=int(total_check_ins or 0),
            sessions_at_capacity=int(at_capacity or 0),
        )


session = CRUDSession(SessionModel)
