# checkin_service/crud/crud_check_in_attempt.py
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .base import CRUDBase
from checkin_service.models.check_in_attempt import CheckInAttempt
from checkin_service.schemas.check_in_attempt import AttemptStats, CheckInAttemptCreate


class CRUDCheckInAttempt(CRUDBase[CheckInAttempt, CheckInAttemptCreate]):
    def get_multi_filtered(
        self,
        db: Session,
        *,
        session_id: Optional[str] = None,
        participant_id: Optional[str] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[CheckInAttempt]:
        """Newest first."""
        query = db.query(self.model)
        if session_id:
            query = query.filter(self.model.session_id == session_id)
        if participant_id:
            query = query.filter(self.model.participant_id == participant_id)
        if status:
            query = query.filter(self.model.status == status)
        return (
            query.order_by(self.model.attempt_time.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def get_stats(self, db: Session, *, session_id: Optional[str] = None) -> AttemptStats:
        query = db.query(self.model.status, func.count(self.model.id))
        if session_id:
            query = query.filter(self.model.session_id == session_id)
        by_status = dict(query.group_by(self.model.status).all())
        return AttemptStats(
            total=sum(by_status.values()),
            declined=by_status.get("declined", 0),
            failed=by_status.get("failed", 0),
        )


check_in_attempt = CRUDCheckInAttempt(CheckInAttempt)
