# checkin_service/crud/crud_check_in.py
from typing import List, Optional

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from .base import CRUDBase
from checkin_service.models.check_in import CheckIn
from checkin_service.schemas.check_in import CheckInCreate


class CRUDCheckIn(CRUDBase[CheckIn, CheckInCreate]):
    def get_by_participant_and_session(
        self, db: Session, *, participant_id: str, session_id: str
    ) -> Optional[CheckIn]:
        return (
            db.query(self.model)
            .filter(
                and_(
                    self.model.participant_id == participant_id,
                    self.model.session_id == session_id,
                )
            )
            .first()
        )

    def get_multi_by_session(
        self, db: Session, *, session_id: str, skip: int = 0, limit: int = 100
    ) -> List[CheckIn]:
        return (
            db.query(self.model)
            .filter(self.model.session_id == session_id)
            .order_by(self.model.check_in_time)
            .offset(skip)
            .limit(limit)
            .all()
        )

    def count_by_session(self, db: Session, *, session_id: str) -> int:
        return (
            db.query(func.count(self.model.id))
            .filter(self.model.session_id == session_id)
            .scalar()
        )

    def delete(self, db: Session, *, check_in_id: str, commit: bool = True) -> bool:
        """
        Delete one check-in. True only if this call removed the row.

        With ``commit`` False the delete stays in the open transaction so the
        caller can commit it together with the counter update.
        """
        deleted = (
            db.query(self.model)
            .filter(self.model.id == check_in_id)
            .delete(synchronize_session=False)
        )
        if commit:
            db.commit()
        return deleted == 1

    def delete_by_session(self, db: Session, *, session_id: str) -> int:
        deleted = (
            db.query(self.model)
            .filter(self.model.session_id == session_id)
            .delete(synchronize_session=False)
        )
        db.commit()
        return deleted


check_in = CRUDCheckIn(CheckIn)
