# checkin_service/crud/crud_registration.py
from typing import Optional
from sqlalchemy import and_
from sqlalchemy.orm import Session
from .base import CRUDBase
from checkin_service.models.registration import Registration
from checkin_service.schemas.registration import RegistrationCreate


class CRUDRegistration(CRUDBase[Registration, RegistrationCreate]):
    def get_for_participant(
        self, db: Session, *, participant_id: str, session_id: str
    ) -> Optional[Registration]:
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

    def is_confirmed(self, db: Session, *, participant_id: str, session_id: str) -> bool:
        registration = self.get_for_participant(
            db, participant_id=participant_id, session_id=session_id
        )
        return registration is not None and registration.status == "confirmed"


registration = CRUDRegistration(Registration)
