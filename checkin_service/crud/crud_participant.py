# checkin_service/crud/crud_participant.py
from typing import Optional
from sqlalchemy.orm import Session
from .base import CRUDBase
from checkin_service.models.participant import Participant
from checkin_service.schemas.participant import ParticipantCreate


class CRUDParticipant(CRUDBase[Participant, ParticipantCreate]):
    def get_by_qr_code(self, db: Session, *, qr_code: str) -> Optional[Participant]:
        return db.query(self.model).filter(self.model.qr_code == qr_code).first()


participant = CRUDParticipant(Participant)
