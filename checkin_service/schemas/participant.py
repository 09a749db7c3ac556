# checkin_service/schemas/participant.py
from pydantic import BaseModel
from typing import Optional


class Participant(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    organization: Optional[str] = None
    qr_code: str
    is_active: bool = True
    model_config = {"from_attributes": True}


class ParticipantCreate(BaseModel):
    name: str
    email: Optional[str] = None
    organization: Optional[str] = None
    qr_code: Optional[str] = None  # generated when omitted
