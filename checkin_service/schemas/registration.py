# checkin_service/schemas/registration.py
from typing import Literal
from pydantic import BaseModel


class RegistrationCreate(BaseModel):
    participant_id: str
    session_id: str
    status: Literal["pending", "confirmed", "cancelled", "waitlisted"] = "confirmed"
