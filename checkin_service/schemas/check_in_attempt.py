# checkin_service/schemas/check_in_attempt.py
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from .check_in import CapacityStatus, CheckIn
from .participant import Participant


class CheckInAttempt(BaseModel):
    id: str
    participant_id: str
    session_id: str
    attempt_time: datetime
    status: str
    declined_by: Optional[str] = None
    reason: Optional[str] = None
    was_registered: bool = False
    model_config = {"from_attributes": True}


class CheckInAttemptCreate(BaseModel):
    participant_id: str
    session_id: str
    status: Literal["declined", "failed"]
    declined_by: Optional[str] = None
    reason: Optional[str] = None
    was_registered: bool = False


class AcceptCheckInRequest(BaseModel):
    """Officer confirms the entry after a badge verification."""

    participant_id: str
    session_id: str
    notes: Optional[str] = Field(default=None, max_length=500)


class DeclineCheckInRequest(BaseModel):
    participant_id: str
    session_id: str
    reason: Optional[str] = Field(default=None, max_length=500)


class AcceptResult(BaseModel):
    check_in: CheckIn
    capacity: CapacityStatus
    was_registered: bool


class DeclineResult(BaseModel):
    attempt: CheckInAttempt
    participant: Participant
    session_id: str
    session_name: str


class AttemptStats(BaseModel):
    total: int = 0
    declined: int = 0
    failed: int = 0
