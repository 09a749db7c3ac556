# checkin_service/schemas/check_in.py
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .participant import Participant


class CheckIn(BaseModel):
    id: str
    participant_id: str
    session_id: str
    method: str
    check_in_time: datetime
    is_late: bool
    checked_in_by: Optional[str] = None
    notes: Optional[str] = None
    model_config = {"from_attributes": True}


class CheckInCreate(BaseModel):
    participant_id: str
    session_id: str
    method: Literal["qr", "manual"] = "manual"
    notes: Optional[str] = Field(default=None, max_length=500)


class QrCheckInCreate(BaseModel):
    qr_code: str = Field(..., min_length=1)
    session_id: str
    notes: Optional[str] = Field(default=None, max_length=500)


class QrVerifyRequest(BaseModel):
    qr_code: str = Field(..., min_length=1)
    session_id: str


class CapacityStatus(BaseModel):
    session_id: str
    capacity: int
    check_ins_count: int
    # -1 when the session is unlimited
    remaining: int
    percent_full: int
    is_at_capacity: bool
    is_near_capacity: bool
    capacity_enforced: bool


class CheckInResult(BaseModel):
    check_in: CheckIn
    capacity: CapacityStatus


class QrVerification(BaseModel):
    """What a scanner shows before confirming a check-in."""

    participant: Participant
    session_id: str
    badge: Literal["ALREADY_CHECKED_IN", "REGISTERED", "NOT_REGISTERED"]
    badge_label: str
    can_accept: bool
    existing_check_in: Optional[CheckIn] = None
    actions: List[str] = []


class SessionReconciliation(BaseModel):
    session_id: str
    expected: int
    actual: int
    fixed: bool
    # Left for a later pass because a reservation may still be in flight
    deferred: bool = False


class ReconciliationReport(BaseModel):
    checked: int = 0
    fixed: int = 0
    cache_keys_checked: int = 0
    cache_keys_fixed: int = 0
    sessions: List[SessionReconciliation] = []


class RemoveBySessionResult(BaseModel):
    session_id: str
    deleted: int
    check_ins_count: int
