# checkin_service/schemas/events.py
"""Payloads broadcast through the lifecycle event sink."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel


class SessionLifecycleEvent(BaseModel):
    type: Literal["session.lifecycle"] = "session.lifecycle"
    session_id: str
    session_name: str
    previous_status: str
    new_status: str
    previous_is_open: bool
    new_is_open: bool
    reason: Literal["auto_open", "auto_end", "manual"]
    timestamp: datetime


class CheckInEvent(BaseModel):
    type: Literal["checkin.admitted", "checkin.removed"] = "checkin.admitted"
    check_in_id: str
    participant_id: str
    session_id: str
    method: Optional[str] = None
    is_late: bool = False
    check_ins_count: int
    capacity: int
    timestamp: datetime
