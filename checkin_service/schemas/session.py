# checkin_service/schemas/session.py
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class Session(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    location: Optional[str] = None
    day: Optional[int] = None
    start_time: datetime
    end_time: datetime
    status: str
    is_open: bool
    capacity: Optional[int] = 0
    capacity_enforced: bool = True
    requires_registration: bool = False
    check_ins_count: int = 0
    auto_open_minutes_before: Optional[int] = None
    auto_end_grace_minutes: Optional[int] = None
    late_threshold_minutes: Optional[int] = None
    model_config = {"from_attributes": True}


class SessionCreate(BaseModel):
    name: str = Field(..., json_schema_extra={"example": "Opening Keynote"})
    description: Optional[str] = None
    location: Optional[str] = None
    day: Optional[int] = None
    start_time: datetime  # naive UTC
    end_time: datetime  # naive UTC
    capacity: Optional[int] = Field(default=0, ge=0)
    capacity_enforced: bool = True
    requires_registration: bool = False
    auto_open_minutes_before: Optional[int] = Field(default=None, ge=0)
    auto_end_grace_minutes: Optional[int] = Field(default=None, ge=0)
    late_threshold_minutes: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_time_window(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class SessionStats(BaseModel):
    """Aggregate counts across all sessions, served from the stats cache tier."""

    total: int = 0
    scheduled: int = 0
    open: int = 0
    ended: int = 0
    total_check_ins: int = 0
    sessions_at_capacity: int = 0


class UpcomingAutoOpen(BaseModel):
    id: str
    name: str
    start_time: datetime
    auto_open_at: datetime
    minutes_until_open: int


class SchedulerConfig(BaseModel):
    enabled: bool
    auto_open_minutes_before: int
    auto_end_enabled: bool
    auto_end_grace_minutes: int
    check_interval_seconds: int
    late_threshold_minutes: int
