# checkin_service/models/session.py
import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String, Text, text
from sqlalchemy.orm import relationship

from checkin_service.core.clock import utcnow
from checkin_service.db.base_class import Base


class SessionStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    OPEN = "OPEN"
    ENDED = "ENDED"


class Session(Base):
    __tablename__ = "sessions"

    id = Column(
        String, primary_key=True, default=lambda: f"ses_{uuid.uuid4().hex[:12]}"
    )
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String, nullable=True)
    day = Column(Integer, nullable=True)

    # Naive UTC instants
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False, index=True)

    status = Column(
        Enum(*[s.value for s in SessionStatus], name="session_status_enum"),
        nullable=False,
        default=SessionStatus.SCHEDULED.value,
        server_default=SessionStatus.SCHEDULED.value,
        index=True,
    )
    # Mirrors status == OPEN; both columns are always written together
    is_open = Column(Boolean, nullable=False, default=False, server_default=text("false"))

    # 0 or NULL means unlimited
    capacity = Column(Integer, nullable=True, default=0)
    # False turns capacity into a soft limit (overflow allowed, still counted)
    capacity_enforced = Column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    requires_registration = Column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    # Written only by the admission controller (reserve, release, reconcile)
    check_ins_count = Column(Integer, nullable=False, default=0, server_default=text("0"))

    # Per-session overrides of the scheduler defaults; NULL falls back to settings
    auto_open_minutes_before = Column(Integer, nullable=True)
    auto_end_grace_minutes = Column(Integer, nullable=True)
    late_threshold_minutes = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    check_ins = relationship(
        "CheckIn", back_populates="session", passive_deletes=True
    )
