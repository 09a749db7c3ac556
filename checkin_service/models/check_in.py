# checkin_service/models/check_in.py
import uuid
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import relationship
from checkin_service.db.base_class import Base


class CheckIn(Base):
    __tablename__ = "check_ins"
    # At most one check-in per participant and session, enforced by the store
    __table_args__ = (
        UniqueConstraint("participant_id", "session_id", name="uq_checkin_participant_session"),
    )

    id = Column(
        String, primary_key=True, default=lambda: f"chk_{uuid.uuid4().hex[:12]}"
    )
    participant_id = Column(
        String, ForeignKey("participants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    session_id = Column(
        String, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    method = Column(
        Enum("qr", "manual", name="checkin_method_enum"), nullable=False, default="manual"
    )
    check_in_time = Column(DateTime, nullable=False)
    # Computed once at admission time, never recomputed
    is_late = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    checked_in_by = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    session = relationship("Session", back_populates="check_ins")
    participant = relationship("Participant", back_populates="check_ins")
