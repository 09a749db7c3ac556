# checkin_service/models/check_in_attempt.py
import uuid
from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Index, String, Text, func, text
from checkin_service.db.base_class import Base


class CheckInAttempt(Base):
    """
    Audit trail of scans that did not end in a check-in: entries an officer
    declined and accepts the system refused. Kept apart from check_ins so the
    admitted set stays a clean one-row-per-participant table.
    """

    __tablename__ = "check_in_attempts"
    __table_args__ = (
        Index("ix_check_in_attempts_session_time", "session_id", "attempt_time"),
        Index("ix_check_in_attempts_status_session", "status", "session_id"),
    )

    id = Column(
        String, primary_key=True, default=lambda: f"att_{uuid.uuid4().hex[:12]}"
    )
    participant_id = Column(
        String, ForeignKey("participants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    session_id = Column(
        String, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    attempt_time = Column(DateTime, nullable=False)
    status = Column(
        Enum("declined", "failed", name="check_in_attempt_status_enum"), nullable=False
    )
    declined_by = Column(String, nullable=True)
    reason = Column(Text, nullable=True)
    was_registered = Column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    created_at = Column(DateTime, nullable=False, server_default=func.now())
