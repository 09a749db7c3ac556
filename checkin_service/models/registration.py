# checkin_service/models/registration.py
import uuid
from sqlalchemy import Column, DateTime, Enum, ForeignKey, String, UniqueConstraint, func
from checkin_service.db.base_class import Base


class Registration(Base):
    """A participant's sign-up for an invite-only session."""

    __tablename__ = "registrations"
    __table_args__ = (
        UniqueConstraint("participant_id", "session_id", name="uq_registration_participant_session"),
    )

    id = Column(
        String, primary_key=True, default=lambda: f"reg_{uuid.uuid4().hex[:12]}"
    )
    participant_id = Column(
        String, ForeignKey("participants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    session_id = Column(
        String, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status = Column(
        Enum("pending", "confirmed", "cancelled", "waitlisted", name="registration_status_enum"),
        nullable=False,
        default="confirmed",
        server_default="confirmed",
    )
    created_at = Column(DateTime, nullable=False, server_default=func.now())
