# checkin_service/models/participant.py
import uuid
from sqlalchemy import Boolean, Column, DateTime, String, func, text
from sqlalchemy.orm import relationship
from checkin_service.db.base_class import Base


def generate_qr_code() -> str:
    return f"QR-{uuid.uuid4().hex[:12].upper()}"


class Participant(Base):
    __tablename__ = "participants"

    id = Column(
        String, primary_key=True, default=lambda: f"par_{uuid.uuid4().hex[:12]}"
    )
    name = Column(String, nullable=False)
    email = Column(String, nullable=True, index=True)
    organization = Column(String, nullable=True)

    # Unique scan code printed on the badge
    qr_code = Column(
        String, nullable=False, unique=True, index=True, default=generate_qr_code
    )
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    check_ins = relationship("CheckIn", back_populates="participant")
