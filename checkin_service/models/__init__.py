# checkin_service/models/__init__.py
from .session import Session, SessionStatus
from .participant import Participant
from .registration import Registration
from .check_in import CheckIn
from .check_in_attempt import CheckInAttempt
