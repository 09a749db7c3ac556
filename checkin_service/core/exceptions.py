# checkin_service/core/exceptions.py
"""
Custom exception hierarchy for the Check-in Service.
All exceptions inherit from CheckInServiceError for consistent handling.

Each error carries the HTTP status it maps to so the API layer can render it
without a lookup table.
"""

from typing import Optional


class CheckInServiceError(Exception):
    """Base exception for all check-in service errors."""

    status_code = 500

    def __init__(
        self,
        message: str,
        error_code: str = "CHECKIN_ERROR",
        details: Optional[dict] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "status": "error",
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# ===========================================
# Lookup Exceptions
# ===========================================


class EntityNotFoundError(CheckInServiceError):
    """A referenced session, participant or check-in does not exist."""

    status_code = 404

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            message=f"{entity} with id '{entity_id}' not found",
            error_code="ENTITY_NOT_FOUND",
            details={"entity": entity, "id": entity_id},
        )


class AlreadyCheckedInError(CheckInServiceError):
    """The participant already holds a check-in for the session."""

    status_code = 409

    def __init__(self, participant_id: str, session_id: str):
        super().__init__(
            message=f"Participant {participant_id} is already checked in to session {session_id}",
            error_code="ALREADY_CHECKED_IN",
            details={"participant_id": participant_id, "session_id": session_id},
        )


# ===========================================
# Validation Exceptions
# ===========================================


class ValidationError(CheckInServiceError):
    """Request is well-formed but violates a business rule. Not retryable."""

    status_code = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        error_code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None,
    ):
        self.field = field
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(message, error_code=error_code, details=details)


class SessionNotOpenError(ValidationError):
    """Check-in attempted on a session whose status is not OPEN."""

    def __init__(self, session_id: str, status: str):
        super().__init__(
            message=f"Session {session_id} is not open for check-in (status: {status})",
            field="session_id",
            error_code="SESSION_NOT_OPEN",
            details={"session_id": session_id, "status": status},
        )


class CapacityExceededError(ValidationError):
    """The session has no remaining enforced capacity."""

    def __init__(self, session_id: str, capacity: Optional[int] = None):
        super().__init__(
            message=f"Session {session_id} has reached its capacity",
            field="session_id",
            error_code="CAPACITY_EXCEEDED",
            details={"session_id": session_id, "capacity": capacity},
        )


class RegistrationRequiredError(ValidationError):
    """Invite-only session and the participant holds no confirmed registration."""

    def __init__(self, participant_id: str, session_id: str):
        super().__init__(
            message=f"Participant {participant_id} is not registered for session {session_id}",
            field="participant_id",
            error_code="REGISTRATION_REQUIRED",
            details={"participant_id": participant_id, "session_id": session_id},
        )


# ===========================================
# Infrastructure Exceptions
# ===========================================


class AdmissionFailedError(CheckInServiceError):
    """The durable store failed while admitting or persisting a check-in."""

    status_code = 503

    def __init__(self, session_id: str, reason: str = "durable store unavailable"):
        super().__init__(
            message=f"Check-in for session {session_id} failed: {reason}",
            error_code="ADMISSION_FAILED",
            details={"session_id": session_id},
        )
