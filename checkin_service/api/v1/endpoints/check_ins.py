# checkin_service/api/v1/endpoints/check_ins.py
"""
Check-in admission endpoints used by scanner apps and the staff console.

Errors are raised as CheckInServiceError subclasses and rendered by the
application-level handler in main.py.
"""

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from checkin_service.api import deps
from checkin_service.db.session import get_db
from checkin_service.schemas.check_in import (
    CheckIn,
    CheckInCreate,
    CheckInResult,
    QrCheckInCreate,
    QrVerification,
    QrVerifyRequest,
    RemoveBySessionResult,
)
from checkin_service.schemas.check_in_attempt import (
    AcceptCheckInRequest,
    AcceptResult,
    AttemptStats,
    CheckInAttempt,
    DeclineCheckInRequest,
    DeclineResult,
)
from checkin_service.schemas.token import TokenPayload
from checkin_service.services.check_in_service import CheckInService

router = APIRouter(tags=["Check-ins"])


@router.post(
    "/check-ins", response_model=CheckInResult, status_code=status.HTTP_201_CREATED
)
def create_check_in(
    check_in_in: CheckInCreate,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
    service: CheckInService = Depends(deps.get_check_in_service),
):
    """Admit a participant into a session by participant id."""
    return service.check_in(
        db,
        participant_id=check_in_in.participant_id,
        session_id=check_in_in.session_id,
        method=check_in_in.method,
        checked_in_by=current_user.sub,
        notes=check_in_in.notes,
    )


@router.post(
    "/check-ins/qr", response_model=CheckInResult, status_code=status.HTTP_201_CREATED
)
def create_check_in_by_qr(
    check_in_in: QrCheckInCreate,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
    service: CheckInService = Depends(deps.get_check_in_service),
):
    """Admit a participant into a session by the code scanned from their badge."""
    return service.check_in_by_qr(
        db,
        qr_code=check_in_in.qr_code,
        session_id=check_in_in.session_id,
        checked_in_by=current_user.sub,
        notes=check_in_in.notes,
    )


@router.post("/check-ins/verify", response_model=QrVerification)
def verify_qr(
    verify_in: QrVerifyRequest,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
    service: CheckInService = Depends(deps.get_check_in_service),
):
    return service.verify_qr(db, qr_code=verify_in.qr_code, session_id=verify_in.session_id)


@router.post(
    "/check-ins/accept", response_model=AcceptResult, status_code=status.HTTP_201_CREATED
)
def accept_check_in(
    accept_in: AcceptCheckInRequest,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
    service: CheckInService = Depends(deps.get_check_in_service),
):
    """Admit a participant after the officer reviewed the verification result."""
    return service.accept(
        db,
        participant_id=accept_in.participant_id,
        session_id=accept_in.session_id,
        accepted_by=current_user.sub,
        notes=accept_in.notes,
    )


@router.post(
    "/check-ins/decline", response_model=DeclineResult, status_code=status.HTTP_201_CREATED
)
def decline_check_in(
    decline_in: DeclineCheckInRequest,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
    service: CheckInService = Depends(deps.get_check_in_service),
):
    """Turn a participant away and log the attempt for audit."""
    return service.decline(
        db,
        participant_id=decline_in.participant_id,
        session_id=decline_in.session_id,
        declined_by=current_user.sub,
        reason=decline_in.reason,
    )


@router.get("/check-ins/attempts", response_model=List[CheckInAttempt])
def list_attempts(
    session_id: Optional[str] = None,
    participant_id: Optional[str] = None,
    attempt_status: Optional[Literal["declined", "failed"]] = Query(None, alias="status"),
    skip: int = 0,
    limit: int = Query(100, le=500),
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
    service: CheckInService = Depends(deps.get_check_in_service),
):
    """Declined and failed attempts, newest first."""
    return service.get_attempts(
        db,
        session_id=session_id,
        participant_id=participant_id,
        status=attempt_status,
        skip=skip,
        limit=limit,
    )


@router.get("/check-ins/attempts/stats", response_model=AttemptStats)
def get_attempt_stats(
    session_id: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
    service: CheckInService = Depends(deps.get_check_in_service),
):
    return service.get_attempt_stats(db, session_id=session_id)


@router.get("/check-ins/{check_in_id}", response_model=CheckIn)
def get_check_in(
    check_in_id: str,
    db: Session = Depends(get_db),
    service: CheckInService = Depends(deps.get_check_in_service),
):
    return service.get(db, check_in_id)


@router.delete("/check-ins/{check_in_id}", response_model=CheckIn)
def remove_check_in(
    check_in_id: str,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
    service: CheckInService = Depends(deps.get_check_in_service),
):
    """Undo a check-in and give the slot back to the session."""
    return service.remove(db, check_in_id)


@router.get("/sessions/{session_id}/check-ins", response_model=List[CheckIn])
def list_session_check_ins(
    session_id: str,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    service: CheckInService = Depends(deps.get_check_in_service),
):
    return service.list_by_session(db, session_id, skip=skip, limit=limit)


@router.delete("/sessions/{session_id}/check-ins", response_model=RemoveBySessionResult)
def remove_session_check_ins(
    session_id: str,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
    service: CheckInService = Depends(deps.get_check_in_service),
):
    return service.remove_by_session(db, session_id)
