# checkin_service/api/v1/endpoints/sessions.py
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from checkin_service.api import deps
from checkin_service.db.session import get_db
from checkin_service.schemas.check_in import CapacityStatus
from checkin_service.schemas.session import (
    Session as SessionSchema,
    SessionStats,
    UpcomingAutoOpen,
)
from checkin_service.schemas.token import TokenPayload
from checkin_service.services.cache_facade import CacheFacade
from checkin_service.services.check_in_service import CheckInService
from checkin_service.services.lifecycle_scheduler import SessionLifecycleScheduler

router = APIRouter(prefix="/sessions", tags=["Sessions"])


@router.get("/stats", response_model=SessionStats)
def get_session_stats(
    db: Session = Depends(get_db),
    cache: CacheFacade = Depends(deps.get_cache_facade),
):
    return cache.get_session_stats(db)


@router.get("/upcoming-auto-open", response_model=List[UpcomingAutoOpen])
def get_upcoming_auto_open(
    window_minutes: int = Query(60, ge=1, le=24 * 60),
    db: Session = Depends(get_db),
    lifecycle: SessionLifecycleScheduler = Depends(deps.get_lifecycle_scheduler),
):
    """Sessions the scheduler will open within the next ``window_minutes``."""
    return lifecycle.get_upcoming_auto_open(db, window_minutes=window_minutes)


@router.get("/{session_id}/capacity", response_model=CapacityStatus)
def get_capacity(
    session_id: str,
    db: Session = Depends(get_db),
    service: CheckInService = Depends(deps.get_check_in_service),
):
    return service.get_capacity_status(db, session_id)


@router.post("/{session_id}/open", response_model=SessionSchema)
def open_session(
    session_id: str,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
    lifecycle: SessionLifecycleScheduler = Depends(deps.get_lifecycle_scheduler),
):
    """Open a session for check-in now, ignoring its schedule."""
    return lifecycle.manual_transition(db, session_id, is_open=True)


@router.post("/{session_id}/close", response_model=SessionSchema)
def close_session(
    session_id: str,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
    lifecycle: SessionLifecycleScheduler = Depends(deps.get_lifecycle_scheduler),
):
    """Close a session. It returns to SCHEDULED if it has not ended yet."""
    return lifecycle.manual_transition(db, session_id, is_open=False)
