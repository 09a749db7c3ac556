# checkin_service/services/check_in_service.py
"""
Check-in orchestration.

Order of operations for every admission path (id, QR and officer accept):
validate session and participant -> reserve a slot -> persist the check-in
-> invalidate caches -> publish. A reservation that is not followed by a
persisted check-in is always released before the error reaches the caller.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from checkin_service import crud
from checkin_service.core.clock import utcnow
from checkin_service.core.config import settings
from checkin_service.core.exceptions import (
    AdmissionFailedError,
    AlreadyCheckedInError,
    CapacityExceededError,
    EntityNotFoundError,
    RegistrationRequiredError,
    SessionNotOpenError,
    ValidationError,
)
from checkin_service.models.session import SessionStatus
from checkin_service.schemas.check_in import (
    CapacityStatus,
    CheckIn as CheckInSchema,
    CheckInCreate,
    CheckInResult,
    QrVerification,
    RemoveBySessionResult,
)
from checkin_service.schemas.check_in_attempt import (
    AcceptResult,
    AttemptStats,
    CheckInAttempt as CheckInAttemptSchema,
    CheckInAttemptCreate,
    DeclineResult,
)
from checkin_service.schemas.events import CheckInEvent
from checkin_service.schemas.session import Session as SessionSchema
from checkin_service.services.admission_controller import AdmissionController
from checkin_service.services.cache_facade import CacheFacade
from checkin_service.services.event_sink import LifecycleEventSink

logger = logging.getLogger(__name__)

BADGE_LABELS = {
    "ALREADY_CHECKED_IN": "Already checked in",
    "REGISTERED": "Registered",
    "NOT_REGISTERED": "Not registered",
}


def is_late_check_in(
    check_in_time: datetime, start_time: datetime, threshold_minutes: int
) -> bool:
    return check_in_time > start_time + timedelta(minutes=threshold_minutes)


class CheckInService:
    def __init__(
        self,
        cache: CacheFacade,
        admission: AdmissionController,
        sink: LifecycleEventSink,
        clock: Callable[[], datetime] = utcnow,
        late_threshold_minutes: int = settings.CHECKIN_LATE_THRESHOLD_MINUTES,
    ):
        self.cache = cache
        self.admission = admission
        self.sink = sink
        self.clock = clock
        self.late_threshold_minutes = late_threshold_minutes

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def check_in(
        self,
        db: Session,
        *,
        participant_id: str,
        session_id: str,
        method: str = "manual",
        checked_in_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> CheckInResult:
        session = self._require_open_session(db, session_id)
        participant = self.cache.get_participant(db, participant_id)
        if participant is None:
            raise EntityNotFoundError("Participant", participant_id)
        return self._admit(
            db,
            session=session,
            participant_id=participant.id,
            method=method,
            checked_in_by=checked_in_by,
            notes=notes,
        )

    def check_in_by_qr(
        self,
        db: Session,
        *,
        qr_code: str,
        session_id: str,
        checked_in_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> CheckInResult:
        participant = self.cache.get_participant_by_qr(db, qr_code)
        if participant is None:
            raise EntityNotFoundError("Participant", qr_code)
        session = self._require_open_session(db, session_id)
        return self._admit(
            db,
            session=session,
            participant_id=participant.id,
            method="qr",
            checked_in_by=checked_in_by,
            notes=notes,
        )

    def _require_open_session(self, db: Session, session_id: str) -> SessionSchema:
        session = self.cache.get_session(db, session_id)
        if session is None:
            raise EntityNotFoundError("Session", session_id)
        if session.status != SessionStatus.OPEN.value:
            raise SessionNotOpenError(session_id, session.status)
        return session

    def _admit(
        self,
        db: Session,
        *,
        session: SessionSchema,
        participant_id: str,
        method: str,
        checked_in_by: Optional[str],
        notes: Optional[str],
    ) -> CheckInResult:
        if session.requires_registration and not crud.registration.is_confirmed(
            db, participant_id=participant_id, session_id=session.id
        ):
            raise RegistrationRequiredError(participant_id, session.id)

        # Cheap early exit; the unique constraint is still the real guard
        if crud.check_in.get_by_participant_and_session(
            db, participant_id=participant_id, session_id=session.id
        ):
            raise AlreadyCheckedInError(participant_id, session.id)

        reservation = self.admission.reserve_slot(db, session.id)
        if not reservation.admitted:
            raise CapacityExceededError(session.id, reservation.capacity)

        check_in_time = self.clock()
        threshold = session.late_threshold_minutes
        if threshold is None:
            threshold = self.late_threshold_minutes

        try:
            db_check_in = crud.check_in.create(
                db,
                obj_in=CheckInCreate(
                    participant_id=participant_id,
                    session_id=session.id,
                    method=method,
                    notes=notes,
                ),
                extra={
                    "check_in_time": check_in_time,
                    "is_late": is_late_check_in(check_in_time, session.start_time, threshold),
                    "checked_in_by": checked_in_by,
                },
            )
        except IntegrityError:
            db.rollback()
            self._release_after_failure(db, session.id, reservation)
            raise AlreadyCheckedInError(participant_id, session.id)
        except SQLAlchemyError as exc:
            db.rollback()
            self._release_after_failure(db, session.id, reservation)
            logger.error(
                f"Persisting check-in failed for participant {participant_id} "
                f"in session {session.id}: {exc}"
            )
            raise AdmissionFailedError(session.id, "could not persist check-in") from exc

        self.admission.confirm_slot(reservation)
        check_in = CheckInSchema.model_validate(db_check_in)
        self.cache.invalidate_session(session.id)
        capacity = self.admission.get_capacity_status(db, session.id)

        logger.info(
            f"Checked in participant {participant_id} to session {session.id} "
            f"via {method} ({capacity.check_ins_count}/{capacity.capacity or 'unlimited'})"
        )
        self.sink.publish(
            CheckInEvent(
                type="checkin.admitted",
                check_in_id=check_in.id,
                participant_id=participant_id,
                session_id=session.id,
                method=method,
                is_late=check_in.is_late,
                check_ins_count=capacity.check_ins_count,
                capacity=capacity.capacity,
                timestamp=check_in_time,
            )
        )
        return CheckInResult(check_in=check_in, capacity=capacity)

    def _release_after_failure(self, db: Session, session_id: str, reservation):
        """Give the slot back without hiding the error that got us here."""
        try:
            self.admission.release_slot(db, session_id, reservation)
        except SQLAlchemyError as exc:
            db.rollback()
            # The marker stays until its TTL; reconciliation then fixes the counter
            logger.error(f"Releasing reservation for session {session_id} failed: {exc}")

    # ------------------------------------------------------------------
    # Officer decisions
    # ------------------------------------------------------------------

    def accept(
        self,
        db: Session,
        *,
        participant_id: str,
        session_id: str,
        accepted_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> AcceptResult:
        """
        Admit a participant the officer has just verified.

        A refused accept (session closed or full, registration missing,
        store failure) is logged as a ``failed`` attempt before the error is
        raised.
        """
        participant = self.cache.get_participant(db, participant_id)
        if participant is None:
            raise EntityNotFoundError("Participant", participant_id)
        session = self.cache.get_session(db, session_id)
        if session is None:
            raise EntityNotFoundError("Session", session_id)
        was_registered = crud.registration.is_confirmed(
            db, participant_id=participant.id, session_id=session.id
        )

        try:
            if session.status != SessionStatus.OPEN.value:
                raise SessionNotOpenError(session.id, session.status)
            result = self._admit(
                db,
                session=session,
                participant_id=participant.id,
                method="qr",
                checked_in_by=accepted_by,
                notes=notes,
            )
        except (ValidationError, AdmissionFailedError) as exc:
            self._record_failed_attempt(
                db,
                participant_id=participant.id,
                session_id=session.id,
                accepted_by=accepted_by,
                reason=exc.message,
                was_registered=was_registered,
            )
            raise

        return AcceptResult(
            check_in=result.check_in, capacity=result.capacity, was_registered=was_registered
        )

    def decline(
        self,
        db: Session,
        *,
        participant_id: str,
        session_id: str,
        declined_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> DeclineResult:
        """Turn a participant away and keep a record of it. No capacity is touched."""
        participant = self.cache.get_participant(db, participant_id)
        if participant is None:
            raise EntityNotFoundError("Participant", participant_id)
        session = self.cache.get_session(db, session_id)
        if session is None:
            raise EntityNotFoundError("Session", session_id)
        was_registered = crud.registration.is_confirmed(
            db, participant_id=participant.id, session_id=session.id
        )

        attempt = crud.check_in_attempt.create(
            db,
            obj_in=CheckInAttemptCreate(
                participant_id=participant.id,
                session_id=session.id,
                status="declined",
                declined_by=declined_by,
                reason=reason or "Check-in declined by officer",
                was_registered=was_registered,
            ),
            extra={"attempt_time": self.clock()},
        )
        logger.info(
            f"Declined participant {participant.id} at session {session.id} "
            f"(registered={was_registered}, by={declined_by})"
        )
        return DeclineResult(
            attempt=CheckInAttemptSchema.model_validate(attempt),
            participant=participant,
            session_id=session.id,
            session_name=session.name,
        )

    def _record_failed_attempt(
        self,
        db: Session,
        *,
        participant_id: str,
        session_id: str,
        accepted_by: Optional[str],
        reason: str,
        was_registered: bool,
    ):
        try:
            crud.check_in_attempt.create(
                db,
                obj_in=CheckInAttemptCreate(
                    participant_id=participant_id,
                    session_id=session_id,
                    status="failed",
                    declined_by=accepted_by,
                    reason=reason,
                    was_registered=was_registered,
                ),
                extra={"attempt_time": self.clock()},
            )
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(f"Could not record failed attempt for session {session_id}: {exc}")

    def get_attempts(
        self,
        db: Session,
        *,
        session_id: Optional[str] = None,
        participant_id: Optional[str] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[CheckInAttemptSchema]:
        return [
            CheckInAttemptSchema.model_validate(a)
            for a in crud.check_in_attempt.get_multi_filtered(
                db,
                session_id=session_id,
                participant_id=participant_id,
                status=status,
                skip=skip,
                limit=limit,
            )
        ]

    def get_attempt_stats(self, db: Session, session_id: Optional[str] = None) -> AttemptStats:
        return crud.check_in_attempt.get_stats(db, session_id=session_id)

    # ------------------------------------------------------------------
    # Scanner helpers
    # ------------------------------------------------------------------

    def verify_qr(self, db: Session, *, qr_code: str, session_id: str) -> QrVerification:
        """Look up a badge for a session without admitting it."""
        participant = self.cache.get_participant_by_qr(db, qr_code)
        if participant is None:
            raise EntityNotFoundError("Participant", qr_code)
        session = self.cache.get_session(db, session_id)
        if session is None:
            raise EntityNotFoundError("Session", session_id)

        existing = crud.check_in.get_by_participant_and_session(
            db, participant_id=participant.id, session_id=session_id
        )
        if existing is not None:
            badge = "ALREADY_CHECKED_IN"
        elif crud.registration.is_confirmed(
            db, participant_id=participant.id, session_id=session_id
        ):
            badge = "REGISTERED"
        else:
            badge = "NOT_REGISTERED"

        can_accept = (
            existing is None
            and session.status == SessionStatus.OPEN.value
            and (badge == "REGISTERED" or not session.requires_registration)
        )
        actions = ["accept"] if can_accept else []
        if existing is None:
            actions.append("decline")
        else:
            actions.append("remove_check_in")

        return QrVerification(
            participant=participant,
            session_id=session_id,
            badge=badge,
            badge_label=BADGE_LABELS[badge],
            can_accept=can_accept,
            existing_check_in=CheckInSchema.model_validate(existing) if existing else None,
            actions=actions,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, db: Session, check_in_id: str) -> CheckInSchema:
        db_check_in = crud.check_in.get(db, check_in_id)
        if db_check_in is None:
            raise EntityNotFoundError("CheckIn", check_in_id)
        return CheckInSchema.model_validate(db_check_in)

    def list_by_session(
        self, db: Session, session_id: str, skip: int = 0, limit: int = 100
    ) -> List[CheckInSchema]:
        return [
            CheckInSchema.model_validate(c)
            for c in crud.check_in.get_multi_by_session(
                db, session_id=session_id, skip=skip, limit=limit
            )
        ]

    def get_capacity_status(self, db: Session, session_id: str) -> CapacityStatus:
        return self.admission.get_capacity_status(db, session_id)

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def remove(self, db: Session, check_in_id: str) -> CheckInSchema:
        """Delete a check-in and give its slot back."""
        db_check_in = crud.check_in.get(db, check_in_id)
        if db_check_in is None:
            raise EntityNotFoundError("CheckIn", check_in_id)
        check_in = CheckInSchema.model_validate(db_check_in)

        # Only the caller whose delete removed the row decrements the counter.
        # The delete commits together with the decrement, so reconciliation
        # never sees the row gone while the counter still includes it.
        if not crud.check_in.delete(db, check_in_id=check_in_id, commit=False):
            db.rollback()
            raise EntityNotFoundError("CheckIn", check_in_id)
        try:
            self.admission.release_slot(db, check_in.session_id)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(f"Failed to remove check-in {check_in_id}: {exc}")
            raise
        self.cache.invalidate_session(check_in.session_id)

        capacity = self.admission.get_capacity_status(db, check_in.session_id)
        logger.info(f"Removed check-in {check_in_id} from session {check_in.session_id}")
        self.sink.publish(
            CheckInEvent(
                type="checkin.removed",
                check_in_id=check_in.id,
                participant_id=check_in.participant_id,
                session_id=check_in.session_id,
                method=check_in.method,
                is_late=check_in.is_late,
                check_ins_count=capacity.check_ins_count,
                capacity=capacity.capacity,
                timestamp=self.clock(),
            )
        )
        return check_in

    def remove_by_session(self, db: Session, session_id: str) -> RemoveBySessionResult:
        """Delete every check-in of a session and recompute its counter."""
        if crud.session.get(db, session_id) is None:
            raise EntityNotFoundError("Session", session_id)
        deleted = crud.check_in.delete_by_session(db, session_id=session_id)
        result = self.admission.reconcile_session(db, session_id)
        self.cache.invalidate_session(session_id)
        logger.warning(f"Removed {deleted} check-in(s) from session {session_id}")
        return RemoveBySessionResult(
            session_id=session_id,
            deleted=deleted,
            check_ins_count=result.expected,
        )
