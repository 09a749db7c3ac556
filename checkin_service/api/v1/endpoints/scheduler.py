# checkin_service/api/v1/endpoints/scheduler.py
"""
Operator endpoints for the background scheduler.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from checkin_service import scheduler as background_scheduler
from checkin_service.api import deps
from checkin_service.db.session import get_db
from checkin_service.schemas.check_in import ReconciliationReport
from checkin_service.schemas.token import TokenPayload
from checkin_service.services.admission_controller import AdmissionController
from checkin_service.services.lifecycle_scheduler import SessionLifecycleScheduler
from checkin_service.tasks import run_lifecycle_cycle

router = APIRouter(prefix="/scheduler", tags=["Scheduler"])


@router.get("/status")
def get_scheduler_status(
    lifecycle: SessionLifecycleScheduler = Depends(deps.get_lifecycle_scheduler),
):
    status_info = background_scheduler.get_scheduler_status()
    status_info["config"] = lifecycle.get_config().model_dump()
    return status_info


@router.post("/cycle", status_code=status.HTTP_202_ACCEPTED)
def force_cycle(current_user: TokenPayload = Depends(deps.get_current_user)):
    """Queue an immediate auto-open/auto-end pass on the worker."""
    task = run_lifecycle_cycle.delay()
    return {"status": "queued", "task_id": task.id}


@router.post("/reconcile", response_model=ReconciliationReport)
def reconcile_now(
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
    admission: AdmissionController = Depends(deps.get_admission_controller),
):
    """Run a reconciliation pass in-request and return what it fixed."""
    return admission.reconcile(db)


@router.post("/pause")
def pause_scheduler(current_user: TokenPayload = Depends(deps.get_current_user)):
    """Suspend automatic open/end and reconciliation in this process."""
    paused = background_scheduler.pause_scheduler()
    return {"changed": paused, "status": background_scheduler.get_scheduler_status()["status"]}


@router.post("/resume")
def resume_scheduler(current_user: TokenPayload = Depends(deps.get_current_user)):
    resumed = background_scheduler.resume_scheduler()
    return {"changed": resumed, "status": background_scheduler.get_scheduler_status()["status"]}
