# checkin_service/api/v1/api.py

from fastapi import APIRouter
from checkin_service.api.v1.endpoints import check_ins, sessions, scheduler, health

# This is the main router for the v1 API.
api_router = APIRouter()

api_router.include_router(check_ins.router)
api_router.include_router(sessions.router)
api_router.include_router(scheduler.router)
api_router.include_router(health.router)
