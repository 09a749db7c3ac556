# checkin_service/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from checkin_service.api.v1.api import api_router
from checkin_service.core.config import settings
from checkin_service.core.exceptions import CheckInServiceError
from checkin_service.db.base_class import Base
from checkin_service.db.session import engine
from checkin_service import models  # noqa: F401  (registers tables on Base)
from checkin_service.scheduler import init_scheduler, shutdown_scheduler

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Check-in service starting up...")
    if settings.ENV != "prod":
        # Production schemas are managed by migrations
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables checked and created if necessary.")
    if settings.SCHEDULER_ENABLED:
        init_scheduler()
    yield
    if settings.SCHEDULER_ENABLED:
        shutdown_scheduler()
    logger.info("Check-in service shutting down...")


app = FastAPI(
    title="GlobalConnect Check-in Service",
    version="1.0.0",
    description="""
        **GlobalConnect Check-in Service**

        Admits participants into sessions without ever overselling a room.

        ## Features

        * **Capacity admission**: atomic slot reservation across all API processes
        * **QR check-in**: scan-code lookup, verification and admission
        * **Session lifecycle**: automatic open before start, automatic end after finish
        * **Self-healing counters**: periodic reconciliation against live check-ins

        ## Authentication

        Mutating endpoints require JWT authentication via the `Authorization: Bearer <token>` header.
        """,
    lifespan=lifespan,
)

origins = [
    "http://localhost:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def check_in_error_handler(request: Request, exc: CheckInServiceError) -> JSONResponse:
    """Render the service error hierarchy as a JSON body with its own status code."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.add_exception_handler(CheckInServiceError, check_in_error_handler)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
def read_root():
    return {"message": "Welcome to the GlobalConnect Check-in Service"}
