# checkin_service/api/v1/endpoints/health.py
"""
Health check endpoints for monitoring system status.
"""
from fastapi import APIRouter, HTTPException, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session
from checkin_service.db.session import get_db
from checkin_service.db.redis import cache_breaker, redis_client

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
def health_check():
    """Basic health check - API is responding."""
    return {"status": "healthy", "service": "checkin-service"}


@router.get("/db")
def database_health(db: Session = Depends(get_db)):
    """Check database connectivity."""
    try:
        db.execute(text("SELECT 1"))
        return {"status": "healthy", "component": "database"}
    except Exception as e:
        raise HTTPException(
            status_code=503,
            detail=f"Database unhealthy: {str(e)}",
        )


@router.get("/redis")
def redis_health():
    """
    Check Redis connectivity. Check-ins keep working without Redis, so the
    response also says whether the cache circuit breaker is currently open.
    """
    try:
        redis_client.ping()
        return {
            "status": "healthy",
            "component": "redis",
            "circuit_open": not cache_breaker.allow(),
        }
    except Exception as e:
        raise HTTPException(
            status_code=503,
            detail=f"Redis unhealthy: {str(e)}",
        )
