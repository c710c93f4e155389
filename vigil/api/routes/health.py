"""
Health Check Endpoints.

Provides health status for the API and its dependencies.
"""
import os
import time
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..models import HealthStatus, ServiceHealth
from ..deps import get_db, get_audit_service
from ...audit.client import AuditClient
from ...database.legal_db import LegalDB

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["Health"])

VERSION = os.getenv("APP_VERSION", "0.1.0")


def _ping_database(db: LegalDB) -> float:
    start = time.time()
    with db.get_session() as session:
        session.execute(text("SELECT 1"))
    return (time.time() - start) * 1000


@router.get("", response_model=HealthStatus)
async def health_check(
    db: LegalDB = Depends(get_db),
    client: AuditClient = Depends(get_audit_service),
):
    """
    Basic health check endpoint.

    Returns overall system status.
    """
    services = {}
    overall_healthy = True

    try:
        latency = _ping_database(db)
        services["database"] = f"healthy ({latency:.1f}ms)"
    except SQLAlchemyError as e:
        services["database"] = f"unhealthy: {str(e)}"
        overall_healthy = False

    services["audit_service"] = "mock_mode" if client.use_mock else f"configured ({client.model})"

    return HealthStatus(
        status="healthy" if overall_healthy else "unhealthy",
        version=VERSION,
        services=services,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/live")
async def liveness():
    """
    Kubernetes liveness check.

    Returns 200 if the service is running.
    """
    return {"status": "alive"}


@router.get("/ready")
async def readiness(db: LegalDB = Depends(get_db)):
    """
    Kubernetes readiness check.

    Returns 200 if the database answers, 503 otherwise.
    """
    try:
        _ping_database(db)
        return {"status": "ready"}
    except SQLAlchemyError as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "not ready", "error": str(e)})


@router.get("/detailed", response_model=dict)
async def detailed_health(
    db: LegalDB = Depends(get_db),
    client: AuditClient = Depends(get_audit_service),
):
    """
    Detailed health check with all service statuses.

    Returns comprehensive health information for monitoring.
    """
    checks = []

    try:
        latency = _ping_database(db)
        checks.append(ServiceHealth(name="database", status="healthy", latency_ms=latency))
    except SQLAlchemyError as e:
        checks.append(ServiceHealth(name="database", status="unhealthy", error=str(e)))

    checks.append(ServiceHealth(
        name="audit_api",
        status="mock_mode" if client.use_mock else "configured",
    ))

    overall = "healthy" if all(c.status in ["healthy", "configured", "mock_mode"] for c in checks) else "degraded"

    return {
        "status": overall,
        "version": VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": [c.model_dump() for c in checks],
    }
