"""
VIGIL REST API.

Pipeline: POST /detection, then POST /claims/build, then POST /audit.
Corpus lookups live under /corpus; GET /claims/{claim_id} exposes the
display_blocked flag of refuted claims.

Usage:
    uvicorn vigil.api.main:app --port 8000
"""
import os
import time
import uuid
import logging
from contextlib import asynccontextmanager
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError

from .deps import get_registry
from .routes import audit_router, claims_router, corpus_router, detection_router, health_router
from ..database.legal_db import get_legal_db
from ..errors import ReferenceNotFound, ResolutionUnavailable


class RequestIdFilter(logging.Filter):
    """Default request_id for records logged outside a request."""
    def filter(self, record):
        if not hasattr(record, "request_id"):
            record.request_id = "-"
        return True


logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format=os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"),
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(RequestIdFilter())
logger = logging.getLogger(__name__)

API_TITLE = "VIGIL API"
API_VERSION = os.getenv("APP_VERSION", "0.1.0")

# Pipeline errors mapped to (status, code); anything else is a 500
ERROR_STATUS = {
    ReferenceNotFound: (HTTPStatus.NOT_FOUND, "REFERENCE_NOT_FOUND"),
    ResolutionUnavailable: (HTTPStatus.SERVICE_UNAVAILABLE, "RESOLUTION_UNAVAILABLE"),
    ValueError: (HTTPStatus.BAD_REQUEST, "INVALID_REQUEST"),
}


def error_response(status: HTTPStatus, detail, code: str, headers=None, **extra) -> JSONResponse:
    """The {error, detail, code} envelope shared by every error."""
    return JSONResponse(
        status_code=int(status),
        content={"error": status.phrase, "detail": detail, "code": code, **extra},
        headers=headers,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting VIGIL API v{API_VERSION}")
    registry = get_registry()
    logger.info(f"Citation registry loaded: {len(registry.aliases)} aliases")
    try:
        get_legal_db().init_schema()
    except SQLAlchemyError as e:
        # Readiness reports the outage; the corpus may come up later
        logger.warning(f"Schema not initialized: {e}")
    yield


async def pipeline_error_handler(request: Request, exc: Exception) -> JSONResponse:
    status, code = next(v for t, v in ERROR_STATUS.items() if isinstance(exc, t))
    if isinstance(exc, ResolutionUnavailable):
        logger.error(f"[{getattr(request.state, 'request_id', '-')}] Corpus unavailable: {exc}")
        return error_response(status, str(exc), code, headers={"Retry-After": "30"}, retryable=True)
    return error_response(status, str(exc), code)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    detail = "; ".join(
        f"{' -> '.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    return error_response(HTTPStatus.UNPROCESSABLE_ENTITY, detail, "VALIDATION_ERROR")


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "-")
    logger.error(f"[{request_id}] Unhandled exception: {exc}", exc_info=True)
    detail = str(exc) if os.getenv("APP_ENV") == "development" else None
    return error_response(HTTPStatus.INTERNAL_SERVER_ERROR, detail, "INTERNAL_ERROR", request_id=request_id)


def create_app() -> FastAPI:
    app = FastAPI(title=API_TITLE, description=__doc__, version=API_VERSION, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def track_request(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        request.state.request_id = request_id
        started = time.perf_counter()

        response = await call_next(request)

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers.update({
            "X-Request-ID": request_id,
            "X-Process-Time-Ms": f"{elapsed_ms:.2f}",
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
        })
        if not request.url.path.startswith("/health"):
            logger.info(f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f}ms)")
        return response

    for error_type in ERROR_STATUS:
        app.add_exception_handler(error_type, pipeline_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    for router in (health_router, detection_router, claims_router, audit_router, corpus_router):
        app.include_router(router)

    @app.get("/", include_in_schema=False)
    async def root():
        return {"name": API_TITLE, "version": API_VERSION, "docs": "/docs"}

    return app


app = create_app()
