"""FastAPI backend for Dripline."""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from dripline import __version__
from dripline import api_state as state
from dripline.api_errors import (
    APIException,
    api_exception_handler,
    dripline_exception_handler,
)
from dripline.config import configure_logging, get_settings
from dripline.errors import DriplineError
from dripline.state import get_database

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the stores and services, and stop the scheduler on shutdown."""
    state._app_state["shutting_down"] = False

    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        format=settings.log_format,
        sanitize_logs=settings.sanitize_logs,
    )

    state.initialize(
        get_database(),
        settings=settings,
        run_scheduler=settings.api_run_scheduler,
    )
    logger.info("Application startup complete - ready to serve requests")

    yield

    logger.info("Beginning graceful shutdown...")
    state.shutdown()
    logger.info("Graceful shutdown complete")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with timing and a request ID.

    Requests other than health checks are rejected during shutdown.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        if state._app_state["shutting_down"] and not path.startswith("/health"):
            return JSONResponse(
                status_code=503,
                content={"detail": "Service shutting down"},
                headers={"Retry-After": "30"},
            )

        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
        method = request.method
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"[{request_id}] {method} {path} - 500 ERROR in {duration_ms:.1f}ms - {e}",
                extra={
                    "request_id": request_id,
                    "status_code": 500,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        status_code = response.status_code
        log_level = logging.WARNING if status_code >= 400 else logging.INFO
        logger.log(
            log_level,
            f"[{request_id}] {method} {path} - {status_code} in {duration_ms:.1f}ms",
            extra={
                "request_id": request_id,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Build the API application with its routers and error handlers."""
    from dripline.api_routes import enrollments, health, workflows

    application = FastAPI(title="Dripline", version=__version__, lifespan=lifespan)
    application.add_middleware(RequestLoggingMiddleware)
    application.add_exception_handler(DriplineError, dripline_exception_handler)
    application.add_exception_handler(APIException, api_exception_handler)

    v1_router = APIRouter(prefix="/v1", tags=["v1"])
    v1_router.include_router(workflows.router)
    v1_router.include_router(enrollments.router)

    application.include_router(v1_router)
    application.include_router(health.router)
    return application


app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
