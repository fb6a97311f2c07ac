"""Health check and root endpoints."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, HTTPException

from dripline import __version__
from dripline import api_state as state

router = APIRouter()


@router.get("/")
def root() -> dict:
    """Root endpoint."""
    return {"app": "Dripline", "version": __version__, "status": "running"}


@router.get("/health")
def health_check() -> dict:
    """Basic health check (liveness probe)."""
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


@router.get("/health/ready")
def readiness_check() -> dict:
    """Readiness probe - is the application ready to serve traffic?"""
    if not state._app_state["ready"]:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "reason": "Application not initialized"},
        )
    if state._app_state["shutting_down"]:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "reason": "Application shutting down"},
        )
    return {
        "status": "ready",
        "scheduler_running": bool(state.driver and state.driver.running),
    }
