import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from calltrack.core.config import CALLING_MODES
from calltrack.core.database import SessionLocal
from calltrack.schemas import ConfigResponse, ReadinessResponse

router = APIRouter(tags=["health"])

logger = logging.getLogger(__name__)


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/ready", response_model=ReadinessResponse)
def ready(request: Request):
    checks = {
        "database": "ok",
        "twilio": "ok" if request.app.state.gateway is not None else "not_configured",
        "sweeper": "running" if request.app.state.sweeper.running else "idle",
    }
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Readiness check could not reach the database")
        checks["database"] = "error"
    finally:
        db.close()
    if checks["database"] != "ok":
        return JSONResponse(
            status_code=503,
            content=ReadinessResponse(status="degraded", checks=checks).model_dump(),
        )
    return ReadinessResponse(status="ready", checks=checks)


@router.get("/api/config", response_model=ConfigResponse)
def config(request: Request) -> ConfigResponse:
    settings = request.app.state.settings
    return ConfigResponse(
        calling_mode=settings.calling_mode,
        available_modes=sorted(CALLING_MODES),
        twilio_configured=request.app.state.gateway is not None,
        browser_calling_configured=settings.browser_calling_configured,
        sweeper_enabled=settings.sweeper_enabled,
    )
