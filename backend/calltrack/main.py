import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from calltrack.api import admin, calls, health, voice, webhooks
from calltrack.core.config import settings
from calltrack.core.database import Base, SessionLocal, engine
from calltrack.errors import MalformedEvent
from calltrack.services.placement import build_placers
from calltrack.services.publisher import EventPublisher
from calltrack.services.sweeper import Sweeper
from calltrack.services.twilio_client import build_gateway

logger = logging.getLogger(__name__)


async def wait_for_database(max_attempts: int = 8, delay_seconds: float = 1.5) -> None:
    attempt = 0
    delay = delay_seconds
    while attempt < max_attempts:
        attempt += 1
        try:
            with engine.connect():
                return
        except OperationalError as exc:
            if attempt >= max_attempts:
                logger.error(
                    "Database connection failed after %s attempts.",
                    attempt,
                    exc_info=exc,
                )
                raise
            logger.warning(
                "Database not ready (attempt %s/%s). Retrying in %.1fs.",
                attempt,
                max_attempts,
                delay,
            )
            await asyncio.sleep(delay)
            delay = min(delay * 1.5, 10.0)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await wait_for_database(max_attempts=settings.db_connect_attempts)
    Base.metadata.create_all(bind=engine)

    gateway = build_gateway(settings)
    if gateway is None:
        logger.warning("Twilio credentials not found; provider lookups and phone calls are disabled")
    publisher = EventPublisher.from_url(
        settings.redis_url,
        enabled=settings.publish_events,
        timeout=settings.redis_timeout_seconds,
    )
    sweeper = Sweeper(
        SessionLocal,
        settings,
        transcript_provider=gateway,
        call_provider=gateway,
        on_result=publisher.publish_result,
    )

    app.state.settings = settings
    app.state.gateway = gateway
    app.state.publisher = publisher
    app.state.sweeper = sweeper
    app.state.placers = build_placers(settings, gateway)

    if settings.sweeper_enabled:
        sweeper.start()
    try:
        yield
    finally:
        await sweeper.stop()
        await publisher.close()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MalformedEvent)
async def malformed_event_handler(request: Request, exc: MalformedEvent) -> JSONResponse:
    logger.warning("Rejected %s delivery: %s", request.url.path, exc)
    return JSONResponse(status_code=400, content={"ok": False, "error": str(exc)})


app.include_router(health.router)
app.include_router(webhooks.router)
app.include_router(calls.router)
app.include_router(voice.router)
app.include_router(admin.router)
