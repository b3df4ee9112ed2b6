import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from calltrack.core.database import get_db
from calltrack.core.deps import get_publisher
from calltrack.errors import DuplicateKey, MalformedEvent
from calltrack.events import CallEvent
from calltrack.schemas import WebhookAck
from calltrack.services.lifecycle import apply_event
from calltrack.services.normalizer import (
    first_value,
    normalize_legacy_transcription,
    normalize_recording,
    normalize_status,
    normalize_transcription,
)
from calltrack.services.publisher import EventPublisher
from calltrack.services.store import CallStore
from calltrack.services.twilio_client import build_dial_twiml, build_error_twiml

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

logger = logging.getLogger(__name__)


async def read_payload(request: Request) -> dict:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError as exc:
            raise MalformedEvent("Body is not valid JSON") from exc
        if not isinstance(body, dict):
            raise MalformedEvent("JSON body must be an object")
        return body
    form = await request.form()
    return dict(form)


async def ingest(
    request: Request,
    db: Session,
    publisher: EventPublisher,
    normalize: Callable[[dict], Optional[CallEvent]],
) -> WebhookAck:
    payload = await read_payload(request)
    event = normalize(payload)
    if event is None:
        logger.info("Ignoring %s delivery: %s", request.url.path, payload.get("TranscriptionEvent"))
        return WebhookAck(outcome="ignored", provider_call_id=payload.get("CallSid"))
    result = await run_in_threadpool(apply_event, db, event)
    await publisher.publish_result(result)
    return WebhookAck(
        outcome=result.outcome.value,
        applied=result.applied,
        provider_call_id=result.provider_call_id,
    )


@router.post("/status", response_model=WebhookAck)
async def status_webhook(
    request: Request,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
) -> WebhookAck:
    return await ingest(request, db, publisher, normalize_status)


@router.post("/recording", response_model=WebhookAck)
async def recording_webhook(
    request: Request,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
) -> WebhookAck:
    return await ingest(request, db, publisher, normalize_recording)


@router.post("/realtime-transcription", response_model=WebhookAck)
async def realtime_transcription_webhook(
    request: Request,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
) -> WebhookAck:
    return await ingest(request, db, publisher, normalize_transcription)


@router.post("/transcription", response_model=WebhookAck)
async def legacy_transcription_webhook(
    request: Request,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
) -> WebhookAck:
    return await ingest(request, db, publisher, normalize_legacy_transcription)


@router.post("/browser-voice")
async def browser_voice_webhook(request: Request, db: Session = Depends(get_db)) -> Response:
    """TwiML for a call dialed from the browser Voice SDK; records it under its real CallSid."""
    payload = await read_payload(request)
    target = first_value(payload, "To", "to")
    call_id = first_value(payload, "CallSid", "callSid")
    if not target:
        logger.warning("Browser call %s without a target number", call_id)
        return Response(content=build_error_twiml("Error: No target number specified."), media_type="application/xml")
    if call_id:
        try:
            await run_in_threadpool(CallStore(db).create, target, call_id)
            logger.info("Browser call %s to %s recorded", call_id, target)
        except DuplicateKey:
            logger.info("Browser call %s already recorded", call_id)
    else:
        logger.warning("Browser call to %s arrived without CallSid; not recorded", target)
    twiml = build_dial_twiml(request.app.state.settings, target, "Connecting your browser call. Please wait.")
    return Response(content=twiml, media_type="application/xml")
