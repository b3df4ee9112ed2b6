from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from calltrack.core.database import get_db
from calltrack.core.deps import get_publisher, get_sweeper, require_admin
from calltrack.events import TranscriptCorrection
from calltrack.schemas import (
    CallRecordOut,
    CorrectionResponse,
    SweepReportOut,
    SweepTriggerResponse,
    TranscriptCorrectionRequest,
)
from calltrack.services.lifecycle import apply_event
from calltrack.services.publisher import EventPublisher
from calltrack.services.reconciler import Outcome
from calltrack.services.store import CallStore
from calltrack.services.sweeper import Sweeper

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.post("/calls/{provider_call_id}/transcript", response_model=CorrectionResponse)
async def correct_transcript(
    provider_call_id: str,
    data: TranscriptCorrectionRequest,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
) -> CorrectionResponse:
    event = TranscriptCorrection(
        provider_call_id=provider_call_id,
        text=data.transcript_text,
        status=data.status,
    )
    result = await run_in_threadpool(apply_event, db, event)
    if result.outcome is Outcome.RECORD_NOT_FOUND:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Call not found")
    await publisher.publish_result(result)
    record = CallStore(db).get(provider_call_id)
    return CorrectionResponse(
        outcome=result.outcome.value,
        applied=result.applied,
        call=CallRecordOut.model_validate(record),
    )


@router.post("/sweep", response_model=SweepTriggerResponse)
async def trigger_sweep(sweeper: Sweeper = Depends(get_sweeper)) -> SweepTriggerResponse:
    started = sweeper.trigger()
    return SweepTriggerResponse(started=started, running=sweeper.running or started)


@router.get("/sweep", response_model=Optional[SweepReportOut])
def last_sweep(sweeper: Sweeper = Depends(get_sweeper)) -> Optional[SweepReportOut]:
    if sweeper.last_report is None:
        return None
    return SweepReportOut.model_validate(sweeper.last_report.model_dump())
