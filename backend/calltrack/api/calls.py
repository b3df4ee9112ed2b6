from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from calltrack.core.database import get_db
from calltrack.errors import DuplicateKey, PlacementError
from calltrack.schemas import CallRecordOut, PlaceCallRequest, PlaceCallResponse
from calltrack.services.store import CallStore

router = APIRouter(prefix="/api/calls", tags=["calls"])


@router.get("", response_model=List[CallRecordOut])
def list_calls(
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> List[CallRecordOut]:
    return [CallRecordOut.model_validate(record) for record in CallStore(db).list(limit=limit)]


@router.get("/{provider_call_id}", response_model=CallRecordOut)
def get_call(provider_call_id: str, db: Session = Depends(get_db)) -> CallRecordOut:
    record = CallStore(db).get(provider_call_id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Call not found")
    return CallRecordOut.model_validate(record)


@router.post("", response_model=PlaceCallResponse)
async def place_call(
    data: PlaceCallRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> PlaceCallResponse:
    mode = data.mode or request.app.state.settings.calling_mode
    placer = request.app.state.placers.get(mode)
    if placer is None:
        # browser calls are dialed by the Voice SDK; the record is created by /api/webhooks/browser-voice
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{mode} calls are placed from the client with a token from /api/token",
        )
    try:
        provider_call_id = await placer.place(db, data.phone_number)
    except PlacementError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except DuplicateKey as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return PlaceCallResponse(provider_call_id=provider_call_id, mode=mode)
