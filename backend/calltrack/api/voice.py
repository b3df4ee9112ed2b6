from fastapi import APIRouter, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool

from calltrack.schemas import VoiceTokenResponse

router = APIRouter(prefix="/api", tags=["voice"])


@router.get("/token", response_model=VoiceTokenResponse)
async def voice_token(request: Request) -> VoiceTokenResponse:
    """Access token for the browser Voice SDK."""
    gateway = request.app.state.gateway
    if gateway is None or not request.app.state.settings.twilio_twiml_app_sid:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Browser calling not configured",
        )
    return VoiceTokenResponse(**await run_in_threadpool(gateway.create_access_token))
