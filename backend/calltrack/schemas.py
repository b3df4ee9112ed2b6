from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class CallRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    phone_number: str
    provider_call_id: str
    call_status: str
    duration_seconds: int
    recording_url: Optional[str]
    recording_id: Optional[str]
    transcript_text: Optional[str]
    transcript_status: str
    created_at: datetime
    updated_at: datetime


class PlaceCallRequest(BaseModel):
    phone_number: str = Field(pattern=r"^\+?[1-9]\d{1,14}$")
    mode: Optional[str] = Field(default=None, pattern="^(phone|browser)$")


class PlaceCallResponse(BaseModel):
    success: bool = True
    provider_call_id: str
    mode: str


class WebhookAck(BaseModel):
    ok: bool = True
    outcome: str
    applied: bool = False
    provider_call_id: Optional[str] = None


class TranscriptCorrectionRequest(BaseModel):
    transcript_text: str = Field(min_length=1, max_length=100_000)
    status: str = Field(default="completed", pattern="^(completed|failed)$")


class CorrectionResponse(BaseModel):
    outcome: str
    applied: bool
    call: CallRecordOut


class SweepTriggerResponse(BaseModel):
    started: bool
    running: bool


class SweepReportOut(BaseModel):
    started_at: datetime
    finished_at: Optional[datetime]
    transcript_candidates: int
    status_candidates: int
    outcomes: Dict[str, int]
    errors: int


class ReadinessResponse(BaseModel):
    status: str
    checks: Dict[str, str]


class ConfigResponse(BaseModel):
    calling_mode: str
    available_modes: List[str]
    twilio_configured: bool
    browser_calling_configured: bool
    sweeper_enabled: bool


class VoiceTokenResponse(BaseModel):
    access_token: str
    identity: str
