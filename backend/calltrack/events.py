import enum
from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TranscriptionKind(str, enum.Enum):
    STARTED = "started"
    CONTENT = "content"
    STOPPED = "stopped"
    ERROR = "error"


class StatusEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: Literal["status"] = "status"
    provider_call_id: str
    status: str
    duration_seconds: Optional[int] = None


class RecordingEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: Literal["recording"] = "recording"
    provider_call_id: str
    recording_url: str
    recording_id: str
    duration_seconds: Optional[int] = None


class TranscriptionEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: Literal["transcription"] = "transcription"
    provider_call_id: str
    kind: TranscriptionKind
    text: Optional[str] = None
    is_final: Optional[bool] = None
    sequence: Optional[int] = None


class LegacyTranscriptionEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: Literal["legacy_transcription"] = "legacy_transcription"
    provider_call_id: Optional[str] = None
    recording_id: Optional[str] = None
    text: Optional[str] = None
    status: str


class TranscriptTimeoutEvent(BaseModel):
    """Raised by the sweeper for a transcript that stopped receiving updates."""

    model_config = ConfigDict(frozen=True)

    category: Literal["transcript_timeout"] = "transcript_timeout"
    provider_call_id: str
    stale_before: datetime


class TranscriptCorrection(BaseModel):
    """Administrative override; the only transition allowed to leave a terminal state."""

    model_config = ConfigDict(frozen=True)

    category: Literal["transcript_correction"] = "transcript_correction"
    provider_call_id: str
    text: str
    status: str = "completed"


CallEvent = Union[
    StatusEvent,
    RecordingEvent,
    TranscriptionEvent,
    LegacyTranscriptionEvent,
    TranscriptTimeoutEvent,
    TranscriptCorrection,
]


class CallState(BaseModel):
    """Snapshot of a call record the reconciler decides on."""

    model_config = ConfigDict(from_attributes=True)

    provider_call_id: str
    phone_number: str = ""
    call_status: str = "initiated"
    duration_seconds: int = 0
    duration_confirmed: bool = False
    recording_url: Optional[str] = None
    recording_id: Optional[str] = None
    transcript_text: Optional[str] = None
    transcript_status: str = "pending"
    transcript_sequences: List[int] = Field(default_factory=list)
    updated_at: Optional[datetime] = None

    @field_validator("transcript_sequences", mode="before")
    def default_sequences(cls, value: object) -> object:
        return value or []
