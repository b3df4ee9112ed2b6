import json
from typing import Any, Mapping, Optional

from calltrack.errors import MalformedEvent
from calltrack.events import (
    LegacyTranscriptionEvent,
    RecordingEvent,
    StatusEvent,
    TranscriptionEvent,
    TranscriptionKind,
)
from calltrack.models import CallStatus, TranscriptStatus


STATUS_ALIASES = {
    "queued": CallStatus.INITIATED,
    "in_progress": CallStatus.IN_PROGRESS,
    "inprogress": CallStatus.IN_PROGRESS,
    "answered": CallStatus.IN_PROGRESS,
    "no_answer": CallStatus.NO_ANSWER,
    "noanswer": CallStatus.NO_ANSWER,
    "cancelled": CallStatus.CANCELED,
}

TRANSCRIPTION_KINDS = {
    "transcription-started": TranscriptionKind.STARTED,
    "transcription-content": TranscriptionKind.CONTENT,
    "transcription-stopped": TranscriptionKind.STOPPED,
    "transcription-error": TranscriptionKind.ERROR,
    "started": TranscriptionKind.STARTED,
    "content": TranscriptionKind.CONTENT,
    "stopped": TranscriptionKind.STOPPED,
    "error": TranscriptionKind.ERROR,
}

LEGACY_STATUSES = {
    "completed": TranscriptStatus.COMPLETED,
    "failed": TranscriptStatus.FAILED,
    "in-progress": TranscriptStatus.PROCESSING,
    "in_progress": TranscriptStatus.PROCESSING,
    "processing": TranscriptStatus.PROCESSING,
    "queued": TranscriptStatus.PROCESSING,
}

TRUE_VALUES = {"true", "1", "yes", "y", "t"}


def first_value(payload: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = payload.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def require_call_id(payload: Mapping[str, Any]) -> str:
    call_id = first_value(payload, "CallSid", "callSid", "provider_call_id")
    if not call_id:
        raise MalformedEvent("Missing CallSid")
    return call_id


def parse_duration(value: Any) -> Optional[int]:
    """Non-negative whole seconds, or None when the provider did not report one."""
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = int(str(value).strip())
    except ValueError:
        return None
    if seconds < 0:
        return None
    return seconds


def parse_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUE_VALUES


def parse_sequence(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def normalize_call_status(value: Optional[str]) -> str:
    if not value:
        raise MalformedEvent("Missing CallStatus")
    status = value.strip().lower()
    status = STATUS_ALIASES.get(status, status)
    if status not in CallStatus.ALL:
        raise MalformedEvent(f"Unknown call status '{value}'")
    return status


def load_transcription_data(value: Any) -> dict:
    if value is None or value == "":
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    try:
        data = json.loads(str(value))
    except json.JSONDecodeError:
        # some senders post the bare transcript text
        return {"transcript": str(value)}
    if isinstance(data, dict):
        return data
    return {"transcript": str(data)}


def normalize_status(payload: Mapping[str, Any]) -> StatusEvent:
    call_id = require_call_id(payload)
    status = normalize_call_status(first_value(payload, "CallStatus", "callStatus", "status"))
    return StatusEvent(
        provider_call_id=call_id,
        status=status,
        duration_seconds=parse_duration(payload.get("CallDuration", payload.get("duration"))),
    )


def normalize_recording(payload: Mapping[str, Any]) -> RecordingEvent:
    call_id = require_call_id(payload)
    recording_url = first_value(payload, "RecordingUrl", "recordingUrl")
    recording_id = first_value(payload, "RecordingSid", "recordingSid")
    if not recording_url or not recording_id:
        raise MalformedEvent("Missing RecordingUrl or RecordingSid")
    duration = payload.get("RecordingDuration")
    if duration is None:
        duration = payload.get("CallDuration")
    return RecordingEvent(
        provider_call_id=call_id,
        recording_url=recording_url,
        recording_id=recording_id,
        duration_seconds=parse_duration(duration),
    )


def normalize_transcription(payload: Mapping[str, Any]) -> Optional[TranscriptionEvent]:
    """Streaming transcription callback. Unknown event kinds return None."""
    call_id = require_call_id(payload)
    raw_kind = (first_value(payload, "TranscriptionEvent", "event", "kind") or "").lower()
    kind = TRANSCRIPTION_KINDS.get(raw_kind)
    if kind is None:
        return None
    data = load_transcription_data(payload.get("TranscriptionData"))
    text = None
    if kind is TranscriptionKind.CONTENT:
        text = data.get("transcript")
    elif kind is TranscriptionKind.ERROR:
        text = data.get("error") or first_value(payload, "TranscriptionError", "ErrorMessage")
    is_final = parse_bool(payload.get("Final"))
    if is_final is None:
        is_final = parse_bool(data.get("final"))
    return TranscriptionEvent(
        provider_call_id=call_id,
        kind=kind,
        text=str(text).strip() if text is not None else None,
        is_final=is_final,
        sequence=parse_sequence(payload.get("SequenceNumber")),
    )


def normalize_legacy_transcription(payload: Mapping[str, Any]) -> LegacyTranscriptionEvent:
    call_id = first_value(payload, "CallSid", "callSid")
    recording_id = first_value(payload, "RecordingSid", "recordingSid")
    if not call_id and not recording_id:
        raise MalformedEvent("Missing CallSid and RecordingSid")
    raw_status = (first_value(payload, "TranscriptionStatus", "status") or "").lower()
    status = LEGACY_STATUSES.get(raw_status)
    if status is None:
        raise MalformedEvent(f"Unknown transcription status '{raw_status}'")
    text = first_value(payload, "TranscriptionText", "text")
    return LegacyTranscriptionEvent(
        provider_call_id=call_id,
        recording_id=recording_id,
        text=text,
        status=status,
    )
