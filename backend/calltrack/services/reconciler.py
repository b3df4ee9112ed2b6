"""Call lifecycle state machine.

Every function here is pure: it takes a ``CallState`` snapshot and an event
and returns a ``Transition`` describing the field changes to persist. The
caller owns locking and persistence (see ``calltrack.services.lifecycle``).

Three sub-states evolve independently:

* call status: non-terminal values are accepted in any order, terminal
  values (completed, failed, busy, no-answer, canceled) are sticky;
* recording: unset -> set, a diverging redelivery is a recording conflict
  and the last write wins;
* transcript: pending -> streaming/processing -> completed/failed, the first
  terminal event wins.
"""
import enum
from typing import Any, Dict

from pydantic import BaseModel, Field

from calltrack.events import (
    CallEvent,
    CallState,
    LegacyTranscriptionEvent,
    RecordingEvent,
    StatusEvent,
    TranscriptCorrection,
    TranscriptionEvent,
    TranscriptionKind,
    TranscriptTimeoutEvent,
)
from calltrack.models import CallStatus, TranscriptStatus


NO_SPEECH_TEXT = "no speech detected"
STREAMING_ERROR_TEXT = "Real-time transcription failed"
LEGACY_FAILED_TEXT = "Transcription failed"
TIMEOUT_TEXT = "Transcription timed out"


class Outcome(str, enum.Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    IGNORED = "ignored"
    RECORDING_CONFLICT = "recording_conflict"
    RECORD_NOT_FOUND = "record_not_found"
    UNRESOLVED_CORRELATION = "unresolved_correlation"
    TIMEOUT_EXPIRED = "timeout_expired"
    CORRECTED = "corrected"


class Transition(BaseModel):
    changes: Dict[str, Any] = Field(default_factory=dict)
    outcome: Outcome
    detail: str = ""

    @property
    def applied(self) -> bool:
        return bool(self.changes)

    def apply_to(self, state: CallState) -> CallState:
        if not self.changes:
            return state
        return state.model_copy(update=self.changes)


def _noop(outcome: Outcome, detail: str) -> Transition:
    return Transition(outcome=outcome, detail=detail)


def reconcile(state: CallState, event: CallEvent) -> Transition:
    if isinstance(event, StatusEvent):
        return apply_status(state, event)
    if isinstance(event, RecordingEvent):
        return apply_recording(state, event)
    if isinstance(event, TranscriptionEvent):
        return apply_transcription(state, event)
    if isinstance(event, LegacyTranscriptionEvent):
        return apply_legacy_transcription(state, event)
    if isinstance(event, TranscriptTimeoutEvent):
        return apply_transcript_timeout(state, event)
    if isinstance(event, TranscriptCorrection):
        return apply_correction(state, event)
    raise TypeError(f"Unsupported event type {type(event).__name__}")


def apply_status(state: CallState, event: StatusEvent) -> Transition:
    current = state.call_status
    incoming = event.status
    if current in CallStatus.TERMINAL:
        if incoming != current:
            return _noop(Outcome.STALE, f"{incoming} after terminal {current}")
        # redelivered terminal status; only a corrected duration matters
        if (
            incoming == CallStatus.COMPLETED
            and event.duration_seconds is not None
            and (event.duration_seconds != state.duration_seconds or not state.duration_confirmed)
        ):
            return Transition(
                changes={"duration_seconds": event.duration_seconds, "duration_confirmed": True},
                outcome=Outcome.APPLIED,
                detail=f"duration {state.duration_seconds}s -> {event.duration_seconds}s",
            )
        return _noop(Outcome.DUPLICATE, f"already {current}")

    changes: Dict[str, Any] = {}
    if incoming != current:
        changes["call_status"] = incoming
    if incoming == CallStatus.COMPLETED and event.duration_seconds is not None:
        changes["duration_seconds"] = event.duration_seconds
        changes["duration_confirmed"] = True
    if not changes:
        return _noop(Outcome.DUPLICATE, f"already {current}")
    return Transition(changes=changes, outcome=Outcome.APPLIED, detail=f"{current} -> {incoming}")


def apply_recording(state: CallState, event: RecordingEvent) -> Transition:
    incoming = {"recording_url": event.recording_url, "recording_id": event.recording_id}
    if not state.recording_url and not state.recording_id:
        return Transition(changes=incoming, outcome=Outcome.APPLIED, detail=f"recording {event.recording_id}")
    if state.recording_url == event.recording_url and state.recording_id == event.recording_id:
        return _noop(Outcome.DUPLICATE, f"recording {event.recording_id} already set")
    changes = {key: value for key, value in incoming.items() if getattr(state, key) != value}
    return Transition(
        changes=changes,
        outcome=Outcome.RECORDING_CONFLICT,
        detail=f"recording {state.recording_id} replaced by {event.recording_id}",
    )


def apply_transcription(state: CallState, event: TranscriptionEvent) -> Transition:
    status = state.transcript_status
    terminal = status in TranscriptStatus.TERMINAL

    if event.kind is TranscriptionKind.STARTED:
        if terminal:
            return _noop(Outcome.STALE, f"started after transcript {status}")
        if status == TranscriptStatus.STREAMING:
            return _noop(Outcome.DUPLICATE, "already streaming")
        return Transition(
            changes={"transcript_status": TranscriptStatus.STREAMING},
            outcome=Outcome.APPLIED,
            detail=f"{status} -> streaming",
        )

    if event.kind is TranscriptionKind.CONTENT:
        text = (event.text or "").strip()
        if not event.is_final or not text:
            return _noop(Outcome.IGNORED, "partial or empty segment")
        if terminal:
            return _noop(Outcome.STALE, f"segment after transcript {status}")
        if event.sequence is not None and event.sequence in state.transcript_sequences:
            return _noop(Outcome.DUPLICATE, f"segment {event.sequence} already appended")
        existing = (state.transcript_text or "").strip()
        changes: Dict[str, Any] = {"transcript_text": f"{existing} {text}" if existing else text}
        if event.sequence is not None:
            changes["transcript_sequences"] = [*state.transcript_sequences, event.sequence]
        if status != TranscriptStatus.STREAMING:
            changes["transcript_status"] = TranscriptStatus.STREAMING
        return Transition(changes=changes, outcome=Outcome.APPLIED, detail="segment appended")

    if event.kind is TranscriptionKind.STOPPED:
        if terminal:
            return _noop(Outcome.DUPLICATE, f"transcript already {status}")
        if (state.transcript_text or "").strip():
            return Transition(
                changes={"transcript_status": TranscriptStatus.COMPLETED},
                outcome=Outcome.APPLIED,
                detail="transcript completed",
            )
        return Transition(
            changes={"transcript_status": TranscriptStatus.COMPLETED, "transcript_text": NO_SPEECH_TEXT},
            outcome=Outcome.APPLIED,
            detail="transcript completed without speech",
        )

    # error
    if terminal:
        return _noop(Outcome.STALE, f"error after transcript {status}")
    return Transition(
        changes={
            "transcript_status": TranscriptStatus.FAILED,
            "transcript_text": (event.text or "").strip() or STREAMING_ERROR_TEXT,
        },
        outcome=Outcome.APPLIED,
        detail="transcript failed",
    )


def apply_legacy_transcription(state: CallState, event: LegacyTranscriptionEvent) -> Transition:
    status = state.transcript_status
    if status in TranscriptStatus.TERMINAL:
        if event.status == status:
            return _noop(Outcome.DUPLICATE, f"transcript already {status}")
        return _noop(Outcome.STALE, f"legacy {event.status} after transcript {status}")

    if event.status == TranscriptStatus.PROCESSING:
        if status != TranscriptStatus.PENDING:
            return _noop(Outcome.DUPLICATE, f"transcript already {status}")
        return Transition(
            changes={"transcript_status": TranscriptStatus.PROCESSING},
            outcome=Outcome.APPLIED,
            detail="pending -> processing",
        )

    if event.status == TranscriptStatus.COMPLETED:
        text = (event.text or "").strip() or NO_SPEECH_TEXT
        return Transition(
            changes={"transcript_status": TranscriptStatus.COMPLETED, "transcript_text": text},
            outcome=Outcome.APPLIED,
            detail="legacy transcript completed",
        )

    return Transition(
        changes={
            "transcript_status": TranscriptStatus.FAILED,
            "transcript_text": (event.text or "").strip() or LEGACY_FAILED_TEXT,
        },
        outcome=Outcome.APPLIED,
        detail="legacy transcript failed",
    )


def apply_transcript_timeout(state: CallState, event: TranscriptTimeoutEvent) -> Transition:
    status = state.transcript_status
    if status not in TranscriptStatus.OPEN:
        return _noop(Outcome.STALE, f"transcript already {status}")
    if state.updated_at is not None and state.updated_at >= event.stale_before:
        return _noop(Outcome.STALE, "record updated since sweep started")
    if (state.transcript_text or "").strip():
        return Transition(
            changes={"transcript_status": TranscriptStatus.COMPLETED},
            outcome=Outcome.TIMEOUT_EXPIRED,
            detail=f"{status} -> completed after timeout",
        )
    return Transition(
        changes={"transcript_status": TranscriptStatus.FAILED, "transcript_text": TIMEOUT_TEXT},
        outcome=Outcome.TIMEOUT_EXPIRED,
        detail=f"{status} -> failed after timeout",
    )


def apply_correction(state: CallState, event: TranscriptCorrection) -> Transition:
    text = event.text.strip()
    if event.status == TranscriptStatus.COMPLETED and not text:
        text = NO_SPEECH_TEXT
    changes = {}
    if state.transcript_text != text:
        changes["transcript_text"] = text
    if state.transcript_status != event.status:
        changes["transcript_status"] = event.status
    if not changes:
        return _noop(Outcome.DUPLICATE, "transcript already matches correction")
    return Transition(changes=changes, outcome=Outcome.CORRECTED, detail=f"transcript set to {event.status}")

