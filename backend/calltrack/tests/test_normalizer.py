import json

import pytest

from calltrack.errors import MalformedEvent
from calltrack.events import TranscriptionKind
from calltrack.services.normalizer import (
    normalize_legacy_transcription,
    normalize_recording,
    normalize_status,
    normalize_transcription,
)


def test_status_payload_normalized():
    event = normalize_status({"CallSid": "CA1", "CallStatus": "In-Progress"})
    assert event.provider_call_id == "CA1"
    assert event.status == "in-progress"
    assert event.duration_seconds is None


def test_status_aliases():
    assert normalize_status({"CallSid": "CA1", "CallStatus": "queued"}).status == "initiated"
    assert normalize_status({"CallSid": "CA1", "CallStatus": "no_answer"}).status == "no-answer"


def test_status_duration_parsing():
    assert normalize_status({"CallSid": "CA1", "CallStatus": "completed", "CallDuration": "42"}).duration_seconds == 42
    assert normalize_status({"CallSid": "CA1", "CallStatus": "completed", "CallDuration": "0"}).duration_seconds == 0
    assert normalize_status({"CallSid": "CA1", "CallStatus": "completed", "CallDuration": "abc"}).duration_seconds is None
    assert normalize_status({"CallSid": "CA1", "CallStatus": "completed", "CallDuration": "-3"}).duration_seconds is None


@pytest.mark.parametrize(
    "payload",
    [
        {"CallStatus": "ringing"},
        {"CallSid": "  ", "CallStatus": "ringing"},
        {"CallSid": "CA1"},
        {"CallSid": "CA1", "CallStatus": "exploded"},
    ],
)
def test_malformed_status_rejected(payload):
    with pytest.raises(MalformedEvent):
        normalize_status(payload)


def test_recording_requires_url_and_id():
    event = normalize_recording({"CallSid": "CA1", "RecordingUrl": "https://x/RE1", "RecordingSid": "RE1"})
    assert event.recording_id == "RE1"
    with pytest.raises(MalformedEvent):
        normalize_recording({"CallSid": "CA1", "RecordingSid": "RE1"})


def test_transcription_content_from_json_data():
    event = normalize_transcription(
        {
            "CallSid": "CA1",
            "TranscriptionEvent": "transcription-content",
            "TranscriptionData": json.dumps({"transcript": " Hello ", "confidence": 0.9}),
            "Final": "true",
            "SequenceNumber": "3",
        }
    )
    assert event.kind is TranscriptionKind.CONTENT
    assert event.text == "Hello"
    assert event.is_final is True
    assert event.sequence == 3


def test_transcription_partial_segment():
    event = normalize_transcription(
        {
            "CallSid": "CA1",
            "TranscriptionEvent": "transcription-content",
            "TranscriptionData": "{\"transcript\": \"Hel\"}",
            "Final": "false",
        }
    )
    assert event.is_final is False


def test_transcription_plain_text_data():
    event = normalize_transcription(
        {"CallSid": "CA1", "TranscriptionEvent": "transcription-content", "TranscriptionData": "just words", "Final": "true"}
    )
    assert event.text == "just words"


def test_unknown_transcription_kind_returns_none():
    assert normalize_transcription({"CallSid": "CA1", "TranscriptionEvent": "transcription-paused"}) is None


def test_legacy_transcription_by_recording_only():
    event = normalize_legacy_transcription(
        {"RecordingSid": "RE1", "TranscriptionStatus": "completed", "TranscriptionText": "Hi"}
    )
    assert event.provider_call_id is None
    assert event.recording_id == "RE1"
    assert event.status == "completed"
    assert event.text == "Hi"


def test_legacy_transcription_rejects_missing_keys_and_status():
    with pytest.raises(MalformedEvent):
        normalize_legacy_transcription({"TranscriptionStatus": "completed"})
    with pytest.raises(MalformedEvent):
        normalize_legacy_transcription({"CallSid": "CA1", "TranscriptionStatus": "weird"})
