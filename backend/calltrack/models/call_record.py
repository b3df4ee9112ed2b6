from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text
from calltrack.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CallStatus:
    INITIATED = "initiated"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BUSY = "busy"
    NO_ANSWER = "no-answer"
    CANCELED = "canceled"

    ALL = frozenset({INITIATED, RINGING, IN_PROGRESS, COMPLETED, FAILED, BUSY, NO_ANSWER, CANCELED})
    TERMINAL = frozenset({COMPLETED, FAILED, BUSY, NO_ANSWER, CANCELED})


class TranscriptStatus:
    PENDING = "pending"
    STREAMING = "streaming"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = frozenset({PENDING, STREAMING, PROCESSING, COMPLETED, FAILED})
    TERMINAL = frozenset({COMPLETED, FAILED})
    OPEN = frozenset({PENDING, STREAMING, PROCESSING})


class CallRecord(Base):
    __tablename__ = "call_records"

    id = Column(Integer, primary_key=True)
    phone_number = Column(String(32), nullable=False)
    provider_call_id = Column(String(64), unique=True, nullable=False, index=True)
    call_status = Column(String(20), nullable=False, default=CallStatus.INITIATED)
    duration_seconds = Column(Integer, nullable=False, default=0)
    duration_confirmed = Column(Boolean, nullable=False, default=False)
    recording_url = Column(String(1024))
    recording_id = Column(String(64), index=True)
    transcript_text = Column(Text)
    transcript_status = Column(String(20), nullable=False, default=TranscriptStatus.PENDING, index=True)
    transcript_sequences = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
