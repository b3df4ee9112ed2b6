from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from calltrack.errors import DuplicateKey
from calltrack.models import CallRecord, CallStatus, TranscriptStatus, utcnow


IMMUTABLE_FIELDS = frozenset({"id", "phone_number", "provider_call_id", "created_at"})


class CallStore:
    """Keyed access to call records.

    Records are only ever created and updated here. ``update`` never commits
    on its own when ``commit=False`` so the reconciler can keep the read,
    decision and write inside one transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(self, phone_number: str, provider_call_id: str) -> int:
        now = utcnow()
        record = CallRecord(
            phone_number=phone_number,
            provider_call_id=provider_call_id,
            call_status=CallStatus.INITIATED,
            duration_seconds=0,
            duration_confirmed=False,
            transcript_status=TranscriptStatus.PENDING,
            transcript_sequences=[],
            created_at=now,
            updated_at=now,
        )
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateKey(provider_call_id) from exc
        self.db.refresh(record)
        return record.id

    def get(self, provider_call_id: str) -> Optional[CallRecord]:
        return (
            self.db.query(CallRecord)
            .filter(CallRecord.provider_call_id == provider_call_id)
            .first()
        )

    def get_for_update(self, provider_call_id: str) -> Optional[CallRecord]:
        return (
            self.db.query(CallRecord)
            .filter(CallRecord.provider_call_id == provider_call_id)
            .with_for_update()
            .first()
        )

    def find_by_recording_id(self, recording_id: str) -> Optional[CallRecord]:
        return (
            self.db.query(CallRecord)
            .filter(CallRecord.recording_id == recording_id)
            .order_by(CallRecord.created_at.desc())
            .first()
        )

    def update(self, provider_call_id: str, fields: dict, commit: bool = True) -> int:
        illegal = IMMUTABLE_FIELDS.intersection(fields)
        if illegal:
            raise ValueError(f"Cannot update immutable field(s): {', '.join(sorted(illegal))}")
        values = dict(fields)
        values["updated_at"] = utcnow()
        applied = (
            self.db.query(CallRecord)
            .filter(CallRecord.provider_call_id == provider_call_id)
            .update(values, synchronize_session="fetch")
        )
        if commit:
            self.db.commit()
        return applied

    def list(self, limit: int = 100, newest_first: bool = True) -> List[CallRecord]:
        order = CallRecord.created_at.desc() if newest_first else CallRecord.created_at.asc()
        return self.db.query(CallRecord).order_by(order, CallRecord.id.desc()).limit(limit).all()

    def count(self) -> int:
        return self.db.query(func.count(CallRecord.id)).scalar() or 0

    def list_transcript_candidates(self, limit: int = 100) -> List[CallRecord]:
        return (
            self.db.query(CallRecord)
            .filter(CallRecord.transcript_status.in_(sorted(TranscriptStatus.OPEN)))
            .order_by(CallRecord.updated_at.asc())
            .limit(limit)
            .all()
        )

    def list_status_candidates(self, stale_before: datetime, limit: int = 100) -> List[CallRecord]:
        return (
            self.db.query(CallRecord)
            .filter(CallRecord.updated_at < stale_before)
            .filter(
                or_(
                    CallRecord.call_status.notin_(sorted(CallStatus.TERMINAL)),
                    (CallRecord.call_status == CallStatus.COMPLETED)
                    & CallRecord.duration_confirmed.is_(False),
                )
            )
            .order_by(CallRecord.updated_at.asc())
            .limit(limit)
            .all()
        )
