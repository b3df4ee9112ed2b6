import logging
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from calltrack.events import CallEvent, CallState, LegacyTranscriptionEvent
from calltrack.services.reconciler import Outcome, Transition, reconcile
from calltrack.services.store import CallStore


logger = logging.getLogger(__name__)

WARNING_OUTCOMES = {
    Outcome.STALE,
    Outcome.RECORDING_CONFLICT,
    Outcome.RECORD_NOT_FOUND,
    Outcome.UNRESOLVED_CORRELATION,
    Outcome.TIMEOUT_EXPIRED,
}


class ReconcileResult(BaseModel):
    provider_call_id: Optional[str] = None
    outcome: Outcome
    applied: bool = False
    detail: str = ""
    state: Optional[CallState] = None


def resolve_call_id(store: CallStore, event: CallEvent) -> Optional[str]:
    if event.provider_call_id:
        return event.provider_call_id
    if isinstance(event, LegacyTranscriptionEvent) and event.recording_id:
        record = store.find_by_recording_id(event.recording_id)
        if record:
            return record.provider_call_id
    return None


def apply_event(db: Session, event: CallEvent) -> ReconcileResult:
    """Apply one event to its call inside a single row-locked transaction.

    Never raises for unknown calls, duplicates or reordering; those come back
    as non-applied results. Database errors propagate.
    """
    store = CallStore(db)
    provider_call_id = resolve_call_id(store, event)
    if provider_call_id is None:
        result = ReconcileResult(
            outcome=Outcome.UNRESOLVED_CORRELATION,
            detail=f"no call with recording {getattr(event, 'recording_id', None)}",
        )
        _log(result)
        return result

    try:
        record = store.get_for_update(provider_call_id)
        if record is None:
            db.rollback()
            result = ReconcileResult(
                provider_call_id=provider_call_id,
                outcome=Outcome.RECORD_NOT_FOUND,
                detail=f"{event.category} for unknown call",
            )
            _log(result)
            return result

        state = CallState.model_validate(record)
        transition: Transition = reconcile(state, event)
        if transition.applied:
            store.update(provider_call_id, transition.changes, commit=False)
            db.commit()
            db.refresh(record)
            state = CallState.model_validate(record)
        else:
            db.rollback()
    except Exception:
        db.rollback()
        raise

    result = ReconcileResult(
        provider_call_id=provider_call_id,
        outcome=transition.outcome,
        applied=transition.applied,
        detail=transition.detail,
        state=state,
    )
    _log(result)
    return result


def _log(result: ReconcileResult) -> None:
    message = f"{result.provider_call_id or '?'}: {result.outcome.value} ({result.detail})"
    if result.outcome in WARNING_OUTCOMES:
        logger.warning("Reconcile %s", message)
    else:
        logger.info("Reconcile %s", message)
