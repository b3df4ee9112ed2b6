"""Periodic repair of call state that webhooks failed to deliver.

A sweep looks at every call whose transcript is still open. Calls whose
recording has a finished transcript at the provider get it through the
normal reconciler path; calls nobody touched for ``stale_after_seconds``
are closed with a timeout. When the telephony client is configured, stale
calls with an open call status or an unconfirmed duration are refreshed
from the provider as well.

Sweeps are single-flight: a tick that fires while a sweep is running is
skipped.
"""
import asyncio
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from calltrack.core.config import Settings
from calltrack.errors import MalformedEvent
from calltrack.events import (
    CallEvent,
    CallState,
    LegacyTranscriptionEvent,
    StatusEvent,
    TranscriptTimeoutEvent,
)
from calltrack.models import TranscriptStatus, utcnow
from calltrack.services.lifecycle import ReconcileResult, apply_event
from calltrack.services.normalizer import normalize_call_status
from calltrack.services.store import CallStore


logger = logging.getLogger(__name__)

PROVIDER_TRANSCRIPT_STATUSES = {
    "completed": TranscriptStatus.COMPLETED,
    "failed": TranscriptStatus.FAILED,
    "canceled": TranscriptStatus.FAILED,
}


class TranscriptProvider(Protocol):
    def list_recent_transcripts(self, limit: int = 50) -> List[Dict[str, Any]]: ...

    def fetch_transcript(self, transcript_id: str) -> Dict[str, Any]: ...


class CallProvider(Protocol):
    def fetch_call(self, provider_call_id: str) -> Dict[str, Any]: ...


class SweepReport(BaseModel):
    started_at: datetime
    finished_at: Optional[datetime] = None
    transcript_candidates: int = 0
    status_candidates: int = 0
    outcomes: Dict[str, int] = Field(default_factory=dict)
    errors: int = 0

    def record(self, result: ReconcileResult) -> None:
        counts = Counter(self.outcomes)
        counts[result.outcome.value] += 1
        self.outcomes = dict(counts)


class Sweeper:
    def __init__(
        self,
        session_factory: Callable,
        settings: Settings,
        transcript_provider: Optional[TranscriptProvider] = None,
        call_provider: Optional[CallProvider] = None,
        clock: Callable[[], datetime] = utcnow,
        on_result: Optional[Callable[[ReconcileResult], Awaitable[None]]] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.transcript_provider = transcript_provider
        self.call_provider = call_provider
        self.clock = clock
        self.on_result = on_result
        self.last_report: Optional[SweepReport] = None
        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def sweep(self) -> Optional[SweepReport]:
        """Run one sweep now, or return None if another sweep holds the slot."""
        if self._lock.locked():
            logger.warning("Sweep already running; skipping")
            return None
        async with self._lock:
            report = await self._sweep()
        self.last_report = report
        return report

    def trigger(self) -> bool:
        if self._lock.locked():
            logger.warning("Sweep tick skipped; previous sweep still running")
            return False
        self._inflight = asyncio.create_task(self._guarded_sweep())
        return True

    async def _guarded_sweep(self) -> None:
        try:
            await self.sweep()
        except Exception:
            logger.exception("Sweep failed")

    async def run_forever(self) -> None:
        interval = self.settings.sweep_interval_seconds
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                self.trigger()

    def start(self) -> None:
        self._stop_event.clear()
        self._loop_task = asyncio.create_task(self.run_forever())
        logger.info(
            "Sweeper started (interval %.0fs, stale after %ss)",
            self.settings.sweep_interval_seconds,
            self.settings.stale_after_seconds,
        )

    async def stop(self, grace_seconds: float = 10.0) -> None:
        self._stop_event.set()
        if self._loop_task:
            await self._loop_task
            self._loop_task = None
        if self._inflight and not self._inflight.done():
            try:
                await asyncio.wait_for(asyncio.shield(self._inflight), timeout=grace_seconds)
            except asyncio.TimeoutError:
                self._inflight.cancel()
                try:
                    await self._inflight
                except asyncio.CancelledError:
                    pass
        self._inflight = None
        logger.info("Sweeper stopped")

    async def _sweep(self) -> SweepReport:
        report = SweepReport(started_at=self.clock())
        stale_before = report.started_at - timedelta(seconds=self.settings.stale_after_seconds)

        candidates = await self._load(
            lambda store: store.list_transcript_candidates(self.settings.sweep_batch_size)
        )
        report.transcript_candidates = len(candidates)
        # loaded up front; the transcript pass below refreshes updated_at
        status_candidates: List[CallState] = []
        if self.call_provider is not None:
            status_candidates = await self._load(
                lambda store: store.list_status_candidates(stale_before, self.settings.sweep_batch_size)
            )
        report.status_candidates = len(status_candidates)
        resolved: Set[str] = set()

        if self.transcript_provider is not None and candidates:
            resolved = await self._match_provider_transcripts(candidates, report)

        for state in candidates:
            if state.provider_call_id in resolved:
                continue
            if state.updated_at is not None and state.updated_at >= stale_before:
                continue
            await self._apply(
                TranscriptTimeoutEvent(provider_call_id=state.provider_call_id, stale_before=stale_before),
                report,
            )

        if status_candidates:
            await self._refresh_call_status(status_candidates, report)

        report.finished_at = self.clock()
        logger.info(
            "Sweep finished: %s transcript candidates, %s status candidates, outcomes %s, %s errors",
            report.transcript_candidates,
            report.status_candidates,
            report.outcomes,
            report.errors,
        )
        return report

    async def _match_provider_transcripts(
        self, candidates: List[CallState], report: SweepReport
    ) -> Set[str]:
        by_recording = {state.recording_id: state for state in candidates if state.recording_id}
        resolved: Set[str] = set()
        if not by_recording:
            return resolved
        transcripts = await self._query(
            report,
            self.transcript_provider.list_recent_transcripts,
            self.settings.transcript_lookup_limit,
        )
        for item in transcripts or []:
            state = by_recording.get(item.get("source_recording_id"))
            if state is None:
                continue
            detail = await self._query(report, self.transcript_provider.fetch_transcript, item["transcript_id"])
            if detail is None:
                continue
            status = PROVIDER_TRANSCRIPT_STATUSES.get(str(detail.get("status") or "").lower())
            if status is None:
                continue
            event = LegacyTranscriptionEvent(
                provider_call_id=state.provider_call_id,
                recording_id=state.recording_id,
                text=detail.get("text"),
                status=status,
            )
            if await self._apply(event, report) is not None:
                resolved.add(state.provider_call_id)
        return resolved

    async def _refresh_call_status(self, candidates: List[CallState], report: SweepReport) -> None:
        for state in candidates:
            info = await self._query(report, self.call_provider.fetch_call, state.provider_call_id)
            if info is None:
                continue
            try:
                status = normalize_call_status(info.get("status"))
            except MalformedEvent as exc:
                logger.warning("Provider returned unusable status for %s: %s", state.provider_call_id, exc)
                continue
            await self._apply(
                StatusEvent(
                    provider_call_id=state.provider_call_id,
                    status=status,
                    duration_seconds=info.get("duration_seconds"),
                ),
                report,
            )

    def _with_session(self, func: Callable, *args: Any) -> Any:
        db = self.session_factory()
        try:
            return func(db, *args)
        finally:
            db.close()

    async def _load(self, query: Callable[[CallStore], list]) -> List[CallState]:
        def snapshot(db):
            return [CallState.model_validate(record) for record in query(CallStore(db))]

        return await asyncio.to_thread(self._with_session, snapshot)

    async def _apply(self, event: CallEvent, report: SweepReport) -> Optional[ReconcileResult]:
        try:
            result = await asyncio.to_thread(self._with_session, apply_event, event)
        except SQLAlchemyError:
            logger.exception("Could not apply %s for %s", event.category, event.provider_call_id)
            report.errors += 1
            return None
        report.record(result)
        if self.on_result is not None and result.applied:
            await self.on_result(result)
        return result

    async def _query(self, report: SweepReport, func: Callable, *args: Any) -> Optional[Any]:
        timeout = self.settings.provider_timeout_seconds
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Provider call %s%s exceeded %.1fs", func.__name__, args, timeout)
        except Exception:
            logger.exception("Provider call %s%s failed", func.__name__, args)
        report.errors += 1
        return None
