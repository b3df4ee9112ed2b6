import asyncio
import time

from calltrack.core.config import settings
from calltrack.core.database import SessionLocal
from calltrack.services.reconciler import TIMEOUT_TEXT
from calltrack.services.sweeper import Sweeper

from conftest import backdate, fetch


def make_sweeper(**kwargs) -> Sweeper:
    sweep_settings = settings.model_copy(
        update={"stale_after_seconds": 300, "provider_timeout_seconds": 0.2, "sweep_batch_size": 100}
    )
    return Sweeper(SessionLocal, sweep_settings, **kwargs)


class FakeTranscripts:
    def __init__(self, transcripts=None, details=None, fail=False, delay=0.0):
        self.transcripts = transcripts or []
        self.details = details or {}
        self.fail = fail
        self.delay = delay
        self.calls = 0

    def list_recent_transcripts(self, limit=50):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise RuntimeError("provider unavailable")
        return self.transcripts

    def fetch_transcript(self, transcript_id):
        return self.details[transcript_id]


class FakeCalls:
    def __init__(self, calls=None, delay=0.0):
        self.calls = calls or {}
        self.delay = delay

    def fetch_call(self, provider_call_id):
        if self.delay:
            time.sleep(self.delay)
        return self.calls[provider_call_id]


def test_stale_empty_transcript_times_out_once(store):
    store.create("+15551234567", "CA1")
    backdate("CA1", 600)
    sweeper = make_sweeper()

    report = asyncio.run(sweeper.sweep())
    assert report.transcript_candidates == 1
    assert report.outcomes == {"timeout_expired": 1}
    record = fetch("CA1")
    assert record.transcript_status == "failed"
    assert record.transcript_text == TIMEOUT_TEXT

    second = asyncio.run(sweeper.sweep())
    assert second.transcript_candidates == 0
    assert second.outcomes == {}


def test_stale_partial_transcript_completes(store):
    store.create("+15551234567", "CA1")
    store.update("CA1", {"transcript_status": "streaming", "transcript_text": "Hello"})
    backdate("CA1", 600)

    asyncio.run(make_sweeper().sweep())
    record = fetch("CA1")
    assert record.transcript_status == "completed"
    assert record.transcript_text == "Hello"


def test_recent_transcript_left_open(store):
    store.create("+15551234567", "CA1")
    store.update("CA1", {"transcript_status": "streaming"})

    report = asyncio.run(make_sweeper().sweep())
    assert report.transcript_candidates == 1
    assert report.outcomes == {}
    assert fetch("CA1").transcript_status == "streaming"


def test_provider_transcript_resolves_open_record(store):
    store.create("+15551234567", "CA1")
    store.update("CA1", {"recording_id": "RE1", "recording_url": "https://x/RE1", "transcript_status": "processing"})
    provider = FakeTranscripts(
        transcripts=[
            {"transcript_id": "GT1", "source_recording_id": "RE1"},
            {"transcript_id": "GT2", "source_recording_id": "RE_other"},
        ],
        details={"GT1": {"status": "completed", "text": "Recovered words"}},
    )

    report = asyncio.run(make_sweeper(transcript_provider=provider).sweep())
    assert report.outcomes == {"applied": 1}
    record = fetch("CA1")
    assert record.transcript_status == "completed"
    assert record.transcript_text == "Recovered words"


def test_provider_failure_does_not_block_timeouts(store):
    store.create("+15551234567", "CA1")
    store.update("CA1", {"recording_id": "RE1", "recording_url": "https://x/RE1"})
    backdate("CA1", 600)
    provider = FakeTranscripts(fail=True)

    report = asyncio.run(make_sweeper(transcript_provider=provider).sweep())
    assert report.errors == 1
    assert report.outcomes == {"timeout_expired": 1}
    assert fetch("CA1").transcript_status == "failed"


def test_stale_call_status_backfilled(store):
    store.create("+15551234567", "CA1")
    store.update("CA1", {"call_status": "ringing"})
    backdate("CA1", 600)
    provider = FakeCalls({"CA1": {"status": "completed", "duration_seconds": 37}})

    report = asyncio.run(make_sweeper(call_provider=provider).sweep())
    assert report.status_candidates == 1
    record = fetch("CA1")
    assert record.call_status == "completed"
    assert record.duration_seconds == 37
    assert record.duration_confirmed is True
    assert record.transcript_status == "failed"


def test_slow_provider_times_out(store):
    store.create("+15551234567", "CA1")
    store.update("CA1", {"call_status": "in-progress", "transcript_status": "completed", "transcript_text": "x"})
    backdate("CA1", 600)
    provider = FakeCalls({"CA1": {"status": "completed", "duration_seconds": 37}}, delay=1.0)

    report = asyncio.run(make_sweeper(call_provider=provider).sweep())
    assert report.errors == 1
    assert fetch("CA1").call_status == "in-progress"


def test_overlapping_sweep_is_skipped(store):
    store.create("+15551234567", "CA1")
    store.update("CA1", {"recording_id": "RE1", "recording_url": "https://x/RE1"})
    provider = FakeTranscripts(delay=0.1)
    sweeper = make_sweeper(transcript_provider=provider)

    async def overlap():
        first = asyncio.create_task(sweeper.sweep())
        await asyncio.sleep(0.02)
        assert sweeper.running
        second = await sweeper.sweep()
        return await first, second

    first, second = asyncio.run(overlap())
    assert first is not None
    assert second is None
    assert provider.calls == 1
    assert sweeper.last_report is first


def test_applied_results_are_published(store):
    store.create("+15551234567", "CA1")
    backdate("CA1", 600)
    published = []

    async def collect(result):
        published.append(result)

    asyncio.run(make_sweeper(on_result=collect).sweep())
    assert [result.provider_call_id for result in published] == ["CA1"]
    assert published[0].state.transcript_status == "failed"


def test_timer_ticks_skip_while_sweep_runs_and_stop_is_clean(store):
    store.create("+15551234567", "CA1")
    store.update("CA1", {"recording_id": "RE1", "recording_url": "https://x/RE1"})
    provider = FakeTranscripts(delay=0.5)
    sweep_settings = settings.model_copy(
        update={"sweep_interval_seconds": 0.05, "provider_timeout_seconds": 2.0, "stale_after_seconds": 300}
    )
    sweeper = Sweeper(SessionLocal, sweep_settings, transcript_provider=provider)

    async def scenario():
        sweeper.start()
        loop_task = sweeper._loop_task
        await asyncio.sleep(0.25)
        assert sweeper.running
        skipped = sweeper.trigger()
        calls_during_sweep = provider.calls
        await sweeper.stop()
        return loop_task, skipped, calls_during_sweep

    loop_task, skipped, calls_during_sweep = asyncio.run(scenario())
    assert skipped is False
    assert calls_during_sweep == 1
    assert provider.calls == 1
    assert loop_task.done()
    assert sweeper._loop_task is None
    assert sweeper._inflight is None
    assert sweeper.last_report is not None
    assert sweeper.last_report.transcript_candidates == 1
