import asyncio
import logging

import redis
from celery import shared_task

from calltrack.core.config import settings
from calltrack.core.database import SessionLocal
from calltrack.services.sweeper import Sweeper
from calltrack.services.twilio_client import build_gateway

logger = logging.getLogger(__name__)

SWEEP_LOCK = "calltrack:sweep-lock"


@shared_task(name="calltrack.tasks.sweep_call_records", ignore_result=False)
def sweep_call_records():
    client = redis.Redis.from_url(settings.redis_url)
    lock = client.lock(SWEEP_LOCK, timeout=max(int(settings.sweep_interval_seconds) * 5, 60), blocking=False)
    if not lock.acquire():
        logger.warning("Sweep already running on another worker; skipping")
        return {"skipped": True}
    try:
        gateway = build_gateway(settings)
        sweeper = Sweeper(SessionLocal, settings, transcript_provider=gateway, call_provider=gateway)
        report = asyncio.run(sweeper.sweep())
        return report.model_dump(mode="json")
    finally:
        lock.release()
