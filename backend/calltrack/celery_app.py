from celery import Celery
from calltrack.core.config import settings

celery_app = Celery(
    "calltrack",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["calltrack.tasks"],
)

celery_app.conf.beat_schedule = {
    "sweep-call-records": {
        "task": "calltrack.tasks.sweep_call_records",
        "schedule": settings.sweep_interval_seconds,
    }
}
