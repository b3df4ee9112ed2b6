import json
import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from calltrack.services.lifecycle import ReconcileResult


logger = logging.getLogger(__name__)

CHANNEL = "calltrack:events"


class EventPublisher:
    """Fire-and-forget change notifications over Redis pub/sub."""

    def __init__(self, client: Optional[redis.Redis] = None, channel: str = CHANNEL):
        self.client = client
        self.channel = channel

    @classmethod
    def from_url(cls, url: Optional[str], enabled: bool = True, timeout: float = 1.0) -> "EventPublisher":
        if not enabled or not url:
            return cls(None)
        return cls(
            redis.from_url(
                url,
                decode_responses=True,
                socket_connect_timeout=timeout,
                socket_timeout=timeout,
            )
        )

    async def publish(self, payload: dict) -> None:
        if self.client is None:
            return
        try:
            await self.client.publish(self.channel, json.dumps(payload, default=str))
        except RedisError as exc:
            logger.warning("Could not publish %s event: %s", payload.get("type"), exc)

    async def publish_result(self, result: ReconcileResult) -> None:
        if not result.applied:
            return
        state = result.state
        await self.publish(
            {
                "type": "call_updated",
                "payload": {
                    "provider_call_id": result.provider_call_id,
                    "outcome": result.outcome.value,
                    "call_status": state.call_status if state else None,
                    "transcript_status": state.transcript_status if state else None,
                    "has_recording": bool(state and state.recording_url),
                },
            }
        )

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
