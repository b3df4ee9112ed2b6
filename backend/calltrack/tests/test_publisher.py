import asyncio

from redis.exceptions import ConnectionError

from calltrack.events import CallState
from calltrack.services.lifecycle import ReconcileResult
from calltrack.services.publisher import EventPublisher
from calltrack.services.reconciler import Outcome


class UnreachableRedis:
    def __init__(self):
        self.attempts = 0

    async def publish(self, channel, message):
        self.attempts += 1
        raise ConnectionError("Timeout connecting to server")


def applied_result():
    return ReconcileResult(
        provider_call_id="CA1",
        outcome=Outcome.APPLIED,
        applied=True,
        state=CallState(provider_call_id="CA1", call_status="ringing"),
    )


def test_client_uses_bounded_socket_timeouts():
    publisher = EventPublisher.from_url("redis://localhost:6379/0", enabled=True, timeout=0.5)
    kwargs = publisher.client.connection_pool.connection_kwargs
    assert kwargs["socket_connect_timeout"] == 0.5
    assert kwargs["socket_timeout"] == 0.5
    asyncio.run(publisher.close())


def test_disabled_publisher_has_no_client():
    publisher = EventPublisher.from_url("redis://localhost:6379/0", enabled=False)
    assert publisher.client is None
    asyncio.run(publisher.publish_result(applied_result()))


def test_unreachable_redis_does_not_raise():
    client = UnreachableRedis()
    publisher = EventPublisher(client)
    asyncio.run(publisher.publish_result(applied_result()))
    assert client.attempts == 1


def test_non_applied_results_not_published():
    client = UnreachableRedis()
    publisher = EventPublisher(client)
    result = ReconcileResult(provider_call_id="CA1", outcome=Outcome.DUPLICATE)
    asyncio.run(publisher.publish_result(result))
    assert client.attempts == 0
