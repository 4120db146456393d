import asyncio

import pytest
import redis.exceptions

from clubchat.domain.chat import live


class Source:
    def __init__(self) -> None:
        self.items: list[str] = []

    async def load(self) -> list[str]:
        return list(self.items)


class DroppingRedis:
    """Hands out pub/sub connections whose first read fails, `drops` times."""

    def __init__(self, client, drops: int = 1) -> None:
        self._client = client
        self.drops = drops

    def pubsub(self):
        pubsub = self._client.pubsub()
        if self.drops:
            self.drops -= 1
            pubsub.listen = self._lost_listen
        return pubsub

    @staticmethod
    async def _lost_listen():
        raise redis.exceptions.ConnectionError("connection lost")
        yield

    def __getattr__(self, name):
        return getattr(self._client, name)


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def test_topic_names():
    assert live.inbox_topic("alice") == "inbox:alice"
    assert live.messages_topic("alice_bob") == "messages:alice_bob"


@pytest.mark.asyncio
async def test_subscribers_get_full_result_on_every_change():
    hub = live.LiveQueryHub()
    source = Source()
    received = []
    subscription = await hub.subscribe("inbox:alice", source.load, received.append)
    source.items.append("a")
    await hub.notify("inbox:alice")
    source.items.append("b")
    await hub.notify("inbox:alice", "inbox:alice", "inbox:bob")
    assert received == [[], ["a"], ["a", "b"]]
    assert hub.subscriber_count("inbox:alice") == 1
    subscription.close()
    subscription.close()
    assert subscription.closed
    assert hub.subscriber_count("inbox:alice") == 0
    await hub.notify("inbox:alice")
    assert len(received) == 3


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_block_others(caplog):
    hub = live.LiveQueryHub()
    source = Source()
    healthy = []
    calls = {"count": 0}

    async def broken(result):
        calls["count"] += 1
        if calls["count"] > 1:
            raise RuntimeError("render failed")

    await hub.subscribe("messages:x", source.load, broken)
    await hub.subscribe("messages:x", source.load, healthy.append)
    source.items.append("hi")
    await hub.notify("messages:x")
    assert healthy[-1] == ["hi"]
    assert any(record.getMessage() == "chat.live.delivery_failed" for record in caplog.records)


@pytest.mark.asyncio
async def test_failing_initial_load_leaves_no_subscription():
    hub = live.LiveQueryHub()

    async def boom():
        raise RuntimeError("unavailable")

    with pytest.raises(RuntimeError):
        await hub.subscribe("inbox:alice", boom, lambda _: None)
    assert hub.subscriber_count("inbox:alice") == 0


@pytest.mark.asyncio
async def test_redis_hub_dispatches_locally_until_started(fake_redis):
    hub = live.RedisLiveQueryHub(fake_redis)
    source = Source()
    received = []
    await hub.subscribe("inbox:alice", source.load, received.append)
    source.items.append("a")
    await hub.notify("inbox:alice")
    assert received == [[], ["a"]]


@pytest.mark.asyncio
async def test_redis_hub_relays_notifications_between_processes(fake_redis):
    writer = live.RedisLiveQueryHub(fake_redis)
    reader = live.RedisLiveQueryHub(fake_redis)
    await writer.start()
    await reader.start()
    try:
        source = Source()
        received = []
        await reader.subscribe("inbox:alice", source.load, received.append)
        source.items.append("from-writer")
        await writer.notify("inbox:alice")
        await _wait_for(lambda: received and received[-1] == ["from-writer"])
    finally:
        await writer.stop()
        await reader.stop()


@pytest.mark.asyncio
async def test_redis_hub_delivers_locally_while_listener_is_down(fake_redis, caplog):
    hub = live.RedisLiveQueryHub(DroppingRedis(fake_redis), reconnect_delay=60)
    source = Source()
    received = []
    await hub.subscribe("inbox:alice", source.load, received.append)
    await hub.start()
    try:
        await _wait_for(lambda: not hub.listening)
        assert any(record.getMessage() == "chat.live.listener_lost" for record in caplog.records)
        source.items.append("while-down")
        await hub.notify("inbox:alice")
        assert received[-1] == ["while-down"]
    finally:
        await hub.stop()


@pytest.mark.asyncio
async def test_redis_hub_resubscribes_after_connection_loss(fake_redis):
    reader = live.RedisLiveQueryHub(DroppingRedis(fake_redis), reconnect_delay=0.01)
    writer = live.RedisLiveQueryHub(fake_redis)
    source = Source()
    received = []
    await reader.subscribe("inbox:alice", source.load, received.append)
    await reader.start()
    await writer.start()
    try:
        # local subscriptions are refreshed once the listener is back
        await _wait_for(lambda: len(received) >= 2 and reader.listening)
        source.items.append("after-reconnect")
        await writer.notify("inbox:alice")
        await _wait_for(lambda: received[-1] == ["after-reconnect"])
    finally:
        await writer.stop()
        await reader.stop()
