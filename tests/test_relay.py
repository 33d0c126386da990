"""Unit tests for RedisChangeRelay — cross-worker change fan-out."""
import asyncio
import json

import pytest
from unittest.mock import AsyncMock, MagicMock
from tenacity import wait_none

from app.store.changes import ChangeFeed
from app.store.relay import RedisChangeRelay


@pytest.fixture
def redis():
    client = MagicMock()
    client.publish = AsyncMock()
    return client


@pytest.fixture
def relay(redis):
    return RedisChangeRelay(redis, "roommate:changes", ChangeFeed())


class TestPublish:
    @pytest.mark.asyncio
    async def test_publishes_origin_tagged_event(self, relay, redis):
        await relay.publish("conversations", "a_b")
        channel, payload = redis.publish.await_args.args
        assert channel == "roommate:changes"
        assert json.loads(payload) == {
            "origin": relay.origin,
            "collection": "conversations",
            "doc_id": "a_b",
        }

    @pytest.mark.asyncio
    async def test_publish_failure_is_swallowed(self, relay, redis):
        redis.publish.side_effect = ConnectionError("redis down")
        await relay.publish("conversations", "a_b")


class TestHandleMessage:
    @pytest.mark.asyncio
    async def test_foreign_event_reaches_local_listeners(self, relay):
        listener = AsyncMock()
        relay.feed.add("conversations", "a_b", listener)
        await relay.handle_message(
            json.dumps({"origin": "other-worker", "collection": "conversations", "doc_id": "a_b"})
        )
        listener.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_own_events_are_ignored(self, relay):
        listener = AsyncMock()
        relay.feed.add("conversations", "a_b", listener)
        await relay.handle_message(
            json.dumps({"origin": relay.origin, "collection": "conversations", "doc_id": "a_b"})
        )
        listener.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_malformed_payload_is_dropped(self, relay):
        listener = AsyncMock()
        relay.feed.add("conversations", None, listener)
        await relay.handle_message("not json")
        await relay.handle_message(json.dumps({"origin": "x"}))
        listener.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stop_without_start_is_a_no_op(self, relay):
        await relay.stop()


class FakePubSub:
    """Yields ``messages`` then either raises ``error`` or idles forever."""

    def __init__(self, messages=(), error=None):
        self.messages = list(messages)
        self.error = error
        self.subscribe = AsyncMock()
        self.unsubscribe = AsyncMock()
        self.aclose = AsyncMock()

    async def listen(self):
        for message in self.messages:
            yield message
        if self.error is not None:
            raise self.error
        await asyncio.Event().wait()


async def wait_for(condition, rounds=100):
    for _ in range(rounds):
        if condition():
            return
        await asyncio.sleep(0)


class TestListener:
    @pytest.mark.asyncio
    async def test_reconnects_after_connection_loss(self, redis):
        event = {
            "type": "message",
            "data": json.dumps({"origin": "other-worker", "collection": "conversations", "doc_id": "a_b"}),
        }
        dropped = FakePubSub(error=ConnectionError("redis connection lost"))
        redis.pubsub = MagicMock(side_effect=[dropped, FakePubSub([event])])
        relay = RedisChangeRelay(redis, "roommate:changes", ChangeFeed(), reconnect_wait=wait_none())
        listener = AsyncMock()
        relay.feed.add("conversations", "a_b", listener)

        relay.start()
        await wait_for(lambda: listener.await_count > 0)

        listener.assert_awaited_once()
        assert relay.reconnects == 1
        dropped.aclose.assert_awaited_once()
        await relay.stop()

    @pytest.mark.asyncio
    async def test_stop_survives_a_failed_listener_task(self, relay):
        async def crashed():
            raise ConnectionError("redis connection lost")

        relay._task = asyncio.create_task(crashed())
        await wait_for(relay._task.done)

        await relay.stop()
        assert relay._task is None

    @pytest.mark.asyncio
    async def test_stop_cancels_an_idle_listener(self, redis):
        pubsub = FakePubSub()
        redis.pubsub = MagicMock(return_value=pubsub)
        relay = RedisChangeRelay(redis, "roommate:changes", ChangeFeed())

        relay.start()
        await wait_for(lambda: pubsub.subscribe.await_count > 0)
        await relay.stop()

        pubsub.unsubscribe.assert_awaited_once_with("roommate:changes")
        assert relay.reconnects == 0
