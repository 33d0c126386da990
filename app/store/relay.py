"""
Roommate Match — Redis pub/sub relay for document change notifications.

With several API workers behind a load balancer, a write committed by one
worker must still wake subscriptions held by another.  Each committed
change is published as ``{"origin", "collection", "doc_id"}`` on
``CHANGE_CHANNEL``; every worker listens and re-publishes foreign events
into its local :class:`ChangeFeed`.

A dropped Redis connection does not end the listener: it re-subscribes
with exponential backoff until the relay is stopped.
"""

from __future__ import annotations

import asyncio
import json
import uuid

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_never,
    wait_exponential,
)

from app.store.changes import ChangeFeed

logger = structlog.get_logger("roommate.store.relay")


class RedisChangeRelay:
    def __init__(self, redis, channel: str, feed: ChangeFeed, reconnect_wait=None) -> None:
        self.redis = redis
        self.channel = channel
        self.feed = feed
        self.origin = uuid.uuid4().hex
        self.reconnect_wait = reconnect_wait or wait_exponential(multiplier=1, min=1, max=30)
        self.reconnects = 0
        self._task: asyncio.Task | None = None

    async def publish(self, collection: str, doc_id: str) -> None:
        payload = json.dumps(
            {"origin": self.origin, "collection": collection, "doc_id": doc_id}
        )
        try:
            await self.redis.publish(self.channel, payload)
        except Exception as exc:
            # The write is already committed; only remote listeners miss it.
            logger.warning("change_relay_publish_failed", collection=collection, error=str(exc))

    async def handle_message(self, raw: str | bytes) -> None:
        """Dispatch one pub/sub payload into the local feed."""
        try:
            event = json.loads(raw)
            collection = event["collection"]
            doc_id = event["doc_id"]
        except (ValueError, KeyError, TypeError):
            logger.warning("change_relay_bad_payload", payload=str(raw)[:200])
            return
        if event.get("origin") == self.origin:
            return
        await self.feed.publish(collection, doc_id)

    async def _listen_once(self) -> None:
        pubsub = self.redis.pubsub()
        try:
            await pubsub.subscribe(self.channel)
            logger.info("change_relay_listening", channel=self.channel)
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                await self.handle_message(message["data"])
        finally:
            try:
                await pubsub.unsubscribe(self.channel)
                await pubsub.aclose()
            except Exception as exc:
                logger.debug("change_relay_cleanup_failed", error=str(exc))
        raise ConnectionError("pub/sub stream ended")

    def _before_reconnect(self, retry_state: RetryCallState) -> None:
        self.reconnects += 1
        logger.warning(
            "change_relay_reconnecting",
            channel=self.channel,
            attempt=retry_state.attempt_number,
            error=str(retry_state.outcome.exception()),
        )

    async def _listen(self) -> None:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(Exception),
            stop=stop_never,
            wait=self.reconnect_wait,
            before_sleep=self._before_reconnect,
            reraise=True,
        ):
            with attempt:
                await self._listen_once()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._listen())

    async def stop(self) -> None:
        """Cancel the listener.  Never raises, so shutdown can carry on
        closing Redis and the database."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.error("change_relay_task_failed", error=str(exc))
        logger.info("change_relay_stopped")
