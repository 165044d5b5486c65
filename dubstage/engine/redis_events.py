"""
Redis Pub/Sub Event Source
==========================

Receives the execution engine's push events from Redis channels
<prefix><name> (default prefix "dubbing:"), one JSON object per message.

Each subscription gets its own pub/sub connection and listener task, so the
three orchestrator subscriptions stay independent of each other.
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError

from ..contracts import EventHandler, EventSource, Subscription

logger = logging.getLogger(__name__)


def decode_message(message: Optional[dict]) -> Optional[dict]:
    """Payload of a pub/sub message, or None for non-data / undecodable ones"""
    if not message or message.get("type") != "message":
        return None
    data = message.get("data")
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    try:
        payload = json.loads(data)
    except (TypeError, json.JSONDecodeError):
        logger.warning("Ignoring undecodable event on %s: %r", message.get("channel"), data)
        return None
    if not isinstance(payload, dict):
        logger.warning("Ignoring non-object event on %s: %r", message.get("channel"), payload)
        return None
    return payload


class RedisEventSource(EventSource):
    """
    EventSource backed by Redis pub/sub.

    The client may be passed in (tests, shared connections); otherwise one
    is created from redis_url.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        channel_prefix: str = "dubbing:",
        client: Any = None,
        poll_timeout: float = 1.0,
    ):
        self.redis = client if client is not None else aioredis.from_url(redis_url)
        self.channel_prefix = channel_prefix
        self.poll_timeout = poll_timeout
        self._tasks: set[asyncio.Task] = set()

    async def subscribe(self, channel: str, handler: EventHandler) -> Subscription:
        full_channel = f"{self.channel_prefix}{channel}"
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(full_channel)

        task = asyncio.get_running_loop().create_task(
            self._listen(pubsub, full_channel, handler)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        return Subscription(channel, task.cancel)

    async def _listen(self, pubsub: Any, channel: str, handler: EventHandler) -> None:
        try:
            while True:
                try:
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True,
                        timeout=self.poll_timeout,
                    )
                except (ConnectionError, RedisConnectionError) as e:
                    logger.warning("Redis subscribe error on %s: %s", channel, e)
                    await asyncio.sleep(1)
                    continue

                payload = decode_message(message)
                if payload is None:
                    continue

                try:
                    result = handler(payload)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception("Event handler error on %s", channel)
        finally:
            try:
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()
            except Exception as e:
                logger.debug("Pub/sub cleanup on %s failed: %s", channel, e)

    async def aclose(self) -> None:
        """Stop every listener and close the Redis connection"""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.redis.aclose()
