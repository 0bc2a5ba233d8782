"""
Order Event Stream — per-order change notifications over redis pub/sub.

Each order has one channel, "<ORDER_CHANNEL_PREFIX>:<order_id>". Payloads
are JSON OrderEvent bodies. A listener task per subscription parses and
forwards events; a dropped connection is reported once via on_disconnect
and the subscription stops listening. Resubscribing is up to the caller.
"""

from __future__ import annotations
import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Callable

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError

from kabadi.config import settings
from kabadi.schemas import OrderEvent
from kabadi.services.errors import StreamDisconnected

logger = logging.getLogger(__name__)

EventCallback = Callable[[OrderEvent], None]
DisconnectCallback = Callable[[StreamDisconnected], None]

_redis: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    """Singleton Redis connection."""
    global _redis
    if _redis is None:
        _redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def order_channel(order_id: str, prefix: str | None = None) -> str:
    return f"{prefix or settings.ORDER_CHANNEL_PREFIX}:{order_id}"


def parse_event(order_id: str, data: str | bytes) -> OrderEvent | None:
    """Decode a channel payload. Malformed or foreign payloads yield None."""
    try:
        event = OrderEvent.model_validate_json(data)
    except ValidationError as e:
        logger.warning("Dropping malformed event for order %s: %s", order_id, e)
        return None
    if event.order_id is not None and event.order_id != order_id:
        logger.warning(
            "Dropping event for order %s delivered on channel of %s",
            event.order_id, order_id,
        )
        return None
    return event


@dataclass(eq=False)
class OrderSubscription:
    order_id: str
    channel: str
    pubsub: aioredis.client.PubSub
    task: asyncio.Task | None = None
    closed: bool = field(default=False)


class RedisOrderStream:
    def __init__(self, redis: aioredis.Redis, channel_prefix: str | None = None):
        self._redis = redis
        self._prefix = channel_prefix or settings.ORDER_CHANNEL_PREFIX

    async def subscribe(
        self,
        order_id: str,
        on_event: EventCallback,
        on_disconnect: DisconnectCallback,
    ) -> OrderSubscription:
        """Subscribe to an order's channel. Returns once SUBSCRIBE is sent."""
        channel = order_channel(order_id, self._prefix)
        pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
        sub = OrderSubscription(order_id=order_id, channel=channel, pubsub=pubsub)

        failure = None
        try:
            await pubsub.subscribe(channel)
            logger.info("📡 Subscribed to %s", channel)
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            # reported through on_disconnect from the listener task
            failure = str(e) or e.__class__.__name__

        sub.task = asyncio.create_task(self._listen(sub, on_event, on_disconnect, failure))
        return sub

    async def _listen(
        self,
        sub: OrderSubscription,
        on_event: EventCallback,
        on_disconnect: DisconnectCallback,
        failure: str | None = None,
    ) -> None:
        reason = failure or "subscription ended"
        if failure is None:
            try:
                async for message in sub.pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    event = parse_event(sub.order_id, message["data"])
                    if event is None:
                        continue
                    try:
                        on_event(event)
                    except Exception:
                        logger.exception(
                            "Order event handler failed for %s; still listening", sub.order_id,
                        )
            except (RedisConnectionError, RedisTimeoutError, OSError) as e:
                reason = str(e) or e.__class__.__name__

        if not sub.closed:
            logger.warning("Order stream for %s disconnected: %s", sub.order_id, reason)
            on_disconnect(StreamDisconnected(sub.order_id, reason))

    async def unsubscribe(self, sub: OrderSubscription) -> None:
        """Release a subscription. Safe to call more than once."""
        if sub.closed:
            return
        sub.closed = True

        if sub.task is not None and not sub.task.done():
            sub.task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sub.task

        try:
            await sub.pubsub.unsubscribe(sub.channel)
        except (RedisError, OSError) as e:
            logger.warning("Unsubscribe from %s failed: %s", sub.channel, e)
        finally:
            await sub.pubsub.aclose()
        logger.info("Unsubscribed from %s", sub.channel)


async def publish_order_event(
    redis: aioredis.Redis,
    order_id: str,
    event: OrderEvent,
    channel_prefix: str | None = None,
) -> int:
    """Publish a change notification. Returns the number of receivers."""
    channel = order_channel(order_id, channel_prefix)
    payload = event.model_copy(update={"order_id": order_id}).model_dump_json()
    return await redis.publish(channel, payload)
