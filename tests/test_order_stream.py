"""Tests for the redis order event stream (mocked redis)."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from fakes import settle
from kabadi.schemas import OrderEvent, Stage
from kabadi.services.order_stream import (
    RedisOrderStream, order_channel, parse_event, publish_order_event,
)


class FakePubSub:
    """Yields queued messages, then fails or stays open until cancelled."""

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


def _message(payload):
    return {"type": "message", "channel": "orders:o1", "data": json.dumps(payload)}


def _stream(pubsub):
    redis = MagicMock()
    redis.pubsub.return_value = pubsub
    return RedisOrderStream(redis, channel_prefix="orders")


def test_order_channel():
    assert order_channel("o1", "orders") == "orders:o1"


def test_parse_event():
    event = parse_event("o1", json.dumps({"status": "arrived", "partner_id": "p1"}))
    assert event.status is Stage.ARRIVED
    assert event.partner_id == "p1"
    assert event.otp_verified is False


def test_parse_event_drops_malformed_payloads():
    assert parse_event("o1", "not json") is None
    assert parse_event("o1", json.dumps({"status": "lost"})) is None
    assert parse_event("o1", json.dumps({"otp_verified": True})) is None


def test_parse_event_drops_other_orders():
    payload = json.dumps({"status": "arrived", "order_id": "o2"})
    assert parse_event("o1", payload) is None


@pytest.mark.asyncio
async def test_subscribe_forwards_events():
    """Valid messages reach on_event; noise is skipped."""
    pubsub = FakePubSub([
        {"type": "subscribe", "channel": "orders:o1", "data": 1},
        _message({"status": "assigned", "partner_id": "p1"}),
        {"type": "message", "channel": "orders:o1", "data": "{broken"},
        _message({"status": "on_the_way"}),
    ])
    received, dropped = [], []

    stream = _stream(pubsub)
    sub = await stream.subscribe("o1", received.append, dropped.append)
    await settle()

    pubsub.subscribe.assert_awaited_once_with("orders:o1")
    assert [e.status for e in received] == [Stage.ASSIGNED, Stage.ON_THE_WAY]
    assert dropped == []
    assert not sub.task.done()
    await stream.unsubscribe(sub)


@pytest.mark.asyncio
async def test_connection_loss_reported_once():
    pubsub = FakePubSub([_message({"status": "arrived"})], error=RedisConnectionError("reset by peer"))
    received, dropped = [], []

    await _stream(pubsub).subscribe("o1", received.append, dropped.append)
    await settle()

    assert len(received) == 1
    assert len(dropped) == 1
    assert dropped[0].order_id == "o1"
    assert "reset by peer" in dropped[0].reason


@pytest.mark.asyncio
async def test_subscribe_failure_reported_as_disconnect():
    """A dead connection at subscribe time is a disconnect, not an exception."""
    pubsub = FakePubSub()
    pubsub.subscribe = AsyncMock(side_effect=RedisConnectionError("redis down"))
    dropped = []

    sub = await _stream(pubsub).subscribe("o1", lambda e: None, dropped.append)
    await settle()

    assert [d.reason for d in dropped] == ["redis down"]
    assert sub.closed is False


@pytest.mark.asyncio
async def test_unsubscribe_is_quiet_and_idempotent():
    """Our own teardown is not reported as a disconnect."""
    pubsub = FakePubSub()
    dropped = []
    stream = _stream(pubsub)
    sub = await stream.subscribe("o1", lambda e: None, dropped.append)
    await settle()

    await stream.unsubscribe(sub)
    await stream.unsubscribe(sub)

    assert sub.closed is True
    assert sub.task.done()
    assert dropped == []
    pubsub.unsubscribe.assert_awaited_once_with("orders:o1")
    pubsub.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_unsubscribe_survives_redis_errors():
    pubsub = FakePubSub()
    pubsub.unsubscribe = AsyncMock(side_effect=RedisConnectionError("gone"))
    stream = _stream(pubsub)
    sub = await stream.subscribe("o1", lambda e: None, lambda d: None)

    await stream.unsubscribe(sub)
    pubsub.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_publish_order_event():
    """Published payload is stamped with the order id."""
    redis = AsyncMock()
    redis.publish.return_value = 2

    receivers = await publish_order_event(
        redis, "o1", OrderEvent(status="verifying", otp_verified=True), channel_prefix="orders",
    )

    assert receivers == 2
    channel, payload = redis.publish.call_args.args
    assert channel == "orders:o1"
    body = json.loads(payload)
    assert body["order_id"] == "o1"
    assert body["status"] == "verifying"
    assert body["otp_verified"] is True


@pytest.mark.asyncio
async def test_failing_event_handler_does_not_stop_listener():
    """A handler error is logged and later events still arrive."""
    pubsub = FakePubSub([
        _message({"status": "assigned"}),
        _message({"status": "on_the_way"}),
    ])
    received, dropped = [], []

    def on_event(event):
        if event.status is Stage.ASSIGNED:
            raise RuntimeError("handler bug")
        received.append(event)

    stream = _stream(pubsub)
    sub = await stream.subscribe("o1", on_event, dropped.append)
    await settle()

    assert [e.status for e in received] == [Stage.ON_THE_WAY]
    assert dropped == []
    assert not sub.task.done()
    await stream.unsubscribe(sub)
