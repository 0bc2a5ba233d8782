"""
Change-feed webhook — the data service calls this on every order UPDATE.

The payload is republished on the order's redis channel, where live
tracking sessions pick it up.
"""

import logging
import redis.asyncio as aioredis
from redis.exceptions import RedisError
from fastapi import APIRouter, Depends, Header, HTTPException

from kabadi.config import settings
from kabadi.schemas import OrderChangeWebhook, OrderEvent, WebhookAccepted
from kabadi.services.order_stream import get_redis, order_channel, publish_order_event

router = APIRouter()
logger = logging.getLogger(__name__)


def verify_webhook_secret(x_webhook_secret: str | None = Header(None)) -> None:
    if settings.WEBHOOK_SECRET and x_webhook_secret != settings.WEBHOOK_SECRET:
        raise HTTPException(status_code=401, detail="Invalid webhook secret")


@router.post(
    "/order-updated",
    response_model=WebhookAccepted,
    dependencies=[Depends(verify_webhook_secret)],
)
async def order_updated(
    data: OrderChangeWebhook,
    redis: aioredis.Redis = Depends(get_redis),
):
    """Fan an order change out to whoever is tracking that order."""
    event = OrderEvent(
        status=data.status,
        otp_verified=data.otp_verified,
        partner_id=data.partner_id,
        correction=data.correction,
    )
    try:
        receivers = await publish_order_event(redis, data.order_id, event)
    except (RedisError, OSError) as e:
        logger.error("Publishing change for order %s failed: %s", data.order_id, e)
        raise HTTPException(status_code=503, detail="Event bus unavailable")

    logger.info(
        "Order %s -> %s published to %d receivers",
        data.order_id, data.status.value, receivers,
    )
    return WebhookAccepted(
        order_id=data.order_id,
        channel=order_channel(data.order_id),
        receivers=receivers,
    )
