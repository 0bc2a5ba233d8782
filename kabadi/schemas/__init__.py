"""Pydantic schemas for tracking state, wire payloads and API bodies."""

from __future__ import annotations
from enum import Enum
from pydantic import BaseModel, Field, field_validator


# ── Enums ──────────────────────────────────────────────────

class Stage(str, Enum):
    """Order lifecycle stages. Declaration order is the lifecycle order."""
    PENDING = "pending"
    ASSIGNED = "assigned"
    ON_THE_WAY = "on_the_way"
    ARRIVED = "arrived"
    VERIFYING = "verifying"
    COMPLETED = "completed"


class StepState(str, Enum):
    COMPLETED = "completed"
    CURRENT = "current"
    UPCOMING = "upcoming"


# ── Data Service Shapes ────────────────────────────────────

class Partner(BaseModel):
    name: str
    phone: str

    class Config:
        frozen = True


class OrderSnapshot(BaseModel):
    status: Stage
    partner_id: str | None = None
    otp_verified: bool = False

    @field_validator("otp_verified", mode="before")
    @classmethod
    def _null_is_unverified(cls, v):
        return False if v is None else v


class OrderEvent(BaseModel):
    """A change notification for an order already being tracked."""
    status: Stage
    otp_verified: bool = False
    partner_id: str | None = None
    order_id: str | None = None
    correction: bool = False

    @field_validator("otp_verified", mode="before")
    @classmethod
    def _null_is_unverified(cls, v):
        return False if v is None else v

    @classmethod
    def from_snapshot(cls, snapshot: OrderSnapshot) -> OrderEvent:
        # snapshots are authoritative, so they may move the stage back
        return cls(
            status=snapshot.status,
            otp_verified=snapshot.otp_verified,
            partner_id=snapshot.partner_id,
            correction=True,
        )


# ── Projection ─────────────────────────────────────────────

class StepView(BaseModel):
    stage: Stage
    classification: StepState
    title: str
    description: str


class TrackingProjection(BaseModel):
    order_id: str
    current_stage: Stage
    stages: list[StepView]
    partner: Partner | None = None
    can_show_otp: bool = False
    can_show_partner_contact: bool = False
    is_complete: bool = False
    otp_digits: list[str] = []
    reconnecting: bool = False


# ── API Schemas ────────────────────────────────────────────

class TrackingStart(BaseModel):
    verification_code: str | None = Field(None, pattern=r"^\d{6}$")


class TrackingStopped(BaseModel):
    order_id: str
    stopped: bool


class OrderChangeWebhook(BaseModel):
    order_id: str = Field(..., min_length=1)
    status: Stage
    otp_verified: bool = False
    partner_id: str | None = None
    correction: bool = False


class WebhookAccepted(BaseModel):
    order_id: str
    channel: str
    receivers: int
