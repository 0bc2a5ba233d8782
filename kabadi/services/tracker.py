"""
Order Status Tracker — live view-state for one order's pickup lifecycle.

Folds an initial snapshot plus a stream of change events into a
TrackerState, and derives a render-ready TrackingProjection from it.

Rules:
  - Event status always overwrites the current stage (regressions
    included) unless regression rejection is switched on
  - otp_verified latches true for the rest of the session
  - Partner is fetched at most once per session, off the fold path
  - Events arriving before the snapshot are queued, then applied in order
  - dispose() bumps the session generation; late async results from an
    older generation are discarded
"""

from __future__ import annotations
import asyncio
import logging
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Callable, Protocol

from kabadi.config import settings
from kabadi.schemas import (
    OrderEvent, OrderSnapshot, Partner, Stage, StepState, TrackingProjection,
)
from kabadi.services.errors import (
    PartnerFetchError, SnapshotFetchError, StreamDisconnected,
)
from kabadi.services.stages import build_steps, classify, is_regression

logger = logging.getLogger(__name__)


# ── Collaborator Contracts ─────────────────────────────────

class OrderDataSource(Protocol):
    async def get_order_snapshot(self, order_id: str) -> OrderSnapshot | SnapshotFetchError: ...

    async def get_partner(self, partner_id: str) -> Partner | PartnerFetchError: ...


class OrderEventSource(Protocol):
    async def subscribe(
        self,
        order_id: str,
        on_event: Callable[[OrderEvent], None],
        on_disconnect: Callable[[StreamDisconnected], None],
    ) -> Any: ...

    async def unsubscribe(self, handle: Any) -> None: ...


# ── State & Fold ───────────────────────────────────────────

@dataclass(frozen=True)
class TrackerState:
    current_stage: Stage
    otp_verified: bool = False
    partner: Partner | None = None


def fold_event(
    state: TrackerState,
    event: OrderEvent,
    reject_regressions: bool = False,
) -> TrackerState:
    """Pure fold of one event's status fields into the state."""
    stage = event.status
    if (
        reject_regressions
        and not event.correction
        and is_regression(state.current_stage, stage)
    ):
        stage = state.current_stage
    return replace(
        state,
        current_stage=stage,
        otp_verified=state.otp_verified or event.otp_verified,
    )


# ── Tracker ────────────────────────────────────────────────

class OrderStatusTracker:
    def __init__(
        self,
        order_id: str,
        data_source: OrderDataSource,
        event_source: OrderEventSource,
        verification_code: str | None = None,
        on_disconnect: Callable[[StreamDisconnected], None] | None = None,
        reject_regressions: bool | None = None,
    ):
        if not order_id:
            raise ValueError("order_id must be a non-empty string")
        self.order_id = order_id
        self.verification_code = verification_code
        self._data = data_source
        self._events = event_source
        self._on_disconnect_cb = on_disconnect
        self._reject_regressions = (
            settings.REJECT_STAGE_REGRESSIONS if reject_regressions is None
            else reject_regressions
        )

        self._state: TrackerState | None = None
        self._ready = False
        self._pending: deque[OrderEvent] = deque()
        self._applying = False
        self._generation = 0
        self._started = False
        self._disposed = False
        self._subscription: Any = None
        self._disconnected: StreamDisconnected | None = None

        self._partner_id: str | None = None
        self._partner_task: asyncio.Task | None = None
        self._partner_error: PartnerFetchError | None = None

    # ── Lifecycle ──────────────────────────────────────────

    @property
    def state(self) -> TrackerState | None:
        return self._state

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def disconnected(self) -> StreamDisconnected | None:
        return self._disconnected

    @property
    def partner_error(self) -> PartnerFetchError | None:
        return self._partner_error

    async def initialize(self) -> SnapshotFetchError | None:
        """
        Subscribe, then seed state from a snapshot.

        Live events received before the snapshot resolves are queued and
        applied right after it. On failure the subscription is released
        and the error is returned; the tracker never enters tracking.
        """
        if self._started:
            raise RuntimeError(f"tracker for order {self.order_id} already initialized")
        self._started = True

        generation = self._generation
        if not await self._acquire_subscription(generation):
            return None

        snapshot = await self._fetch_snapshot()
        if generation != self._generation:
            logger.debug("Discarding snapshot for disposed session of order %s", self.order_id)
            return None

        if isinstance(snapshot, SnapshotFetchError):
            await self._release_subscription()
            self._pending.clear()
            return snapshot

        self._state = TrackerState(
            current_stage=snapshot.status,
            otp_verified=snapshot.otp_verified,
        )
        logger.info(
            "Tracking order %s from stage %s", self.order_id, snapshot.status.value,
        )
        if snapshot.partner_id:
            self._ensure_partner(snapshot.partner_id)
        self._mark_ready()
        return None

    async def resubscribe(self) -> SnapshotFetchError | None:
        """
        Recover after a StreamDisconnected.

        Replaces the subscription and reconciles with a fresh snapshot,
        folded like any other event. State is unchanged if the snapshot
        fetch fails.
        """
        if self._disposed or not self._ready:
            return None

        generation = self._generation
        previous = self._disconnected
        self._ready = False
        await self._release_subscription()
        if not await self._acquire_subscription(generation):
            return None
        # a drop on the new subscription during the fetch below must stick
        self._disconnected = None

        snapshot = await self._fetch_snapshot()
        if generation != self._generation:
            return None

        if isinstance(snapshot, SnapshotFetchError):
            logger.warning(
                "Resync snapshot for order %s failed: %s", self.order_id, snapshot.reason,
            )
            if self._disconnected is None:
                self._disconnected = previous
            self._mark_ready()
            return snapshot

        self._apply_now(OrderEvent.from_snapshot(snapshot))
        self._mark_ready()
        return None

    async def dispose(self) -> None:
        """Tear the session down. Idempotent."""
        if self._disposed:
            return
        self._disposed = True
        self._generation += 1
        self._pending.clear()

        if self._partner_task is not None and not self._partner_task.done():
            self._partner_task.cancel()
        self._partner_task = None

        await self._release_subscription()
        logger.info("Stopped tracking order %s", self.order_id)

    # ── Events ─────────────────────────────────────────────

    def apply(self, event: OrderEvent) -> None:
        """Fold one change notification into the state."""
        if self._disposed:
            return
        if not self._ready:
            logger.debug(
                "Queueing %s event for order %s until snapshot resolves",
                event.status.value, self.order_id,
            )
            self._pending.append(event)
            return
        self._apply_now(event)

    def _apply_now(self, event: OrderEvent) -> None:
        if self._applying:
            raise RuntimeError(f"apply re-entered for order {self.order_id}")
        self._applying = True
        try:
            previous = self._state
            self._state = fold_event(previous, event, self._reject_regressions)
            if self._state.current_stage is not event.status:
                logger.warning(
                    "Rejected stage regression %s -> %s for order %s",
                    previous.current_stage.value, event.status.value, self.order_id,
                )
        finally:
            self._applying = False

        if event.partner_id:
            self._ensure_partner(event.partner_id)

    async def _fetch_snapshot(self) -> OrderSnapshot | SnapshotFetchError:
        try:
            return await self._data.get_order_snapshot(self.order_id)
        except Exception as e:
            logger.exception("Snapshot source raised for order %s", self.order_id)
            return SnapshotFetchError(self.order_id, f"snapshot source error: {e}")

    def _mark_ready(self) -> None:
        self._ready = True
        while self._pending and not self._disposed:
            self._apply_now(self._pending.popleft())

    def _on_stream_event(self, event: OrderEvent) -> None:
        self.apply(event)

    def _on_stream_disconnect(self, condition: StreamDisconnected) -> None:
        if self._disposed:
            return
        self._disconnected = condition
        if self._on_disconnect_cb is not None:
            self._on_disconnect_cb(condition)

    # ── Subscription ───────────────────────────────────────

    async def _acquire_subscription(self, generation: int) -> bool:
        handle = await self._events.subscribe(
            self.order_id, self._on_stream_event, self._on_stream_disconnect,
        )
        if generation != self._generation:
            # disposed while subscribing
            await self._events.unsubscribe(handle)
            return False
        self._subscription = handle
        return True

    async def _release_subscription(self) -> None:
        handle, self._subscription = self._subscription, None
        if handle is not None:
            await self._events.unsubscribe(handle)

    # ── Partner ────────────────────────────────────────────

    def _ensure_partner(self, partner_id: str) -> None:
        if self._partner_id is not None:
            return
        self._partner_id = partner_id
        self._start_partner_fetch()

    def refresh_partner(self) -> bool:
        """Retry a failed partner lookup. Returns True if a fetch started."""
        if (
            self._disposed
            or self._partner_id is None
            or self._partner_error is None
            or (self._state is not None and self._state.partner is not None)
            or (self._partner_task is not None and not self._partner_task.done())
        ):
            return False
        self._start_partner_fetch()
        return True

    def _start_partner_fetch(self) -> None:
        self._partner_error = None
        self._partner_task = asyncio.create_task(
            self._load_partner(self._partner_id, self._generation),
        )

    async def _load_partner(self, partner_id: str, generation: int) -> None:
        try:
            result = await self._data.get_partner(partner_id)
        except Exception as e:
            logger.exception("Partner source raised for order %s", self.order_id)
            result = PartnerFetchError(partner_id, f"partner source error: {e}")
        if generation != self._generation or self._state is None:
            logger.debug("Discarding late partner %s for order %s", partner_id, self.order_id)
            return
        if isinstance(result, PartnerFetchError):
            logger.warning(
                "Partner %s for order %s unavailable: %s",
                partner_id, self.order_id, result.reason,
            )
            self._partner_error = result
            return
        self._state = replace(self._state, partner=result)

    # ── Projection ─────────────────────────────────────────

    @property
    def current_stage(self) -> Stage:
        return self._require_state().current_stage

    def classify(self, stage: Stage) -> StepState:
        return classify(stage, self.current_stage)

    def is_complete(self) -> bool:
        return self.current_stage is Stage.COMPLETED

    def can_show_otp(self) -> bool:
        state = self._require_state()
        return state.current_stage is Stage.VERIFYING and not state.otp_verified

    def can_show_partner_contact(self) -> bool:
        state = self._require_state()
        return state.current_stage is Stage.ARRIVED and state.partner is not None

    def get_projection(self) -> TrackingProjection:
        state = self._require_state()
        show_otp = self.can_show_otp()
        return TrackingProjection(
            order_id=self.order_id,
            current_stage=state.current_stage,
            stages=build_steps(state.current_stage, state.partner),
            partner=state.partner,
            can_show_otp=show_otp,
            can_show_partner_contact=self.can_show_partner_contact(),
            is_complete=self.is_complete(),
            otp_digits=list(self.verification_code) if show_otp and self.verification_code else [],
            reconnecting=self._disconnected is not None,
        )

    def _require_state(self) -> TrackerState:
        if self._state is None:
            raise RuntimeError(f"order {self.order_id} has no tracked state yet")
        return self._state
