"""Order tracking endpoints."""

import logging
from fastapi import APIRouter, Depends, HTTPException

from kabadi.schemas import TrackingProjection, TrackingStart, TrackingStopped
from kabadi.services.errors import SnapshotFetchError
from kabadi.services.sessions import TrackingSessions, get_sessions
from kabadi.services.tracker import OrderStatusTracker

router = APIRouter()
logger = logging.getLogger(__name__)


def _raise_for_snapshot_error(error: SnapshotFetchError) -> None:
    if error.not_found:
        raise HTTPException(status_code=404, detail="Order not found")
    raise HTTPException(
        status_code=503,
        detail="Could not load order status right now. Please try again.",
    )


def _require_tracker(sessions: TrackingSessions, order_id: str) -> OrderStatusTracker:
    tracker = sessions.get(order_id)
    if tracker is None:
        raise HTTPException(status_code=404, detail="Order is not being tracked")
    return tracker


@router.post("/{order_id}", response_model=TrackingProjection)
async def start_tracking(
    order_id: str,
    data: TrackingStart | None = None,
    sessions: TrackingSessions = Depends(get_sessions),
):
    """Start (or restart) live tracking for an order and return its first projection."""
    code = data.verification_code if data else None
    result = await sessions.start(order_id, verification_code=code)
    if isinstance(result, SnapshotFetchError):
        logger.info("Tracking not started for order %s: %s", order_id, result.reason)
        _raise_for_snapshot_error(result)
    return result.get_projection()


@router.get("/{order_id}", response_model=TrackingProjection)
async def get_projection(order_id: str, sessions: TrackingSessions = Depends(get_sessions)):
    """Current render-ready view of a tracked order. Safe to poll."""
    return _require_tracker(sessions, order_id).get_projection()


@router.post("/{order_id}/resubscribe", response_model=TrackingProjection)
async def resubscribe(order_id: str, sessions: TrackingSessions = Depends(get_sessions)):
    """Reattach the live stream after a disconnect and resync from a fresh snapshot."""
    tracker = _require_tracker(sessions, order_id)
    error = await tracker.resubscribe()
    if error is not None:
        _raise_for_snapshot_error(error)
    return tracker.get_projection()


@router.post("/{order_id}/partner/refresh", response_model=TrackingProjection)
async def refresh_partner(order_id: str, sessions: TrackingSessions = Depends(get_sessions)):
    """Retry a failed partner lookup. The projection updates once it resolves."""
    tracker = _require_tracker(sessions, order_id)
    tracker.refresh_partner()
    return tracker.get_projection()


@router.delete("/{order_id}", response_model=TrackingStopped)
async def stop_tracking(order_id: str, sessions: TrackingSessions = Depends(get_sessions)):
    """Tear down tracking (user left the view or is booking a new pickup)."""
    stopped = await sessions.stop(order_id)
    return TrackingStopped(order_id=order_id, stopped=stopped)
