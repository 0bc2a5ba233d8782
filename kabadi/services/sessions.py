"""Registry of live tracking sessions, at most one tracker per order id."""

from __future__ import annotations
import logging
from typing import Callable

from kabadi.services.errors import SnapshotFetchError
from kabadi.services.order_source import OrderDataClient
from kabadi.services.order_stream import RedisOrderStream, get_redis
from kabadi.services.tracker import OrderStatusTracker

logger = logging.getLogger(__name__)

TrackerFactory = Callable[[str, str | None], OrderStatusTracker]


class TrackingSessions:
    def __init__(self, tracker_factory: TrackerFactory):
        self._factory = tracker_factory
        self._trackers: dict[str, OrderStatusTracker] = {}

    def __len__(self) -> int:
        return len(self._trackers)

    def get(self, order_id: str) -> OrderStatusTracker | None:
        return self._trackers.get(order_id)

    async def start(
        self,
        order_id: str,
        verification_code: str | None = None,
    ) -> OrderStatusTracker | SnapshotFetchError:
        """
        Begin tracking an order, replacing any earlier session for it.

        Returns the ready tracker, or the SnapshotFetchError that kept it
        from entering tracking.
        """
        await self.stop(order_id)

        tracker = self._factory(order_id, verification_code)
        self._trackers[order_id] = tracker
        try:
            error = await tracker.initialize()
        except Exception:
            if self._trackers.get(order_id) is tracker:
                del self._trackers[order_id]
            await tracker.dispose()
            raise
        if error is not None or tracker.disposed:
            if self._trackers.get(order_id) is tracker:
                del self._trackers[order_id]
            await tracker.dispose()
            if error is None:
                error = SnapshotFetchError(order_id, "session replaced during start")
            return error
        return tracker

    async def stop(self, order_id: str) -> bool:
        tracker = self._trackers.pop(order_id, None)
        if tracker is None:
            return False
        await tracker.dispose()
        return True

    async def close(self) -> None:
        """Dispose every live session (shutdown)."""
        trackers, self._trackers = list(self._trackers.values()), {}
        for tracker in trackers:
            await tracker.dispose()
        if trackers:
            logger.info("Closed %d tracking sessions", len(trackers))


_sessions: TrackingSessions | None = None


async def get_sessions() -> TrackingSessions:
    """Process-wide registry wired to the data service and redis."""
    global _sessions
    if _sessions is None:
        data_source = OrderDataClient()
        event_source = RedisOrderStream(await get_redis())

        def build(order_id: str, verification_code: str | None) -> OrderStatusTracker:
            return OrderStatusTracker(
                order_id, data_source, event_source, verification_code=verification_code,
            )

        _sessions = TrackingSessions(build)
    return _sessions


async def close_sessions() -> None:
    global _sessions
    if _sessions is not None:
        await _sessions.close()
        _sessions = None
