"""
Tracking failure values.

These are returned, never raised, across the tracker boundary:
  - SnapshotFetchError: fatal to starting a session
  - PartnerFetchError: non-fatal, partner stays absent
  - StreamDisconnected: non-fatal, caller decides when to resubscribe
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class SnapshotFetchError:
    order_id: str
    reason: str
    not_found: bool = False


@dataclass(frozen=True)
class PartnerFetchError:
    partner_id: str
    reason: str
    not_found: bool = False


@dataclass(frozen=True)
class StreamDisconnected:
    order_id: str
    reason: str
