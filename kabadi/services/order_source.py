"""
Order Data Client — snapshot and partner lookups against the data service.

The data service exposes PostgREST-style tables:
  GET /orders?id=eq.<id>&select=status,partner_id,otp_verified
  GET /partners?id=eq.<id>&select=name,phone

Failures are logged and returned as values; this client never raises.
"""

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from kabadi.config import settings
from kabadi.schemas import OrderSnapshot, Partner
from kabadi.services.errors import PartnerFetchError, SnapshotFetchError

logger = logging.getLogger(__name__)

ORDER_COLUMNS = "status,partner_id,otp_verified"
PARTNER_COLUMNS = "name,phone"


class OrderDataClient:
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.DATA_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.DATA_API_KEY
        self.timeout = timeout or settings.DATA_API_TIMEOUT_SEC
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _fetch_row(self, table: str, row_id: str, columns: str) -> dict[str, Any] | None:
        """Fetch a single row by id. Returns None when no row matches."""
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self._headers(),
            transport=self._transport,
        ) as client:
            resp = await client.get(
                f"/{table}",
                params={"id": f"eq.{row_id}", "select": columns, "limit": "1"},
            )
            resp.raise_for_status()
            rows = resp.json()
        if not isinstance(rows, list):
            raise ValueError(f"expected a list of rows, got {type(rows).__name__}")
        return rows[0] if rows else None

    async def get_order_snapshot(self, order_id: str) -> OrderSnapshot | SnapshotFetchError:
        try:
            row = await self._fetch_row("orders", order_id, ORDER_COLUMNS)
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Snapshot fetch failed: order_id=%s, error=%s", order_id, e)
            return SnapshotFetchError(order_id, f"data service error: {e}")

        if row is None:
            logger.info("Snapshot fetch: order %s not found", order_id)
            return SnapshotFetchError(order_id, "Order not found", not_found=True)

        try:
            return OrderSnapshot.model_validate(row)
        except ValidationError as e:
            logger.error("Snapshot for order %s is malformed: %s", order_id, e)
            return SnapshotFetchError(order_id, "malformed order row")

    async def get_partner(self, partner_id: str) -> Partner | PartnerFetchError:
        try:
            row = await self._fetch_row("partners", partner_id, PARTNER_COLUMNS)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Partner fetch failed: partner_id=%s, error=%s", partner_id, e)
            return PartnerFetchError(partner_id, f"data service error: {e}")

        if row is None:
            logger.warning("Partner %s not found", partner_id)
            return PartnerFetchError(partner_id, "Partner not found", not_found=True)

        try:
            return Partner.model_validate(row)
        except ValidationError as e:
            logger.warning("Partner %s row is malformed: %s", partner_id, e)
            return PartnerFetchError(partner_id, "malformed partner row")
