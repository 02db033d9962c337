"""
Payment rail client.

The rail exposes an idempotent transfer primitive with eventual
confirmation:
    submit(amount, from_account, to_account, idempotency_key) -> reference
    confirm(reference) -> returns once confirmed, raises PaymentRailError
                          if the rail reports the transfer as failed
Submitting the same idempotency key twice never moves money twice.
"""

import asyncio
import logging
from typing import Optional, Protocol

import httpx

from groupsettle.core.config import settings
from groupsettle.core.exceptions import PaymentRailError

logger = logging.getLogger(__name__)


class PaymentRail(Protocol):
    async def submit(
        self,
        amount: int,
        from_account: str,
        to_account: str,
        idempotency_key: str,
    ) -> str: ...

    async def confirm(self, reference: str) -> None: ...


class HttpPaymentRail:
    """PaymentRail over the rail's REST API."""

    CONFIRMED = "confirmed"
    FAILED = "failed"

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        poll_interval: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.poll_interval = poll_interval
        self.client = client or httpx.AsyncClient(
            base_url=base_url or settings.PAYMENT_RAIL_URL,
            headers={"Authorization": f"Bearer {api_key or settings.PAYMENT_RAIL_API_KEY}"},
            timeout=settings.HTTP_TIMEOUT_SECONDS
        )

    async def close(self):
        await self.client.aclose()

    async def submit(self, amount: int, from_account: str, to_account: str, idempotency_key: str) -> str:
        payload = {
            "amount": amount,
            "from_account": from_account,
            "to_account": to_account,
            "idempotency_key": idempotency_key
        }
        data = await self._request(
            "POST", "/transfers",
            json=payload,
            headers={"Idempotency-Key": idempotency_key}
        )
        reference = data.get("reference")
        if not reference:
            raise PaymentRailError("rail response missing transfer reference", retryable=True)
        return reference

    async def confirm(self, reference: str) -> None:
        """Poll the transfer until the rail reports a final status."""
        while True:
            data = await self._request("GET", f"/transfers/{reference}")
            status = data.get("status")
            if status == self.CONFIRMED:
                return
            if status == self.FAILED:
                raise PaymentRailError(data.get("reason") or "transfer failed", retryable=False)
            await asyncio.sleep(self.poll_interval)

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise PaymentRailError(f"rail unreachable: {e}", retryable=True) from e

        if response.status_code >= 500 or response.status_code == 429:
            raise PaymentRailError(f"rail error {response.status_code}", retryable=True)
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail")
            except ValueError:
                detail = None
            raise PaymentRailError(
                detail or f"rail rejected transfer ({response.status_code})",
                retryable=False
            )
        return response.json()
