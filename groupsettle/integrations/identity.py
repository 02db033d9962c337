"""Identity resolution: participant id (phone number) -> payable account."""
import logging
from typing import Dict, Optional, Protocol

import httpx

from groupsettle.core.config import settings

logger = logging.getLogger(__name__)


class IdentityResolver(Protocol):
    async def resolve(self, member_id: str) -> Optional[str]: ...


class StaticIdentityResolver:
    """Resolver backed by a fixed mapping."""

    def __init__(self, addresses: Dict[str, str]):
        self.addresses = dict(addresses)

    async def resolve(self, member_id: str) -> Optional[str]:
        return self.addresses.get(member_id)


class HttpIdentityResolver:
    """Looks up wallet addresses from the account directory service."""

    def __init__(self, base_url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.client = client or httpx.AsyncClient(
            base_url=base_url or settings.IDENTITY_RESOLVER_URL,
            timeout=settings.HTTP_TIMEOUT_SECONDS
        )

    async def close(self):
        await self.client.aclose()

    async def resolve(self, member_id: str) -> Optional[str]:
        """Return the member's address, or None if the directory has none."""
        try:
            response = await self.client.get(f"/accounts/{member_id}")
        except httpx.HTTPError as e:
            logger.warning("Identity lookup failed for %s: %s", member_id, e)
            return None

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning("Identity lookup for %s returned %s", member_id, response.status_code)
            return None
        return response.json().get("address")
