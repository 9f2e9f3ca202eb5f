"""
Bearer token acquisition for the load balancer control plane.

Exchanges client credentials for an access token at the identity provider
(Keycloak token exchange) and caches it until shortly before it expires.
One TokenProvider is shared by all concurrent reconciliations; refreshes
are serialized so simultaneous callers trigger a single exchange.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

import aiohttp

from errors import AuthenticationError

logger = logging.getLogger(__name__)

TOKEN_EXCHANGE_GRANT = "urn:ietf:params:oauth:grant-type:token-exchange"


class TokenProvider:
    """Cached access token with expiry-driven refresh."""

    def __init__(
        self,
        identity_provider_url: str,
        client_id: str,
        client_secret: str,
        requested_subject: str,
        timeout: int = 30,
        expiry_skew: int = 30,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.identity_provider_url = identity_provider_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.requested_subject = requested_subject
        self.timeout = timeout
        self.expiry_skew = expiry_skew
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: float = 0.0
        self._lock = asyncio.Lock()

    def _valid(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at

    async def get_token(self) -> str:
        """Return a valid access token, refreshing it if needed."""
        if self._valid():
            return self._token

        async with self._lock:
            # Another caller may have refreshed while we waited
            if self._valid():
                return self._token
            token, expires_in = await self._exchange()
            self._token = token
            self._expires_at = self._clock() + max(0, expires_in - self.expiry_skew)
            logger.debug(f"Obtained access token valid for {expires_in}s")
            return token

    def invalidate(self) -> None:
        """Drop the cached token so the next call re-authenticates."""
        self._token = None
        self._expires_at = 0.0

    async def _exchange(self) -> tuple[str, int]:
        payload = {
            "grant_type": TOKEN_EXCHANGE_GRANT,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "requested_subject": self.requested_subject,
        }
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.identity_provider_url, data=payload) as resp:
                    if resp.status != 200:
                        text = await resp.text()
                        raise AuthenticationError(
                            f"Token exchange failed: {resp.status} - {text}",
                            status=resp.status,
                        )
                    body = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AuthenticationError(f"Token exchange failed: {e}") from e

        token = body.get("access_token")
        if not token:
            raise AuthenticationError("Token exchange response has no access_token")
        return token, int(body.get("expires_in", 300))
