"""
Daraja OAuth access tokens.

One AccessTokenManager is shared per process. Tokens are cached until their
reported expiry minus a safety margin; concurrent callers that find no valid
token share a single in-flight credential exchange.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from app.core.exceptions import ProviderAuthError

logger = logging.getLogger(__name__)

TOKEN_PATH = "/oauth/v1/generate"


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_at: float


class AccessTokenManager:
    def __init__(
        self,
        client: httpx.AsyncClient,
        consumer_key: str,
        consumer_secret: str,
        safety_margin_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._consumer_key = consumer_key
        self._consumer_secret = consumer_secret
        self._safety_margin = safety_margin_seconds
        self._clock = clock
        self._token: Optional[AccessToken] = None
        self._inflight: Optional[asyncio.Future] = None

    def _cached(self) -> Optional[str]:
        if self._token is not None and self._clock() < self._token.expires_at:
            return self._token.value
        return None

    async def get_token(self) -> str:
        """Return a valid bearer token, exchanging credentials only when needed."""
        token = self._cached()
        if token:
            return token
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._exchange())
            self._inflight.add_done_callback(self._clear_inflight)
        # A cancelled caller must not cancel the exchange other callers are waiting on.
        return await asyncio.shield(self._inflight)

    def invalidate(self) -> None:
        """Drop the cached token, e.g. after the provider rejected it with 401."""
        self._token = None

    def _clear_inflight(self, fut: asyncio.Future) -> None:
        self._inflight = None
        if not fut.cancelled():
            # Mark retrieved so an exchange nobody awaited any more does not warn.
            fut.exception()

    async def _exchange(self) -> str:
        try:
            response = await self._client.get(
                TOKEN_PATH,
                params={"grant_type": "client_credentials"},
                auth=httpx.BasicAuth(self._consumer_key, self._consumer_secret),
            )
        except httpx.HTTPError as exc:
            logger.error("M-Pesa token exchange failed: %s", exc.__class__.__name__)
            raise ProviderAuthError(f"token exchange transport error: {exc!r}") from exc

        if response.status_code != 200:
            logger.error("M-Pesa token exchange rejected with HTTP %s", response.status_code)
            raise ProviderAuthError(f"token endpoint returned HTTP {response.status_code}")

        try:
            data = response.json()
            value = data["access_token"]
            expires_in = int(data.get("expires_in", 3599))
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("M-Pesa token response could not be parsed")
            raise ProviderAuthError("token endpoint returned an unexpected body") from exc
        if not value:
            raise ProviderAuthError("token endpoint returned an empty token")

        lifetime = max(expires_in - self._safety_margin, 0)
        self._token = AccessToken(value=value, expires_at=self._clock() + lifetime)
        logger.info("M-Pesa access token refreshed, valid for %ss", lifetime)
        return value
