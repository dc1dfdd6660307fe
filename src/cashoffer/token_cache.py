from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from cashoffer.errors import ProviderAuthError

logger = logging.getLogger(__name__)

TokenFetcher = Callable[[], Awaitable[tuple[str, float]]]


class ProviderTokenCache:
    """Process-wide bearer token for the paid VIN provider.

    ``fetch_token`` returns ``(access_token, expires_in_seconds)``. The token
    is treated as expired ``safety_margin_seconds`` early. Concurrent misses
    wait on one refresh instead of each hitting the token endpoint.
    """

    def __init__(
        self,
        fetch_token: TokenFetcher,
        safety_margin_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch_token = fetch_token
        self.safety_margin_seconds = safety_margin_seconds
        self._clock = clock
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    def _is_fresh(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at

    async def get_valid_token(self) -> str:
        if self._is_fresh():
            return self._token  # type: ignore[return-value]
        async with self._lock:
            if self._is_fresh():
                return self._token  # type: ignore[return-value]
            token, expires_in = await self._fetch_token()
            if not token:
                raise ProviderAuthError("Token endpoint returned no access token")
            self._token = token
            self._expires_at = self._clock() + max(0.0, float(expires_in) - self.safety_margin_seconds)
            self.refresh_count += 1
            logger.info("Refreshed VIN provider token", extra={"extra_data": {"expires_in": expires_in}})
            return token

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0
