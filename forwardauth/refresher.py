"""
Background JWKS refresh.

Fetches the key set from the Access team domain as soon as the task starts (this
is what makes the sidecar ready), then again every refresh interval so rolled
keys are picked up. A failed fetch is retried after a short fixed delay and does
not count against the long interval: the next scheduled fetch is always one full
interval after the last successful one.
"""
import asyncio
import logging
from typing import Awaitable, Callable

import httpx

from forwardauth.errors import KeySetError
from forwardauth.keys import IssuerIdentity, KeySetCache, KeySetSnapshot

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

DEFAULT_REFRESH_INTERVAL = 3600.0
DEFAULT_RETRY_DELAY = 5.0
DEFAULT_FETCH_TIMEOUT = 10.0


class KeySetRefresher:
    """Single writer for a KeySetCache."""

    def __init__(
        self,
        issuer: IssuerIdentity,
        cache: KeySetCache,
        *,
        client: httpx.AsyncClient | None = None,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        fetch_timeout: float = DEFAULT_FETCH_TIMEOUT,
        sleep: Sleep = asyncio.sleep,
    ):
        self.jwks_url = issuer.jwks_url
        self.cache = cache
        self.refresh_interval = refresh_interval
        self.retry_delay = retry_delay
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(fetch_timeout))
        self._sleep = sleep

    async def fetch(self) -> KeySetSnapshot:
        """GET the JWKS document. Raises httpx.HTTPError, ValueError or KeySetError."""
        response = await self._client.get(self.jwks_url, headers={"Accept": "application/json"})
        response.raise_for_status()
        return KeySetSnapshot.from_jwks(response.json())

    async def refresh_once(self) -> bool:
        """
        Fetch once and publish if the key set changed.
        Returns True on a successful fetch (published or not), False on failure.
        """
        try:
            snapshot = await self.fetch()
        except (httpx.HTTPError, ValueError, KeySetError) as e:
            logger.error(
                "Error during refreshing JWKS data from %s: %s. Retrying in %s seconds.",
                self.jwks_url, e, self.retry_delay,
            )
            return False
        except Exception:
            # The loop must survive anything a fetch raises
            logger.exception("Unexpected error refreshing JWKS data from %s.", self.jwks_url)
            return False

        if snapshot != self.cache.read():
            self.cache.publish(snapshot)
            logger.info("Refreshed JWKS data from %s (kids=%s).", self.jwks_url, snapshot.key_ids)
        else:
            logger.debug("JWKS data from %s unchanged.", self.jwks_url)
        return True

    async def run(self) -> None:
        """Refresh forever. Only task cancellation ends this loop."""
        logger.info("Starting background JWKS refresh task for %s.", self.jwks_url)
        while True:
            if await self.refresh_once():
                await self._sleep(self.refresh_interval)
            else:
                await self._sleep(self.retry_delay)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
