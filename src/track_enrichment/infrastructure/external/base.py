"""Shared plumbing for the remote tag and lyrics adapters.

Every adapter talks JSON over HTTP through one lazily created
``aiohttp.ClientSession``. Responses are classified so callers can apply the
caching policy: a definitive "nothing here" is returned as ``None`` and may be
cached, while transient trouble raises :class:`LookupFailedError` and must not
be cached.
"""

import asyncio
import logging
import re
import time
from typing import Any, Dict, Optional

import aiohttp

from ...core.metadata_cache import MetadataCache
from ...exceptions import LookupFailedError
from ...models.config import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)

_WORD_START = re.compile(r"(?<![\w'])[a-z]")


def title_case(tag: str) -> str:
    """Capitalize the first letter of each word, lowering the rest."""
    return _WORD_START.sub(lambda m: m.group(0).upper(), tag.strip().lower())


class RemoteAdapter:
    """Base class for adapters of remote metadata services."""

    source_name = "remote"

    def __init__(
        self,
        cache: Optional[MetadataCache] = None,
        timeout: float = 10.0,
        request_delay: float = 0.0,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize the adapter.

        Args:
            cache: Metadata cache consulted before and filled after lookups
            timeout: Total request timeout in seconds
            request_delay: Minimum spacing between consecutive requests
            user_agent: User-Agent header sent with every request
            session: Optional shared session; the adapter never closes it
        """
        self.cache = cache
        self.timeout = timeout
        self.request_delay = request_delay
        self.user_agent = user_agent
        self._session = session
        self._owns_session = session is None
        self._last_request_time = 0.0

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"User-Agent": self.user_agent},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def _rate_limit(self) -> None:
        """Keep at least ``request_delay`` seconds between requests."""
        if self.request_delay <= 0:
            return
        time_since_last = time.monotonic() - self._last_request_time
        if time_since_last < self.request_delay:
            await asyncio.sleep(self.request_delay - time_since_last)
        self._last_request_time = time.monotonic()

    async def _request_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        """GET ``url`` and decode the JSON body.

        Returns:
            The decoded body, or None when the service answered with a
            client error meaning the item does not exist.

        Raises:
            LookupFailedError: On network errors, timeouts, rate limiting,
                server errors or an undecodable body.
        """
        await self._rate_limit()
        session = await self._get_session()

        try:
            async with session.get(url, params=params) as response:
                status = response.status
                if status == 429 or status >= 500:
                    raise LookupFailedError(f"{self.source_name} returned HTTP {status}")
                if status >= 400:
                    logger.debug(f"{self.source_name} returned HTTP {status} for {url}")
                    return None
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise LookupFailedError(f"{self.source_name} sent an undecodable body: {e}") from e
        except aiohttp.ClientError as e:
            raise LookupFailedError(f"{self.source_name} request failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise LookupFailedError(f"{self.source_name} request timed out") from e
