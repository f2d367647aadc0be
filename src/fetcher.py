"""Feed HTTP client module.

All aiohttp usage for feed traffic is isolated here. Auth decoration is
chosen from the feed's closed FeedAuth variant before each request.
"""

import asyncio
import logging
from typing import Dict, Mapping, Tuple

import aiohttp

from models import FeedDescriptor, HeaderAuth, NoAuth, UrlParamAuth

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """Raised when a feed cannot be retrieved over the network."""
    pass


def decorate_request(
    feed: FeedDescriptor, secrets: Mapping[str, str]
) -> Tuple[str, Dict[str, str], Dict[str, str]]:
    """Build the URL, headers and query parameters for a feed request.

    Args:
        feed: The feed to request
        secrets: Resolved API keys keyed by feed id

    Returns:
        Tuple of (url, headers, params)

    Raises:
        FetchError: If the feed has no URL or its key was never resolved
    """
    if not feed.url:
        raise FetchError(f"Feed {feed.id} has no URL")

    auth = feed.auth
    if isinstance(auth, NoAuth):
        return feed.url, {}, {}

    key = secrets.get(feed.id)
    if key is None:
        raise FetchError(f"No resolved API key for authenticated feed {feed.id}")

    if isinstance(auth, HeaderAuth):
        return feed.url, {auth.header_name: key}, {}
    if isinstance(auth, UrlParamAuth):
        return feed.url, {}, {auth.param_name: key}

    raise TypeError(f"Unsupported auth variant for feed {feed.id}: {auth!r}")


class FeedFetcher:
    """Fetches raw feed payloads through a shared aiohttp session."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        secrets: Mapping[str, str],
        timeout_seconds: int = 30,
    ) -> None:
        """Initialize the fetcher.

        Args:
            session: Shared aiohttp ClientSession
            secrets: Immutable snapshot of resolved API keys keyed by feed id
            timeout_seconds: Total timeout for one request
        """
        self._session = session
        self._secrets = secrets
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def fetch(self, feed: FeedDescriptor) -> bytes:
        """Fetch one feed payload.

        Args:
            feed: The feed to fetch

        Returns:
            Response body bytes

        Raises:
            FetchError: On transport failure, timeout or non-200 status
        """
        url, headers, params = decorate_request(feed, self._secrets)
        try:
            async with self._session.get(
                url, headers=headers, params=params, timeout=self._timeout
            ) as response:
                if response.status != 200:
                    raise FetchError(f"HTTP {response.status} from feed {feed.id}")
                return await response.read()
        except aiohttp.ClientError as e:
            raise FetchError(f"Request to feed {feed.id} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise FetchError(f"Request to feed {feed.id} timed out") from e
