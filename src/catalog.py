"""Feed catalog client module.

Lists GTFS-Realtime vehicle-position feeds from the MobilityData catalog API
and narrows them down to the feeds that can be sampled in this run.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

import aiohttp

from fetcher import FetchError
from models import FeedAuth, FeedDescriptor, HeaderAuth, NoAuth, UrlParamAuth

logger = logging.getLogger(__name__)

# MobilityData authentication_type values
AUTH_NONE = 0
AUTH_URL_PARAM = 1
AUTH_HEADER = 2


def parse_feed_auth(source_info: Dict[str, Any]) -> FeedAuth:
    """Map a catalog source_info block to a FeedAuth variant."""
    auth_type = source_info.get("authentication_type") or AUTH_NONE
    name = source_info.get("api_key_parameter_name") or ""

    if auth_type == AUTH_URL_PARAM:
        return UrlParamAuth(param_name=name or "api_key")
    if auth_type == AUTH_HEADER:
        return HeaderAuth(header_name=name or "Authorization")
    return NoAuth()


def parse_feed_descriptor(item: Dict[str, Any]) -> Optional[FeedDescriptor]:
    """Convert one catalog JSON record into a FeedDescriptor.

    Args:
        item: A single element of the /v1/gtfs_rt_feeds response

    Returns:
        FeedDescriptor, or None if the record has no id
    """
    feed_id = item.get("id")
    if not isinstance(feed_id, str) or not feed_id:
        return None

    source_info = item.get("source_info") or {}
    return FeedDescriptor(
        id=feed_id,
        name=item.get("provider") or "",
        url=source_info.get("producer_url") or None,
        auth=parse_feed_auth(source_info),
        status=item.get("status"),
    )


def select_active_feeds(
    feeds: Iterable[FeedDescriptor],
    resolved_keys: Mapping[str, str],
    excluded: Set[str],
) -> List[FeedDescriptor]:
    """Filter the catalog down to the feeds sampled in this run.

    A feed is dropped when it has no URL, is deprecated, is excluded by
    configuration, or requires auth but has no resolved key.

    Args:
        feeds: Every feed listed by the catalog
        resolved_keys: Immutable snapshot of resolved API keys keyed by feed id
        excluded: Feed ids excluded by configuration

    Returns:
        List of active FeedDescriptor
    """
    active = []
    for feed in feeds:
        if not feed.url or feed.is_deprecated:
            continue
        if feed.id in excluded:
            logger.info(f"Feed {feed.id} excluded by configuration")
            continue
        if feed.requires_auth and feed.id not in resolved_keys:
            logger.debug(f"Feed {feed.id} requires auth and has no resolved key")
            continue
        active.append(feed)
    return active


class MobilityDataCatalog:
    """Client for the MobilityData feed catalog."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        refresh_token: str,
        base_url: str = "https://api.mobilitydatabase.org",
        timeout_seconds: int = 30,
    ) -> None:
        self._session = session
        self._refresh_token = refresh_token
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._access_token: Optional[str] = None

    async def _exchange_token(self) -> str:
        """Exchange the refresh token for an access token."""
        try:
            async with self._session.post(
                f"{self._base_url}/v1/tokens",
                json={"refresh_token": self._refresh_token},
                timeout=self._timeout,
            ) as response:
                if response.status != 200:
                    body = await response.text()
                    raise FetchError(
                        f"Token exchange failed with status {response.status}: {body}"
                    )
                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FetchError(f"Failed to send token request: {e}") from e

        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise FetchError("Token response did not contain an access_token")
        return token

    async def list_feeds(self) -> List[FeedDescriptor]:
        """List every vehicle-position feed in the catalog.

        Returns:
            List of FeedDescriptor

        Raises:
            FetchError: If the catalog cannot be reached or returns an error
        """
        if self._access_token is None:
            self._access_token = await self._exchange_token()

        try:
            async with self._session.get(
                f"{self._base_url}/v1/gtfs_rt_feeds",
                params={"limit": "999", "offset": "0", "entity_types": "vp"},
                headers={"Authorization": f"Bearer {self._access_token}"},
                timeout=self._timeout,
            ) as response:
                if response.status != 200:
                    body = await response.text()
                    raise FetchError(
                        f"Catalog returned status {response.status}: {body}"
                    )
                items = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FetchError(f"Failed to list catalog feeds: {e}") from e

        if not isinstance(items, list):
            raise FetchError("Catalog response was not a JSON list")

        feeds = []
        for item in items:
            if not isinstance(item, dict):
                continue
            feed = parse_feed_descriptor(item)
            if feed is not None:
                feeds.append(feed)

        logger.info(f"Catalog listed {len(feeds)} vehicle-position feeds")
        return feeds
