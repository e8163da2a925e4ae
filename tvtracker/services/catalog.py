import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from tvtracker.config import settings
from tvtracker.exceptions import CatalogError

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS = 429
RATE_LIMIT_WAIT_SECONDS = 5.0
RATE_LIMIT_MAX_RETRIES = 3


class TVMazeClient:
    """Client for the TVMaze show catalog API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_ms: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = (base_url or settings.catalog_base_url).rstrip("/")
        self.timeout_ms = timeout_ms if timeout_ms is not None else settings.catalog_timeout_ms
        self.transport = transport
        self.headers = {"Accept": "application/json"}

    async def _get_json(self, path: str, params: dict, failure: str) -> Any:
        """
        GET a catalog resource and decode it.

        Every failure (timeout, network, HTTP status, JSON) is raised as a
        CatalogError. `failure` prefixes the message of HTTP status errors.
        """
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.get(
                    url,
                    params=params,
                    headers=self.headers,
                    timeout=self.timeout_ms / 1000
                )
        except httpx.TimeoutException as e:
            raise CatalogError(f"Request timeout after {self.timeout_ms}ms", cause=e)
        except httpx.TransportError as e:
            raise CatalogError(f"Network error while fetching {url}", cause=e)

        if not response.is_success:
            raise CatalogError(
                f"{failure}: {response.reason_phrase}",
                status_code=response.status_code
            )

        try:
            return response.json()
        except ValueError as e:
            raise CatalogError(
                f"Failed to parse JSON response from {url}",
                status_code=response.status_code,
                cause=e
            )

    async def fetch_show_with_embedded_episodes(self, maze_id: str) -> dict:
        """Get a show including all of its episodes."""
        result = await self._get_json(
            f"/shows/{maze_id}",
            {"embed": "episodes"},
            f"Failed to fetch show with ID {maze_id}"
        )
        if not isinstance(result, dict):
            raise CatalogError(f"Invalid response format for show with ID {maze_id}")
        return result

    async def fetch_show(self, maze_id: str) -> dict:
        """Get a show without episodes."""
        result = await self._get_json(
            f"/shows/{maze_id}",
            {},
            f"Failed to fetch show with ID {maze_id}"
        )
        if not isinstance(result, dict):
            raise CatalogError(f"Invalid response format for show with ID {maze_id}")
        return result

    async def fetch_episode(self, maze_id: str) -> dict:
        """Get a single episode."""
        result = await self._get_json(
            f"/episodes/{maze_id}",
            {},
            f"Failed to fetch episode with ID {maze_id}"
        )
        if not isinstance(result, dict):
            raise CatalogError(f"Invalid response format for episode with ID {maze_id}")
        return result

    async def fetch_search_results(self, query: str) -> list[dict]:
        """Search shows by name."""
        result = await self._get_json(
            "/search/shows",
            {"q": query},
            f'Failed to search for shows with query "{query}"'
        )
        if not isinstance(result, list):
            raise CatalogError(f'Invalid response format for search with query "{query}"')
        return result


async def with_rate_limit_retry(
    call: Callable[..., Awaitable[Any]],
    *args,
    max_retries: int = RATE_LIMIT_MAX_RETRIES,
    wait_seconds: float = RATE_LIMIT_WAIT_SECONDS
) -> Any:
    """Retry a catalog call while it is rate limited. Maintenance use only."""
    attempt = 0
    while True:
        try:
            return await call(*args)
        except CatalogError as e:
            if e.status_code != RATE_LIMIT_STATUS or attempt >= max_retries:
                raise
            attempt += 1
            logger.warning(
                f"Rate limited, waiting {wait_seconds:g} seconds... (attempt {attempt}/{max_retries})"
            )
            await asyncio.sleep(wait_seconds)


def get_catalog_client() -> TVMazeClient:
    """Dependency for route handlers that talk to the catalog."""
    return TVMazeClient()
