"""
Directory API client for the web front end.

Thin async HTTP client over ``httpx.AsyncClient``. Page data is cached in
Redis (``page_cache:{api_path}``) when a cache client is supplied:

    list    — PAGE_CACHE_LIST_TTL_SECONDS
    detail  — until revalidated via /api/revalidate
    search  — never cached
"""

from typing import Any, Optional

import httpx
import structlog
from redis import Redis

from yellowbook.cache.redis_cache import (
    PAGE_CACHE_PREFIX,
    get_cached_json,
    set_cached_json,
)
from yellowbook.config import settings

logger = structlog.get_logger(__name__)

LISTINGS_PATH = "/yellow-books"


class DirectoryAPIError(Exception):
    """The Directory API answered with an unexpected status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


def page_cache_key(api_path: str) -> str:
    return f"{PAGE_CACHE_PREFIX}:{api_path}"


def listing_path(listing_id: str) -> str:
    return f"{LISTINGS_PATH}/{listing_id}"


class DirectoryClient:
    """Async HTTP client for the Yellowbook Directory API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        cache_client: Optional[Redis] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.API_URL).rstrip("/"),
            timeout=timeout or settings.API_TIMEOUT_SECONDS,
            transport=transport,
        )
        self.cache_client = cache_client

    async def aclose(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()

    async def _get(self, path: str, params: Optional[dict] = None, token: Optional[str] = None):
        headers = {"Authorization": f"Bearer {token}"} if token else None
        resp = await self._client.get(path, params=params, headers=headers)
        if resp.status_code >= 400:
            try:
                message = resp.json().get("error", resp.text)
            except ValueError:
                message = resp.text
            logger.warning("directory_api_error", path=path, status_code=resp.status_code)
            raise DirectoryAPIError(resp.status_code, str(message))
        return resp.json()

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def list_listings(self, fresh: bool = False) -> list[dict[str, Any]]:
        """
        All listings, newest first. Cached for PAGE_CACHE_LIST_TTL_SECONDS
        unless *fresh* is set.
        """
        key = page_cache_key(LISTINGS_PATH)
        if not fresh:
            cached = get_cached_json(key, self.cache_client)
            if cached is not None:
                return cached

        listings = await self._get(LISTINGS_PATH)
        set_cached_json(key, listings, self.cache_client, ttl_seconds=settings.PAGE_CACHE_LIST_TTL_SECONDS)
        return listings

    async def get_listing(self, listing_id: str) -> Optional[dict[str, Any]]:
        """One listing, or ``None`` when the API answers 404. Cached until revalidated."""
        path = listing_path(listing_id)
        key = page_cache_key(path)
        cached = get_cached_json(key, self.cache_client)
        if cached is not None:
            return cached

        try:
            listing = await self._get(path)
        except DirectoryAPIError as e:
            if e.status_code == 404:
                return None
            raise
        set_cached_json(key, listing, self.cache_client)
        return listing

    async def search_listings(self, query: str) -> list[dict[str, Any]]:
        """Substring search; always fresh."""
        return await self._get(LISTINGS_PATH, params={"search": query})

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    async def list_users(self, token: str) -> list[dict[str, Any]]:
        return await self._get("/admin/users", token=token)

    async def get_stats(self, token: str) -> dict[str, int]:
        return await self._get("/admin/stats", token=token)
