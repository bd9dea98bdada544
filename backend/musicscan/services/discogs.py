"""
Discogs API client.

Only what the queue producers need: listing an artist's releases page by
page, with a fixed pause between pages.
"""

import asyncio
import logging
from typing import Any, Callable

import httpx

from musicscan.config import settings
from musicscan.schemas.discogs import DiscogsArtistRelease, DiscogsArtistReleasesPage
from musicscan.services.functions_client import parse_response
from musicscan.services.http_client import UpstreamClient

logger = logging.getLogger(__name__)

SINGLE_FORMATS = ("Single", '7"', '12"')
PER_PAGE = 100


class DiscogsClient:
    """Async client for api.discogs.com."""

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        page_delay: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
        **client_options: Any,
    ):
        token = token if token is not None else settings.discogs_token
        headers = {"User-Agent": settings.discogs_user_agent}
        if token:
            headers["Authorization"] = f"Discogs token={token}"
        self.page_delay = page_delay if page_delay is not None else settings.page_delay
        self.sleep = sleep
        self.http = UpstreamClient(
            base_url or settings.discogs_api_url,
            headers=headers,
            transport=transport,
            sleep=sleep,
            **client_options,
        )

    async def artist_releases_page(
        self,
        artist_id: int,
        page: int = 1,
        release_format: str | None = None,
    ) -> DiscogsArtistReleasesPage:
        params: dict[str, Any] = {"page": page, "per_page": PER_PAGE}
        if release_format:
            params["format"] = release_format
        data = await self.http.get_json(f"artists/{artist_id}/releases", params=params)
        return parse_response("discogs artist releases", data, DiscogsArtistReleasesPage)

    async def artist_releases(
        self,
        artist_id: int,
        release_format: str | None = None,
    ) -> list[DiscogsArtistRelease]:
        """Fetch every page of an artist's releases in one format."""
        releases: list[DiscogsArtistRelease] = []
        page = 1
        total_pages = 1

        while page <= total_pages:
            data = await self.artist_releases_page(artist_id, page, release_format)
            if page == 1:
                total_pages = data.pagination.pages
                logger.info(
                    f"Discogs artist {artist_id} format={release_format}: "
                    f"{data.pagination.items} releases ({total_pages} pages)"
                )
            releases.extend(data.releases)
            page += 1
            if page <= total_pages and self.page_delay > 0:
                await self.sleep(self.page_delay)

        return releases

    async def artist_singles(self, artist_id: int) -> list[DiscogsArtistRelease]:
        """All releases in the single formats, in format order."""
        releases: list[DiscogsArtistRelease] = []
        for release_format in SINGLE_FORMATS:
            releases.extend(await self.artist_releases(artist_id, release_format))
        return releases
