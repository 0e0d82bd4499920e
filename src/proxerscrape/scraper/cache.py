# proxerscrape/scraper/cache.py

"""On-disk HTML cache for detail pages and profile tabs.

Layout below the cache directory:

    <cache_dir>/<numeric id>.html         detail (info) pages
    <cache_dir>/profile/<tab type>.html   profile tabs (anime, manga, novel)

Files are byte-for-byte copies of the fetched pages. A retrieval returns a
reader plus an invalidator; the invalidator deletes the cached file so a
consumer can disown a page it recognises as unusable.
"""

from __future__ import annotations

import asyncio
import io
import logging
import os
import tempfile
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, NamedTuple

from proxerscrape.config import Settings
from proxerscrape.domain.models import INFO_URL_RE, Media
from proxerscrape.scraper.client import (
    ProxerClient,
    RateLimiter,
    anime_rate_limiter,
    manga_rate_limiter,
    profile_tab_rate_limiter,
)

logger = logging.getLogger(__name__)


class ProfileTabType(str, Enum):
    ANIME = "anime"
    MANGA = "manga"
    NOVEL = "novel"


CacheInvalidator = Callable[[], None]


class RawPage(NamedTuple):
    """A retrieved page and the callable that evicts it from the cache."""

    reader: BinaryIO
    invalidate: CacheInvalidator


@dataclass(slots=True)
class CacheInfo:
    directory: Path
    detail_pages: int
    profile_tabs: int
    total_bytes: int


def get_cache_identifier(media: Media) -> str:
    """Return the numeric id in `media.proxer_url`, e.g. "296" for "/info/296#top"."""
    match = INFO_URL_RE.match(media.proxer_url)
    if match is None:
        msg = f"Not an info URL: {media.proxer_url!r}"
        raise ValueError(msg)
    return match.group(1)


class DiskCache:
    """HTML cache backed by one file per page.

    There is no internal locking: every entry owns its own file, and two
    concurrent misses for the same file simply both write the same bytes.
    """

    def __init__(
        self,
        base_dir: Path,
        *,
        query_media: Callable[[Media], Awaitable[bytes]],
        query_profile_tab: Callable[[str, str], Awaitable[bytes]],
        anime_limiter: RateLimiter | None = None,
        manga_limiter: RateLimiter | None = None,
        profile_tab_limiter: RateLimiter | None = None,
    ) -> None:
        self.base_dir = Path(base_dir)
        self.profile_dir = self.base_dir / "profile"
        self.profile_dir.mkdir(parents=True, exist_ok=True)

        self._query_media = query_media
        self._query_profile_tab = query_profile_tab
        self._anime_limiter = anime_limiter
        self._manga_limiter = manga_limiter
        self._profile_tab_limiter = profile_tab_limiter

    def detail_path(self, media: Media) -> Path:
        return self.base_dir / f"{get_cache_identifier(media)}.html"

    def profile_tab_path(self, tab_type: ProfileTabType | str) -> Path:
        return self.profile_dir / f"{ProfileTabType(tab_type).value}.html"

    async def retrieve_profile_tab_raw_data(
        self,
        profile_id: str,
        tab_type: ProfileTabType | str,
    ) -> RawPage:
        """Return a profile tab, fetching it only if it is not cached yet."""
        tab = ProfileTabType(tab_type)

        async def fetch() -> bytes:
            if self._profile_tab_limiter is not None:
                await self._profile_tab_limiter.acquire()
            return await self._query_profile_tab(profile_id, tab.value)

        return await _retrieve(self.profile_tab_path(tab), fetch)

    async def retrieve_detail_raw_data(self, media: Media) -> RawPage:
        """Return the info page of `media`, throttled by its media family."""
        limiter = self._manga_limiter if media.is_manga else self._anime_limiter
        return await self._retrieve_media(media, limiter)

    async def retrieve_anime_raw_data(self, media: Media) -> RawPage:
        return await self._retrieve_media(media, self._anime_limiter)

    async def retrieve_manga_raw_data(self, media: Media) -> RawPage:
        return await self._retrieve_media(media, self._manga_limiter)

    async def _retrieve_media(
        self,
        media: Media,
        limiter: RateLimiter | None,
    ) -> RawPage:
        async def fetch() -> bytes:
            if limiter is not None:
                await limiter.acquire()
            return await self._query_media(media)

        return await _retrieve(self.detail_path(media), fetch)

    def info(self) -> CacheInfo:
        """Count cached pages and their size on disk."""
        detail_files = list(self.base_dir.glob("*.html"))
        profile_files = list(self.profile_dir.glob("*.html"))
        total_bytes = sum(p.stat().st_size for p in detail_files + profile_files)
        return CacheInfo(
            directory=self.base_dir,
            detail_pages=len(detail_files),
            profile_tabs=len(profile_files),
            total_bytes=total_bytes,
        )

    def clear(self) -> int:
        """Delete every cached page and return how many were removed."""
        removed = 0
        for path in [*self.base_dir.glob("*.html"), *self.profile_dir.glob("*.html")]:
            path.unlink(missing_ok=True)
            removed += 1
        logger.info("Removed %s cached pages from %s.", removed, self.base_dir)
        return removed


async def _retrieve(path: Path, fetch: Callable[[], Awaitable[bytes]]) -> RawPage:
    def invalidate() -> None:
        logger.debug("Invalidating cached page %s.", path)
        path.unlink(missing_ok=True)

    try:
        cached = await asyncio.to_thread(path.read_bytes)
    except FileNotFoundError:
        pass
    else:
        logger.debug("Cache hit for %s.", path)
        return RawPage(io.BytesIO(cached), invalidate)

    logger.debug("Cache miss for %s, fetching.", path)
    body = await fetch()
    await asyncio.to_thread(_write_atomic, path, body)
    return RawPage(io.BytesIO(body), invalidate)


def _write_atomic(path: Path, data: bytes) -> None:
    """Write `data` so that readers see either the complete file or none."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}-", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def create_default_cache(client: ProxerClient, settings: Settings) -> DiskCache:
    """Wire the proxer.me client and the shared rate limiters into a cache."""
    return DiskCache(
        settings.cache_dir,
        query_media=client.fetch_media,
        query_profile_tab=client.fetch_profile_tab,
        anime_limiter=anime_rate_limiter,
        manga_limiter=manga_rate_limiter,
        profile_tab_limiter=profile_tab_rate_limiter,
    )
