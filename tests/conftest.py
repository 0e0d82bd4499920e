"""Shared fixtures for cache and enrichment tests."""

from __future__ import annotations

import io
from collections.abc import Callable
from pathlib import Path

import pytest

from proxerscrape.domain.models import Media
from proxerscrape.scraper.cache import DiskCache, RawPage


class PageRetriever:
    """Serve fixed HTML per proxer URL and record invalidations."""

    def __init__(self, pages: dict[str, str]) -> None:
        self.pages = pages
        self.calls: list[str] = []
        self.invalidated: list[str] = []

    async def __call__(self, media: Media) -> RawPage:
        self.calls.append(media.proxer_url)

        def invalidate() -> None:
            self.invalidated.append(media.proxer_url)

        return RawPage(io.BytesIO(self.pages[media.proxer_url].encode("utf-8")), invalidate)


async def _unexpected_media_query(media: Media) -> bytes:
    raise AssertionError(f"unexpected fetch of {media.proxer_url}")


async def _unexpected_tab_query(profile_id: str, tab_type: str) -> bytes:
    raise AssertionError(f"unexpected fetch of profile {profile_id}/{tab_type}")


@pytest.fixture
def offline_cache(tmp_path: Path) -> DiskCache:
    """A cache whose fetch functions fail the test when called."""
    return DiskCache(
        tmp_path,
        query_media=_unexpected_media_query,
        query_profile_tab=_unexpected_tab_query,
    )


@pytest.fixture
def make_retriever() -> Callable[[dict[str, str]], PageRetriever]:
    return PageRetriever
