# proxerscrape/scraper/enrichment.py

"""Concurrent detail-page enrichment of a watchlist category."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Iterable
from typing import cast

from proxerscrape.domain.models import Media, MediaRawDataRetriever, WatchlistCategory
from proxerscrape.scraper.parser import PageStatus, parse_detail_page

logger = logging.getLogger(__name__)


async def load_extra_data(
    category: WatchlistCategory,
    retriever: MediaRawDataRetriever,
) -> None:
    """Load the detail page of every entry in `category` and fill its fields.

    One task is started per entry. The first failing task (transport error,
    parse error, captcha) cancels the others; once they have all finished,
    its exception is re-raised and `category.extra_data_loaded` stays False so
    the call can be retried. Unusable pages (404, login required) are not
    failures. Calling this again after a success does nothing.
    """
    if category.extra_data_loaded:
        return

    tasks = [
        asyncio.create_task(_enrich_entry(media, retriever), name=media.proxer_url)
        for media in category.entries
    ]
    if not tasks:
        category.extra_data_loaded = True
        return

    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        await _cancel_all(tasks)
        raise

    failed = [
        task for task in tasks
        if task in done and not task.cancelled() and task.exception() is not None
    ]
    if failed:
        await _cancel_all(pending)
        error = cast(BaseException, failed[0].exception())
        logger.error(
            "Loading details failed for %s (%s of %s entries failed): %s",
            failed[0].get_name(),
            len(failed),
            len(tasks),
            error,
        )
        raise error

    outcomes = Counter(task.result() for task in tasks)
    logger.info(
        "Loaded details for %s entries (%s unusable).",
        outcomes[PageStatus.PARSED],
        len(tasks) - outcomes[PageStatus.PARSED],
    )
    category.extra_data_loaded = True


async def _enrich_entry(media: Media, retriever: MediaRawDataRetriever) -> PageStatus:
    page = await retriever(media)
    with page.reader as reader:
        html = reader.read()
    return parse_detail_page(html, media, page.invalidate)


async def _cancel_all(tasks: Iterable[asyncio.Task[PageStatus]]) -> None:
    """Cancel `tasks` and wait until each of them has finished."""
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
