# proxerscrape/scraper/cli.py

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import TextIO

import httpx

from proxerscrape.analysis.watchlist_stats import (
    format_duration,
    pick_next_to_watch,
    total_watch_time_left,
)
from proxerscrape.config import Settings, load_settings
from proxerscrape.domain.models import Watchlist, WatchlistCategory
from proxerscrape.scraper.cache import DiskCache, ProfileTabType, create_default_cache
from proxerscrape.scraper.client import ProxerClient
from proxerscrape.scraper.parser import (
    CaptchaRequiredError,
    ProfileParseError,
    parse_profile_media_tab,
)

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    """Entry point for the proxerscrape CLI."""
    args = _build_arg_parser().parse_args(argv)

    _configure_logging(verbose=args.verbose)
    settings = load_settings()

    try:
        if args.command == "watch-next":
            asyncio.run(_cmd_watch_next(settings, args.profile_id, args.tab))
        elif args.command == "watch-time-left":
            asyncio.run(_cmd_watch_time_left(settings, args.profile_id, args.tab))
        elif args.command == "cache":
            asyncio.run(_cmd_cache(settings, args.cache_command))
        else:
            msg = f"Unknown command: {args.command}"
            raise ValueError(msg)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user. Exiting.")
        sys.exit(1)
    except CaptchaRequiredError as exc:
        logger.error("%s. Wait a while before trying again.", exc)
        sys.exit(1)
    except (httpx.HTTPError, OSError, ValueError) as exc:
        logger.error("%s", exc)
        sys.exit(1)


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="proxerscrape",
        description="Answer questions about a proxer.me watchlist.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging.",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        required=True,
        help="Sub-command to run.",
    )

    # Both watchlist commands read the profile tab from stdin unless a
    # profile id is given.
    watchlist_args = argparse.ArgumentParser(add_help=False)
    watchlist_args.add_argument(
        "--profile-id",
        default=None,
        help="Fetch the profile tab of this user instead of reading stdin.",
    )
    watchlist_args.add_argument(
        "--tab",
        choices=[t.value for t in ProfileTabType],
        default=ProfileTabType.ANIME.value,
        help="Profile tab to load with --profile-id (default: %(default)s).",
    )

    subparsers.add_parser(
        "watch-next",
        parents=[watchlist_args],
        help="Suggest the best rated entry of the 'to watch' list.",
    )
    subparsers.add_parser(
        "watch-time-left",
        parents=[watchlist_args],
        help="Estimate the time left on 'currently watching' and 'to watch'.",
    )

    cache_parser = subparsers.add_parser(
        "cache",
        help="Inspect or clear the page cache.",
    )
    cache_parser.add_argument(
        "cache_command",
        choices=["info", "clear"],
        help="'info' shows what is cached, 'clear' deletes it.",
    )

    return parser


def _configure_logging(*, verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


async def _load_watchlist(
    cache: DiskCache,
    profile_id: str | None,
    tab: str,
    stdin: TextIO | None = None,
) -> Watchlist:
    if profile_id is None:
        logger.debug("Reading profile tab from stdin.")
        source = stdin if stdin is not None else sys.stdin
        return parse_profile_media_tab(source.buffer.read())

    page = await cache.retrieve_profile_tab_raw_data(profile_id, tab)
    with page.reader as reader:
        html = reader.read()
    try:
        return parse_profile_media_tab(html)
    except ProfileParseError:
        # Do not keep a broken profile tab around for the next run.
        page.invalidate()
        raise


async def _cmd_watch_next(settings: Settings, profile_id: str | None, tab: str) -> None:
    async with ProxerClient(settings) as client:
        cache = create_default_cache(client, settings)
        watchlist = await _load_watchlist(cache, profile_id, tab)
        await watchlist.to_watch.load_extra_data(cache.retrieve_detail_raw_data)

    media = pick_next_to_watch(watchlist.to_watch)
    if media is None:
        print("It seems like there's nothing available on your watchlist right now.")
        return
    print(f"Next, you should watch: {media.title} (rating {media.rating:.1f})")


async def _cmd_watch_time_left(
    settings: Settings,
    profile_id: str | None,
    tab: str,
) -> None:
    async with ProxerClient(settings) as client:
        cache = create_default_cache(client, settings)
        watchlist = await _load_watchlist(cache, profile_id, tab)

    _print_category("Currently Watching", watchlist.currently_watching)
    print()
    _print_category("To Watch", watchlist.to_watch)
    print()
    print(f"{format_duration(total_watch_time_left(watchlist.to_watch))} on to watch list.")
    print(
        f"{format_duration(total_watch_time_left(watchlist.currently_watching))} "
        "on currently watching list.",
    )


def _print_category(label: str, category: WatchlistCategory) -> None:
    print(f"{label} ({len(category)})")
    for media in category:
        print(media.title)


async def _cmd_cache(settings: Settings, cache_command: str) -> None:
    async with ProxerClient(settings) as client:
        cache = create_default_cache(client, settings)

        if cache_command == "info":
            info = await asyncio.to_thread(cache.info)
            print(f"Cache directory: {info.directory}")
            print(f"Detail pages:    {info.detail_pages}")
            print(f"Profile tabs:    {info.profile_tabs}")
            print(f"Size:            {info.total_bytes / 1024:.1f} KiB")
        elif cache_command == "clear":
            removed = await asyncio.to_thread(cache.clear)
            print(f"Removed {removed} cached pages.")
        else:
            msg = f"Unknown cache command: {cache_command}"
            raise ValueError(msg)


if __name__ == "__main__":
    # python -m proxerscrape.scraper.cli watch-next < anime.html
    # python -m proxerscrape.scraper.cli -v watch-time-left --profile-id 123456
    main()
