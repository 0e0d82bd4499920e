from __future__ import annotations

from collections.abc import Iterable
from datetime import timedelta

from proxerscrape.domain.models import Media, MediaType, Status

# Rough runtimes used for estimates.
SERIES_EPISODE_RUNTIME = timedelta(minutes=20)
SPECIAL_EPISODE_RUNTIME = timedelta(minutes=7)
MOVIE_RUNTIME = timedelta(minutes=90)


def episodes_left(media: Media) -> int:
    """Episodes not watched yet. Never negative, even for odd profile data."""
    return max(media.episode_count - media.episodes_watched, 0)


def watch_time_left(media: Media) -> timedelta:
    """Estimate the remaining watch time of a single entry.

    Manga and unknown types count as zero.
    """
    if media.type is MediaType.SERIES:
        return episodes_left(media) * SERIES_EPISODE_RUNTIME
    if media.type is MediaType.MOVIE:
        return MOVIE_RUNTIME
    if media.type is MediaType.SPECIAL:
        return episodes_left(media) * SPECIAL_EPISODE_RUNTIME
    return timedelta(0)


def total_watch_time_left(entries: Iterable[Media]) -> timedelta:
    return sum((watch_time_left(media) for media in entries), timedelta(0))


def pick_next_to_watch(entries: Iterable[Media]) -> Media | None:
    """Return the best rated entry that has already started airing.

    Ties keep watchlist order. Returns None if nothing is available.
    """
    available = [media for media in entries if media.status != Status.PRE_AIRING]
    if not available:
        return None
    return max(available, key=lambda media: media.rating)


def format_duration(duration: timedelta) -> str:
    """Format a duration as hours and minutes, e.g. "12h 40m"."""
    total_minutes = int(duration.total_seconds() // 60)
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}h {minutes:02d}m"
