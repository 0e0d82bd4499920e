# proxerscrape/domain/models.py

"""Core domain models for proxer.me watchlists and their entries."""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from proxerscrape.scraper.cache import RawPage

# Site-relative info page path, e.g. "/info/296#top". Group 1 is the entry id.
INFO_URL_RE = re.compile(r"^/info/(\d+).*")


class MediaType(str, Enum):
    """Media kinds, valued by the labels proxer.me prints in profile tables."""

    SERIES = "Animeserie"
    SPECIAL = "Special"
    MOVIE = "Movie"
    MANGA = "Mangaserie"
    WEBTOON = "Webtoon"
    MANHWA = "Manhwa"
    DOUJINSHI = "Doujinshi"

    @classmethod
    def from_label(cls, label: str) -> MediaType | str:
        """Map a site label to a MediaType, keeping unknown labels verbatim."""
        try:
            return cls(label)
        except ValueError:
            return label

    @property
    def is_manga(self) -> bool:
        return self in _MANGA_TYPES


_MANGA_TYPES = frozenset(
    {MediaType.MANGA, MediaType.WEBTOON, MediaType.MANHWA, MediaType.DOUJINSHI},
)


class Status(str, Enum):
    """Airing state, valued by the `title` of the status icon."""

    FINISHED = "Abgeschlossen"
    PRE_AIRING = "Nicht erschienen (Pre-Airing)"
    AIRING = "Airing"

    @classmethod
    def from_label(cls, label: str) -> Status | str:
        try:
            return cls(label)
        except ValueError:
            return label


class Season(str, Enum):
    """Quarter of a year, as proxer.me names them in German."""

    Q1 = "Winter"
    Q2 = "Frühling"
    Q3 = "Sommer"
    Q4 = "Herbst"

    @classmethod
    def from_label(cls, label: str) -> Season | None:
        try:
            return cls(label)
        except ValueError:
            return None


@dataclass(slots=True)
class ReleasePeriod:
    """Seasons an entry was released in. `to_*` is unset for single seasons."""

    from_season: Season
    from_year: int
    to_season: Season | None = None
    to_year: int | None = None


@dataclass(slots=True)
class Media:
    """A single anime or manga entry of a profile watchlist."""

    # Profile table fields
    episodes_watched: int
    episode_count: int
    title: str
    type: MediaType | str
    proxer_url: str  # e.g. "/info/296#top"
    status: Status | str

    # Detail page fields, filled by enrichment
    english_title: str = ""
    german_title: str = ""
    japanese_title: str = ""
    synonyms: list[str] = field(default_factory=list)
    rating: float = 0.0
    release_period: ReleasePeriod | None = None
    genres: list[str] = field(default_factory=list)

    @property
    def is_manga(self) -> bool:
        return isinstance(self.type, MediaType) and self.type.is_manga


MediaRawDataRetriever = Callable[[Media], Awaitable["RawPage"]]


@dataclass(slots=True)
class WatchlistCategory:
    """Entries of one watchlist state plus the enrichment flag."""

    entries: list[Media] = field(default_factory=list)
    extra_data_loaded: bool = False

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[Media]:
        return iter(self.entries)

    async def load_extra_data(self, retriever: MediaRawDataRetriever) -> None:
        """Fill the detail fields of every entry, see `enrichment.load_extra_data`."""
        from proxerscrape.scraper.enrichment import load_extra_data

        await load_extra_data(self, retriever)


@dataclass(slots=True)
class Watchlist:
    """The four watchlist states of a profile tab (anchors state0..state3)."""

    watched: WatchlistCategory = field(default_factory=WatchlistCategory)
    currently_watching: WatchlistCategory = field(default_factory=WatchlistCategory)
    to_watch: WatchlistCategory = field(default_factory=WatchlistCategory)
    stopped_watching: WatchlistCategory = field(default_factory=WatchlistCategory)

    def categories(self) -> tuple[WatchlistCategory, ...]:
        """Return the categories in anchor order (state0..state3)."""
        return (
            self.watched,
            self.currently_watching,
            self.to_watch,
            self.stopped_watching,
        )
