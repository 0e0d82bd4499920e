from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import IO, Union

from bs4 import BeautifulSoup, NavigableString, Tag

from proxerscrape.domain.models import (
    INFO_URL_RE,
    Media,
    MediaType,
    ReleasePeriod,
    Season,
    Status,
    Watchlist,
    WatchlistCategory,
)

logger = logging.getLogger(__name__)

HtmlSource = Union[str, bytes, IO[str], IO[bytes]]

MAX_EPISODES = 65535
LOGIN_BANNER = "Bitte logge dich ein"
RECAPTCHA_SRC = "//www.google.com/recaptcha/api.js"

# Type labels that are specific enough on their own; other labels (e.g.
# "Mangaserie") may carry a sub-type after a <br>.
_PLAIN_TYPE_LABELS = frozenset(
    {MediaType.SERIES.value, MediaType.SPECIAL.value, MediaType.MOVIE.value},
)

_WHITESPACE_RE = re.compile(r"\s{2,}")
_EPISODES_RE = re.compile(r"^\s*(\d+)\s*/\s*(\d+)")
_SEASON_RE = re.compile(r"^\s*(\S+)\s+(\d+)")


class ProfileParseError(ValueError):
    """Raised when a profile table row does not have the expected structure."""


class DetailParseError(ValueError):
    """Raised when a usable detail page lacks required data."""


class CaptchaRequiredError(RuntimeError):
    """Raised when proxer.me answers with a captcha, i.e. we are rate limited."""


class PageStatus(str, Enum):
    """Outcome of parsing one detail page."""

    PARSED = "parsed"
    NOT_FOUND = "not-found"
    LOGIN_REQUIRED = "login-required"

    @property
    def usable(self) -> bool:
        return self is PageStatus.PARSED


# ---------------------------------------------------------------------------
# Profile tab: four watchlist tables
# ---------------------------------------------------------------------------


def parse_profile_media_tab(html: HtmlSource) -> Watchlist:
    """Parse a profile anime/manga/novel tab into a Watchlist.

    Each state is introduced by an anchor `<a name="stateN">` directly followed
    by its table. A missing anchor yields an empty category.

    Raises:
        ProfileParseError: if any row of the four tables is malformed.
    """
    soup = BeautifulSoup(html, "lxml")

    watched, currently_watching, to_watch, stopped_watching = (
        _parse_state_table(soup, f"state{index}") for index in range(4)
    )
    return Watchlist(
        watched=watched,
        currently_watching=currently_watching,
        to_watch=to_watch,
        stopped_watching=stopped_watching,
    )


def parse_title(raw: str) -> str:
    """Collapse whitespace runs in a title, e.g. " A  B   C " -> "A B C"."""
    return _WHITESPACE_RE.sub(" ", raw).strip()


def _parse_state_table(soup: BeautifulSoup, state: str) -> WatchlistCategory:
    anchor = soup.find("a", attrs={"name": state})
    if anchor is None:
        logger.debug("No anchor for %s, category is empty.", state)
        return WatchlistCategory()

    table = anchor.find_next_sibling()
    if table is not None and table.name != "table":
        table = table.find("table")
    if table is None:
        logger.debug("No table after anchor %s, category is empty.", state)
        return WatchlistCategory()

    # The first two rows are the caption and the column labels.
    rows = _own_rows(table)[2:]
    entries = [_parse_profile_row(row, state) for row in rows]
    logger.debug("Parsed %s entries for %s.", len(entries), state)
    return WatchlistCategory(entries=entries)


def _parse_profile_row(row: Tag, state: str) -> Media:
    """Parse one row: status icon, title link, type, review (ignored), episodes."""
    cells = row.find_all("td", recursive=False)
    if len(cells) < 5:
        msg = f"{state}: expected at least 5 cells per row, got {len(cells)}"
        raise ProfileParseError(msg)

    status_cell, title_cell, type_cell, _review_cell, episodes_cell = cells[:5]

    status_img = status_cell.find("img")
    status_label = status_img.get("title") if status_img is not None else None
    if status_label is None:
        msg = f"{state}: status image without title attribute"
        raise ProfileParseError(msg)

    link = title_cell.find("a")
    if link is None or not link.get("href"):
        msg = f"{state}: missing title link"
        raise ProfileParseError(msg)

    proxer_url = link["href"]
    if INFO_URL_RE.match(proxer_url) is None:
        msg = f"{state}: link {proxer_url!r} is not an info page"
        raise ProfileParseError(msg)

    episodes_watched, episode_count = _parse_episode_counts(episodes_cell, state)

    return Media(
        episodes_watched=episodes_watched,
        episode_count=episode_count,
        title=parse_title(link.get_text()),
        type=_parse_media_type(type_cell, state),
        proxer_url=proxer_url,
        status=Status.from_label(status_label),
    )


def _parse_media_type(cell: Tag, state: str) -> MediaType | str:
    """Parse the type cell.

    Anime cells hold just the label. Manga cells may look like
    `Mangaserie<br>Manhwa`, where the text after the <br> is the more
    specific type. Without it the generic label is kept.
    """
    label = _leaf_text(cell)
    if not label:
        msg = f"{state}: empty media type cell"
        raise ProfileParseError(msg)

    if label in _PLAIN_TYPE_LABELS:
        return MediaType.from_label(label)

    line_break = cell.find("br")
    if line_break is not None:
        sub_type = line_break.next_sibling
        if isinstance(sub_type, NavigableString) and sub_type.strip():
            return MediaType.from_label(sub_type.strip())

    return MediaType.from_label(label)


def _parse_episode_counts(cell: Tag, state: str) -> tuple[int, int]:
    """Parse `<span>3 / 12</span>` into (watched, count)."""
    span = cell.find("span")
    text = span.get_text() if span is not None else ""
    m = _EPISODES_RE.match(text)
    if not m:
        msg = f"{state}: cannot parse episode counts from {text!r}"
        raise ProfileParseError(msg)

    watched, count = int(m.group(1)), int(m.group(2))
    if watched > MAX_EPISODES or count > MAX_EPISODES:
        msg = f"{state}: episode counts out of range in {text!r}"
        raise ProfileParseError(msg)

    return watched, count


# ---------------------------------------------------------------------------
# Detail (info) page: titles, genres, season, rating
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class _DetailFields:
    english_title: str = ""
    german_title: str = ""
    japanese_title: str = ""
    synonyms: list[str] = field(default_factory=list)
    genres: list[str] = field(default_factory=list)
    release_period: ReleasePeriod | None = None


def parse_detail_page(
    html: HtmlSource,
    media: Media,
    invalidate: Callable[[], None],
) -> PageStatus:
    """Fill the detail fields of `media` from its info page.

    Pages for deleted entries (404) and login-gated entries are evicted from
    the cache via `invalidate` and reported as unusable; `media` is left
    untouched in that case.

    Raises:
        CaptchaRequiredError: if the page is a captcha interstitial. The page
            stays cached.
        DetailParseError: if the rating is missing or not a number.
    """
    soup = BeautifulSoup(html, "lxml")

    title_tag = soup.find("title")
    if title_tag is not None and "404" in title_tag.get_text():
        logger.warning(
            "Entry %r (%s) does not exist anymore (404), skipping.",
            media.title,
            media.proxer_url,
        )
        invalidate()
        return PageStatus.NOT_FOUND

    heading = soup.find("h3")
    if heading is not None and heading.get_text().strip().startswith(LOGIN_BANNER):
        logger.warning(
            "Entry %r (%s) is only visible when logged in. Set LOGIN_COOKIE_KEY "
            "and LOGIN_COOKIE_VALUE to a proxer.me session cookie to load it.",
            media.title,
            media.proxer_url,
        )
        invalidate()
        return PageStatus.LOGIN_REQUIRED

    if soup.find("script", src=RECAPTCHA_SRC) is not None:
        logger.error(
            "proxer.me requires a captcha for %s; we are being rate limited.",
            media.proxer_url,
        )
        msg = f"captcha required for {media.proxer_url}"
        raise CaptchaRequiredError(msg)

    fields = _parse_details_table(soup)
    rating = _parse_rating(soup, media)

    media.english_title = fields.english_title
    media.german_title = fields.german_title
    media.japanese_title = fields.japanese_title
    media.synonyms = fields.synonyms
    media.genres = fields.genres
    media.release_period = fields.release_period
    media.rating = rating
    return PageStatus.PARSED


def _parse_details_table(soup: BeautifulSoup) -> _DetailFields:
    """Parse the key/value rows of `<table class="details">`.

    Example row (simplified):

        <tr>
            <td><b>Genres</b></td>
            <td><a class="genreTag">Action</a> <a class="genreTag">Drama</a></td>
        </tr>
    """
    fields = _DetailFields()

    table = soup.find("table", class_="details")
    if table is None:
        return fields

    for row in _own_rows(table):
        key_cell = row.find("td")
        key_tag = key_cell.find("b") if key_cell is not None else None
        if key_tag is None:
            continue
        value_cell = key_cell.find_next_sibling("td")
        if value_cell is None:
            continue

        key = key_tag.get_text(strip=True)
        if key == "Englischer Titel":
            fields.english_title = _leaf_text(value_cell)
        elif key == "Deutscher Titel":
            fields.german_title = _leaf_text(value_cell)
        elif key == "Japanischer Titel":
            fields.japanese_title = _leaf_text(value_cell)
        elif key == "Synonym":
            fields.synonyms.append(_leaf_text(value_cell))
        elif key == "Genres":
            for tag in value_cell.find_all("a", class_="genreTag"):
                fields.genres.append(tag.get_text(strip=True))
        elif key == "Season":
            fields.release_period = _parse_release_period(value_cell)

    return fields


def _parse_release_period(cell: Tag) -> ReleasePeriod | None:
    """Parse `<a>Winter 2020</a><a>Sommer 2021</a>` into a ReleasePeriod.

    An unparseable first season yields None; an unparseable second season
    leaves the period open-ended.
    """
    links = cell.find_all("a")
    if not links:
        return None

    start = _parse_season(links[0].get_text())
    if start is None:
        logger.debug("Ignoring unparseable season %r.", links[0].get_text())
        return None

    period = ReleasePeriod(from_season=start[0], from_year=start[1])
    if len(links) > 1:
        end = _parse_season(links[1].get_text())
        if end is not None:
            period.to_season, period.to_year = end
    return period


def _parse_season(text: str) -> tuple[Season, int] | None:
    m = _SEASON_RE.match(text)
    if not m:
        return None
    season = Season.from_label(m.group(1))
    if season is None:
        return None
    return season, int(m.group(2))


def _parse_rating(soup: BeautifulSoup, media: Media) -> float:
    """Parse the average rating, e.g. `<span class="average">4.3</span>`."""
    average = soup.find(class_="average")
    raw = _leaf_text(average) if average is not None else ""
    try:
        return float(raw.replace(",", "."))
    except ValueError as exc:
        msg = f"cannot parse rating {raw!r} for {media.proxer_url}"
        raise DetailParseError(msg) from exc


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------


def _own_rows(table: Tag) -> list[Tag]:
    """Return the rows of `table`, skipping rows of nested tables."""
    return [tr for tr in table.find_all("tr") if tr.find_parent("table") is table]


def _leaf_text(tag: Tag) -> str:
    """Return the first non-blank text node below `tag`, stripped."""
    return next(tag.stripped_strings, "")
