"""Tests for the on-disk page cache."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from html_builders import make_media
from proxerscrape.domain.models import Media, MediaType
from proxerscrape.scraper import cache as cache_module
from proxerscrape.scraper.cache import (
    DiskCache,
    ProfileTabType,
    get_cache_identifier,
)


class CountingLimiter:
    def __init__(self) -> None:
        self.acquired = 0

    async def acquire(self) -> float:
        self.acquired += 1
        return 0.0


class RecordingQueries:
    def __init__(self, body: bytes = b"<html>fresh</html>") -> None:
        self.body = body
        self.media_calls: list[str] = []
        self.tab_calls: list[tuple[str, str]] = []

    async def media(self, media: Media) -> bytes:
        self.media_calls.append(media.proxer_url)
        return self.body

    async def profile_tab(self, profile_id: str, tab_type: str) -> bytes:
        self.tab_calls.append((profile_id, tab_type))
        return self.body


def _cache(tmp_path: Path, queries: RecordingQueries, **limiters: CountingLimiter) -> DiskCache:
    return DiskCache(
        tmp_path,
        query_media=queries.media,
        query_profile_tab=queries.profile_tab,
        **limiters,
    )


def test_get_cache_identifier() -> None:
    assert get_cache_identifier(make_media("/info/296#top")) == "296"
    assert get_cache_identifier(make_media("/info/53/anime")) == "53"


def test_get_cache_identifier_rejects_other_urls() -> None:
    with pytest.raises(ValueError, match="info URL"):
        get_cache_identifier(make_media("/user/296"))


def test_creates_directories(tmp_path: Path) -> None:
    base = tmp_path / "nested" / "proxerscrape"

    _cache(base, RecordingQueries())

    assert (base / "profile").is_dir()


@pytest.mark.asyncio
async def test_cache_hit_skips_fetch(tmp_path: Path) -> None:
    queries = RecordingQueries()
    cache = _cache(tmp_path, queries)
    (tmp_path / "296.html").write_bytes(b"<html>cached</html>")

    page = await cache.retrieve_detail_raw_data(make_media("/info/296#top"))

    with page.reader as reader:
        assert reader.read() == b"<html>cached</html>"
    assert queries.media_calls == []


@pytest.mark.asyncio
async def test_cache_miss_fetches_and_persists(tmp_path: Path) -> None:
    queries = RecordingQueries(b"<html>\xc3\xa4</html>")
    cache = _cache(tmp_path, queries)
    media = make_media("/info/12345#top")

    first = await cache.retrieve_detail_raw_data(media)
    second = await cache.retrieve_detail_raw_data(media)

    assert first.reader.read() == b"<html>\xc3\xa4</html>"
    assert second.reader.read() == b"<html>\xc3\xa4</html>"
    assert (tmp_path / "12345.html").read_bytes() == b"<html>\xc3\xa4</html>"
    assert queries.media_calls == ["/info/12345#top"]
    assert [p.name for p in tmp_path.iterdir() if p.is_file()] == ["12345.html"]


@pytest.mark.asyncio
async def test_invalidate_forces_refetch(tmp_path: Path) -> None:
    queries = RecordingQueries()
    cache = _cache(tmp_path, queries)
    media = make_media("/info/7")
    (tmp_path / "7.html").write_bytes(b"<html>stale</html>")

    page = await cache.retrieve_detail_raw_data(media)
    page.invalidate()

    assert not (tmp_path / "7.html").exists()

    page = await cache.retrieve_detail_raw_data(media)
    assert page.reader.read() == b"<html>fresh</html>"
    assert queries.media_calls == ["/info/7"]


@pytest.mark.asyncio
async def test_invalidate_twice_is_harmless(tmp_path: Path) -> None:
    cache = _cache(tmp_path, RecordingQueries())

    page = await cache.retrieve_detail_raw_data(make_media("/info/8"))
    page.invalidate()
    page.invalidate()

    assert not (tmp_path / "8.html").exists()


@pytest.mark.asyncio
async def test_read_errors_other_than_missing_file_propagate(tmp_path: Path) -> None:
    queries = RecordingQueries()
    cache = _cache(tmp_path, queries)
    (tmp_path / "9.html").mkdir()

    with pytest.raises(OSError):
        await cache.retrieve_detail_raw_data(make_media("/info/9"))

    assert queries.media_calls == []


@pytest.mark.asyncio
async def test_fetch_errors_propagate_without_writing(tmp_path: Path) -> None:
    async def failing(media: Media) -> bytes:
        raise ConnectionError("offline")

    cache = DiskCache(tmp_path, query_media=failing, query_profile_tab=RecordingQueries().profile_tab)

    with pytest.raises(ConnectionError):
        await cache.retrieve_detail_raw_data(make_media("/info/10"))

    assert not (tmp_path / "10.html").exists()


@pytest.mark.asyncio
async def test_limiter_follows_media_family(tmp_path: Path) -> None:
    anime, manga = CountingLimiter(), CountingLimiter()
    cache = _cache(tmp_path, RecordingQueries(), anime_limiter=anime, manga_limiter=manga)

    await cache.retrieve_detail_raw_data(make_media("/info/1", type=MediaType.SERIES))
    await cache.retrieve_detail_raw_data(make_media("/info/2", type=MediaType.MANHWA))
    await cache.retrieve_detail_raw_data(make_media("/info/3", type=MediaType.MANGA))

    assert (anime.acquired, manga.acquired) == (1, 2)


@pytest.mark.asyncio
async def test_limiter_is_not_used_on_cache_hit(tmp_path: Path) -> None:
    anime = CountingLimiter()
    cache = _cache(tmp_path, RecordingQueries(), anime_limiter=anime)
    (tmp_path / "1.html").write_bytes(b"<html></html>")

    await cache.retrieve_anime_raw_data(make_media("/info/1"))

    assert anime.acquired == 0


@pytest.mark.asyncio
async def test_explicit_manga_retrieval(tmp_path: Path) -> None:
    anime, manga = CountingLimiter(), CountingLimiter()
    cache = _cache(tmp_path, RecordingQueries(), anime_limiter=anime, manga_limiter=manga)

    await cache.retrieve_manga_raw_data(make_media("/info/4", type=MediaType.SERIES))

    assert (anime.acquired, manga.acquired) == (0, 1)


@pytest.mark.asyncio
async def test_profile_tab_retrieval(tmp_path: Path) -> None:
    queries = RecordingQueries(b"<html>tab</html>")
    limiter = CountingLimiter()
    cache = _cache(tmp_path, queries, profile_tab_limiter=limiter)

    page = await cache.retrieve_profile_tab_raw_data("4711", "manga")
    again = await cache.retrieve_profile_tab_raw_data("4711", ProfileTabType.MANGA)

    assert page.reader.read() == b"<html>tab</html>"
    assert again.reader.read() == b"<html>tab</html>"
    assert (tmp_path / "profile" / "manga.html").exists()
    assert queries.tab_calls == [("4711", "manga")]
    assert limiter.acquired == 1


@pytest.mark.asyncio
async def test_unknown_profile_tab_type(tmp_path: Path) -> None:
    cache = _cache(tmp_path, RecordingQueries())

    with pytest.raises(ValueError):
        await cache.retrieve_profile_tab_raw_data("4711", "music")


def test_info_and_clear(tmp_path: Path) -> None:
    cache = _cache(tmp_path, RecordingQueries())
    (tmp_path / "1.html").write_bytes(b"abc")
    (tmp_path / "2.html").write_bytes(b"defg")
    (tmp_path / "profile" / "anime.html").write_bytes(b"h")

    info = cache.info()

    assert info.directory == tmp_path
    assert (info.detail_pages, info.profile_tabs, info.total_bytes) == (2, 1, 8)

    assert cache.clear() == 3
    assert cache.info().total_bytes == 0
    assert (tmp_path / "profile").is_dir()


@pytest.mark.asyncio
async def test_file_access_runs_off_the_event_loop(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    loop_thread = threading.get_ident()
    io_threads: list[int] = []
    read_bytes = Path.read_bytes
    write_atomic = cache_module._write_atomic

    def recording_read(path: Path) -> bytes:
        io_threads.append(threading.get_ident())
        return read_bytes(path)

    def recording_write(path: Path, data: bytes) -> None:
        io_threads.append(threading.get_ident())
        write_atomic(path, data)

    monkeypatch.setattr(Path, "read_bytes", recording_read)
    monkeypatch.setattr(cache_module, "_write_atomic", recording_write)
    cache = _cache(tmp_path, RecordingQueries())
    media = make_media("/info/11")

    await cache.retrieve_detail_raw_data(media)
    page = await cache.retrieve_detail_raw_data(media)

    assert page.reader.read() == b"<html>fresh</html>"
    assert len(io_threads) == 3
    assert loop_thread not in io_threads
