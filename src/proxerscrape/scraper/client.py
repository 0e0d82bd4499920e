# proxerscrape/scraper/client.py

from __future__ import annotations

import asyncio
import bisect
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from http.cookiejar import Cookie

import httpx

from proxerscrape.config import Settings
from proxerscrape.domain.models import Media

logger = logging.getLogger(__name__)


BASE_URL = "https://proxer.me"
COOKIE_DOMAIN = "proxer.me"
DEFAULT_TIMEOUT = 10.0
DEFAULT_USER_AGENT = "proxerscrape/0.1 (+https://github.com/Bios-Marcel/proxerscrape)"


class RateLimiter:
    """Token bucket allowing `max_permits` acquisitions per rolling `window`.

    Each caller reserves a slot time when it arrives: now if fewer than
    `max_permits` slots fall inside the window, otherwise `window` seconds
    after the slot `max_permits` places back. The caller then sleeps until
    its slot. Slots are handed out in arrival order, so waiters are served
    first come, first served.

    The bookkeeping sits behind a `threading.Lock` that is never held across
    an await, so one limiter can be shared by several event loops (e.g. one
    `asyncio.run` per command).
    """

    def __init__(
        self,
        max_permits: int,
        window: float,
        *,
        name: str = "rate-limiter",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_permits <= 0:
            msg = "max_permits must be positive."
            raise ValueError(msg)
        if window <= 0:
            msg = "window must be positive."
            raise ValueError(msg)

        self.max_permits = max_permits
        self.window = window
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        # Sorted slot times, past and reserved.
        self._slots: list[float] = []

    def _prune(self, now: float) -> None:
        cutoff = now - self.window
        expired = bisect.bisect_right(self._slots, cutoff)
        del self._slots[:expired]

    def _reserve(self) -> tuple[float, float]:
        with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._slots) < self.max_permits:
                slot = now
            else:
                slot = max(now, self._slots[-self.max_permits] + self.window)
            bisect.insort(self._slots, slot)
            return slot, now

    def _release(self, slot: float) -> None:
        with self._lock:
            index = bisect.bisect_left(self._slots, slot)
            if index < len(self._slots) and self._slots[index] == slot:
                del self._slots[index]

    def available(self) -> int:
        """Number of permits that could be acquired right now without waiting."""
        with self._lock:
            self._prune(self._clock())
            return max(self.max_permits - len(self._slots), 0)

    async def acquire(self) -> float:
        """Wait for a free permit and consume it.

        Returns the time spent waiting (seconds). If the caller is cancelled
        while waiting, its slot is given back and no permit is consumed.
        """
        slot, now = self._reserve()
        wait = slot - now
        if wait <= 0:
            return 0.0

        logger.debug("%s exhausted (%s permits), waiting %.1fs.", self.name, self.max_permits, wait)
        try:
            await self._sleep(wait)
        except BaseException:
            self._release(slot)
            raise
        return wait


# All limiters stay slightly below the site's published ceilings:
# 20 requests / 6 min for anime, 10 / 5 min for manga, 40 / 6 min for user pages.
anime_rate_limiter = RateLimiter(18, 6 * 60, name="anime")
manga_rate_limiter = RateLimiter(8, 5 * 60, name="manga")
profile_tab_rate_limiter = RateLimiter(38, 6 * 60, name="profile-tab")


def build_login_cookie(name: str, value: str) -> Cookie:
    """Build the proxer.me session cookie attached to every request."""
    return Cookie(
        version=0,
        name=name,
        value=value,
        port=None,
        port_specified=False,
        domain=COOKIE_DOMAIN,
        domain_specified=True,
        domain_initial_dot=False,
        path="/",
        path_specified=True,
        secure=True,
        expires=None,
        discard=True,
        comment=None,
        comment_url=None,
        rest={"HttpOnly": "", "SameSite": "Strict"},
    )


class ProxerClient:
    """Async HTTP client for fetching pages from proxer.me."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = BASE_URL

        headers = {
            "User-Agent": user_agent or DEFAULT_USER_AGENT,
            "Accept": "text/html,application/xhtml+xml",
        }

        cookies = httpx.Cookies()
        if settings is not None and settings.has_login_cookie:
            cookies.jar.set_cookie(
                build_login_cookie(
                    settings.login_cookie_key,
                    settings.login_cookie_value,
                ),
            )
            logger.debug("Attaching login cookie %s.", settings.login_cookie_key)

        self._client = httpx.AsyncClient(
            headers=headers,
            cookies=cookies,
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "ProxerClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        await self.aclose()

    def build_detail_url(self, media: Media) -> str:
        """Build the info page URL of an entry."""
        return f"{self._base_url}{media.proxer_url}"

    def build_profile_tab_url(self, profile_id: str, tab_type: str) -> str:
        """Build the URL of a profile's anime/manga/novel tab."""
        return f"{self._base_url}/user/{profile_id}/{tab_type}"

    async def fetch(self, url: str) -> bytes:
        """Fetch the complete response body of `url`.

        Status codes are not interpreted: proxer.me answers dead entries with
        a regular page, so the body is returned either way. Transport
        failures raise `httpx.HTTPError`.
        """
        async with self._client.stream("GET", url) as response:
            body = await response.aread()

        if response.is_success:
            logger.debug(
                "Fetched %s (status=%s, %s bytes).",
                url,
                response.status_code,
                len(body),
            )
        else:
            logger.warning(
                "Unexpected status for %s (status=%s).",
                url,
                response.status_code,
            )
        return body

    async def fetch_media(self, media: Media) -> bytes:
        return await self.fetch(self.build_detail_url(media))

    async def fetch_profile_tab(self, profile_id: str, tab_type: str) -> bytes:
        return await self.fetch(self.build_profile_tab_url(profile_id, tab_type))
