# proxerscrape/config.py

"""Shared configuration and environment setup."""

from __future__ import annotations

from dataclasses import dataclass
from os import getenv
from pathlib import Path

import platformdirs
from dotenv import load_dotenv

load_dotenv(override=True)

APP_NAME = "proxerscrape"


@dataclass(frozen=True, slots=True)
class Settings:
    """Process-wide settings, read once at startup."""

    login_cookie_key: str
    login_cookie_value: str
    cache_dir: Path

    @property
    def has_login_cookie(self) -> bool:
        return bool(self.login_cookie_key and self.login_cookie_value)

    @property
    def profile_cache_dir(self) -> Path:
        return self.cache_dir / "profile"


def get_cache_root() -> Path:
    """Return the cache directory.

    Prefers PROXERSCRAPE_CACHE_DIR env var. Falls back to the OS user cache
    location.
    """
    if root := getenv("PROXERSCRAPE_CACHE_DIR"):
        return Path(root).expanduser().resolve()
    return Path(platformdirs.user_cache_dir(APP_NAME, appauthor=False))


def load_settings() -> Settings:
    """Read the login cookie and cache location from the environment."""
    return Settings(
        login_cookie_key=getenv("LOGIN_COOKIE_KEY", ""),
        login_cookie_value=getenv("LOGIN_COOKIE_VALUE", ""),
        cache_dir=get_cache_root(),
    )
