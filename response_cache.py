from __future__ import annotations

import hashlib
import logging
import os
import re
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlsplit

import platformdirs
import requests

from weather_errors import CacheIOError, InvalidUrlError, NetworkError

APP_NAME = "power-user-weather"
CACHE_TTL_SECONDS = 60 * 60
CACHE_BASENAME_MAX_CHARS = 100
CACHE_HASH_HEX_CHARS = 16
HTTP_TIMEOUT_SECONDS = float(os.getenv("PRECIP_HTTP_TIMEOUT_SECONDS", "30"))
LOGGER = logging.getLogger("power_user_weather.response_cache")

_UNSAFE_FILENAME_CHARS = re.compile(r'[\x00-\x1f\x7f/\\?<>:*|"]+')


def default_cache_dir() -> Path:
    override = os.getenv("PRECIP_CACHE_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    return Path(platformdirs.user_cache_dir(APP_NAME))


def sanitize_filename(name: str) -> str:
    cleaned = _UNSAFE_FILENAME_CHARS.sub("", name)
    return cleaned.strip(". ")


class ResponseCache:
    """Disk cache of raw response bodies keyed by request URL.

    Freshness is the file modification time: an entry is served while
    ``0 <= now - mtime < ttl_seconds``. Stale entries are left on disk and
    overwritten by the next successful store.
    """

    def __init__(
        self,
        cache_dir: Path | str | None = None,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache_dir = Path(cache_dir) if cache_dir is not None else default_cache_dir()
        self._ttl_seconds = float(ttl_seconds)
        self._clock = clock

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def path_for(self, url: str) -> Path:
        try:
            parsed = urlsplit(url)
        except ValueError as exc:
            raise InvalidUrlError(f"Cannot parse URL for cache path: {url}") from exc
        if not parsed.scheme or not parsed.hostname:
            raise InvalidUrlError(f"URL has no scheme or host: {url}")

        base = f"{parsed.hostname}_{parsed.path.replace('/', '_')}"
        if parsed.query:
            base = f"{base}_{parsed.query}"
        readable = sanitize_filename(base)[:CACHE_BASENAME_MAX_CHARS]
        digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:CACHE_HASH_HEX_CHARS]
        return self._cache_dir / f"{readable}_{digest}.json"

    def is_fresh(self, path: Path) -> bool:
        try:
            modified = path.stat().st_mtime
        except FileNotFoundError:
            return False
        except OSError as exc:
            LOGGER.warning("Cannot stat cache file path=%s error=%s", path, exc)
            return False
        age = self._clock() - modified
        return 0 <= age < self._ttl_seconds

    def lookup(self, url: str) -> Optional[str]:
        path = self.path_for(url)
        if not self.is_fresh(path):
            LOGGER.debug("Cache miss url=%s path=%s", url, path)
            return None
        try:
            with path.open(encoding="utf-8", newline="") as cache_file:
                body = cache_file.read()
        except (OSError, UnicodeDecodeError) as exc:
            LOGGER.warning("Unreadable cache file treated as miss path=%s error=%s", path, exc)
            return None
        LOGGER.debug("Using cached response url=%s", url)
        return body

    def store(self, url: str, body: str) -> Path:
        path = self.path_for(url)
        tmp_name: str | None = None
        try:
            self._cache_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._cache_dir, prefix=path.stem[:32], suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as tmp_file:
                tmp_file.write(body)
            os.replace(tmp_name, path)
        except OSError as exc:
            if tmp_name is not None:
                try:
                    Path(tmp_name).unlink(missing_ok=True)
                except OSError:
                    LOGGER.debug("Could not remove temporary cache file path=%s", tmp_name)
            raise CacheIOError(f"Failed to write cache file {path} for {url}: {exc}") from exc
        LOGGER.debug("Saved response cache path=%s bytes=%s", path, len(body))
        return path


class CachedFetcher:
    """HTTP GET with the response cache in front of it."""

    def __init__(
        self,
        cache: ResponseCache | None = None,
        session: requests.Session | None = None,
        timeout_seconds: float = HTTP_TIMEOUT_SECONDS,
    ) -> None:
        self.cache = cache if cache is not None else ResponseCache()
        self._session = session if session is not None else requests.Session()
        self._timeout_seconds = timeout_seconds
        self._stats_guard = threading.Lock()
        self.network_calls = 0
        self.cache_hits = 0

    def fetch(self, url: str) -> str:
        cached = self.cache.lookup(url)
        if cached is not None:
            with self._stats_guard:
                self.cache_hits += 1
            return cached

        body = self._get(url)
        try:
            self.cache.store(url, body)
        except CacheIOError as exc:
            LOGGER.warning("Response not cached url=%s error=%s", url, exc)
        return body

    def _get(self, url: str) -> str:
        LOGGER.debug("Fetching URL from API: %s", url)
        with self._stats_guard:
            self.network_calls += 1
        try:
            response = self._session.get(url, timeout=self._timeout_seconds)
        except requests.RequestException as exc:
            raise NetworkError(f"Request failed for {url}: {exc}") from exc
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise NetworkError(f"HTTP {response.status_code} for {url}") from exc
        return response.text

    def close(self) -> None:
        self._session.close()
