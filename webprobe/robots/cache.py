"""
Per-host robots policy cache.

Keyed by host:port (scheme default port when absent). A miss or an expired
entry fetches scheme://host[:port]/robots.txt through a RobotsFetcher,
following same-host redirects only. Every failure resolves to allow-all and
is cached for the shorter failure TTL so it heals sooner than a real policy.
Concurrent lookups for the same key wait on a single fetch.
"""

import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Optional
from urllib.parse import urljoin, urlsplit

import httpx

from webprobe.core.exceptions import FetchError
from webprobe.robots.policy import RobotsPolicy

DEFAULT_SUCCESS_TTL_S = 30 * 60
DEFAULT_FAILURE_TTL_S = 10 * 60
MAX_REDIRECTS = 3

_REDIRECTS = (301, 302, 307, 308)


@dataclass(frozen=True)
class FetchResponse:
    status: int                 # 0 means a network-level failure
    body: str = ""
    final_url: str = ""         # Location target for 3xx, else the request URL
    error: Optional[str] = None

    @classmethod
    def failed(cls, url: str, error: str) -> "FetchResponse":
        return cls(status=0, final_url=url, error=error)


class RobotsFetcher(ABC):
    """Fetches robots.txt without following redirects."""

    @abstractmethod
    def fetch(self, url: str) -> FetchResponse:
        ...


class HttpRobotsFetcher(RobotsFetcher):

    def __init__(self, client: Optional[httpx.Client] = None,
                 user_agent: str = "WebProbe", timeout: float = 10, logger=None):
        self.user_agent = user_agent or "WebProbe"
        self.logger = logger
        self.client = client or httpx.Client(
            verify=False, follow_redirects=False, timeout=timeout)

    def _get(self, url: str) -> httpx.Response:
        try:
            return self.client.get(
                url,
                headers={"User-Agent": self.user_agent,
                         "Accept": "text/plain,*/*;q=0.8"},
                follow_redirects=False,
            )
        except httpx.HTTPError as e:
            raise FetchError("robots fetch failed", {"url": url, "error": type(e).__name__}) from e

    def fetch(self, url: str) -> FetchResponse:
        try:
            resp = self._get(url)
        except FetchError as e:
            if self.logger:
                self.logger.debug(f"robots: {e}")
            return FetchResponse.failed(url, str(e))

        if resp.status_code in _REDIRECTS:
            location = resp.headers.get("location")
            target = urljoin(url, location) if location else url
            return FetchResponse(resp.status_code, "", target)
        return FetchResponse(resp.status_code, resp.text or "", url)

    def close(self):
        self.client.close()


# ── cache ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class CacheEntry:
    policy: RobotsPolicy
    expires_at: float


def cache_key(url: str) -> str:
    parts = urlsplit(url)
    scheme = (parts.scheme or "https").lower()
    host = (parts.hostname or "").lower()
    try:
        port = parts.port
    except ValueError:
        port = None
    if port is None:
        port = 80 if scheme == "http" else 443
    return f"{host}:{port}"


def robots_url(url: str) -> Optional[str]:
    parts = urlsplit(url)
    host = parts.hostname
    if not host:
        return None
    scheme = parts.scheme or "https"
    authority = host if "[" not in parts.netloc else f"[{host}]"
    try:
        port = parts.port
    except ValueError:
        port = None
    if port is not None:
        authority = f"{authority}:{port}"
    return f"{scheme}://{authority}/robots.txt"


def _same_host(a: str, b: str) -> bool:
    # scheme switch is fine, ports are not compared
    return (urlsplit(a).hostname or "").lower() == (urlsplit(b).hostname or "").lower()


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


def _minutes(value: Optional[int]) -> Optional[float]:
    return None if value is None else value * 60.0


class RobotsPolicyCache:
    """
    Usage:
        cache = RobotsPolicyCache(HttpRobotsFetcher(client))
        if cache.is_allowed(url, "WebProbe"): ...
    """

    def __init__(self, fetcher: RobotsFetcher, clock: Callable[[], float] = time.monotonic,
                 success_ttl_s: float = DEFAULT_SUCCESS_TTL_S,
                 failure_ttl_s: float = DEFAULT_FAILURE_TTL_S,
                 settings=None, logger=None):
        if fetcher is None:
            raise ValueError("fetcher is required")
        self.fetcher = fetcher
        self.clock = clock
        self.logger = logger
        # environment-level override wins over the instance default
        override_ok = _minutes(getattr(settings, "robots_success_ttl_minutes", None))
        override_fail = _minutes(getattr(settings, "robots_failure_ttl_minutes", None))
        self.success_ttl_s = success_ttl_s if override_ok is None else override_ok
        self.failure_ttl_s = failure_ttl_s if override_fail is None else override_fail

        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._key_locks: Dict[str, _KeyLock] = {}

    def _lookup(self, key: str) -> Optional[RobotsPolicy]:
        with self._lock:
            entry = self._entries.get(key)
        if entry is not None and entry.expires_at > self.clock():
            return entry.policy
        return None

    @contextmanager
    def _single_flight(self, key: str):
        """Hold the per-key fetch lock; the entry goes away with its last user."""
        with self._lock:
            slot = self._key_locks.get(key)
            if slot is None:
                slot = self._key_locks[key] = _KeyLock()
            slot.users += 1
        try:
            with slot.lock:
                yield
        finally:
            with self._lock:
                slot.users -= 1
                if slot.users == 0:
                    self._key_locks.pop(key, None)

    def policy_for(self, url: str, user_agent: Optional[str] = None) -> RobotsPolicy:
        """Cached policy for the host serving *url*; allow-all on any failure."""
        key = cache_key(url)
        policy = self._lookup(key)
        if policy is not None:
            return policy

        with self._single_flight(key):
            # someone else may have fetched while we waited
            policy = self._lookup(key)
            if policy is not None:
                return policy

            policy = self._fetch_policy(url)
            ttl = self.failure_ttl_s if policy.allow_all else self.success_ttl_s
            if ttl > 0:
                with self._lock:
                    self._entries[key] = CacheEntry(policy, self.clock() + ttl)
            return policy

    def is_allowed(self, url: str, user_agent: Optional[str] = None) -> bool:
        return self.policy_for(url, user_agent).is_allowed(url, user_agent)

    def invalidate(self, url: Optional[str] = None):
        with self._lock:
            if url is None:
                self._entries.clear()
            else:
                self._entries.pop(cache_key(url), None)

    def _fetch_policy(self, page_url: str) -> RobotsPolicy:
        scheme = (urlsplit(page_url).scheme or "").lower()
        if scheme not in ("http", "https"):
            return RobotsPolicy.allow_all_policy()
        cur = robots_url(page_url)
        if cur is None:
            return RobotsPolicy.allow_all_policy()

        for _ in range(MAX_REDIRECTS + 1):
            resp = self.fetcher.fetch(cur)
            status = resp.status
            if status == 0:
                self._note(cur, f"network error ({resp.error})")
                return RobotsPolicy.allow_all_policy()
            if 200 <= status < 300:
                return RobotsPolicy.from_text(resp.body)
            if status in _REDIRECTS and resp.final_url:
                if not _same_host(cur, resp.final_url):
                    self._note(cur, f"cross-host redirect to {resp.final_url}")
                    return RobotsPolicy.allow_all_policy()
                cur = resp.final_url
                continue
            # 404/410/5xx and anything unexpected
            self._note(cur, f"HTTP {status}")
            return RobotsPolicy.allow_all_policy()

        self._note(cur, "too many redirects")
        return RobotsPolicy.allow_all_policy()

    def _note(self, url: str, why: str):
        if self.logger:
            self.logger.debug(f"robots allow-all for {url}: {why}")
