"""Seed sources for a scan run and the static-asset filter."""

from abc import ABC, abstractmethod
from typing import Iterable, Iterator, List
from urllib.parse import urlsplit

STATIC_EXTENSIONS = frozenset({
    "css", "js", "png", "jpg", "jpeg", "gif", "ico", "svg", "webp",
    "woff", "woff2", "ttf", "eot", "otf", "map", "pdf", "zip", "rar", "7z",
    "gz", "bz2", "tar", "mp4", "mp3", "wav", "avi", "mov", "mkv", "webm",
})


# ── Helper functions ───────────────────────────────────────────

def is_static(url: str) -> bool:
    """Images, fonts, archives, media: never seeded, never probed."""
    path = urlsplit(url).path.lower()
    i = path.rfind(".")
    if i < 0 or "/" in path[i:]:
        return False
    return path[i + 1:] in STATIC_EXTENSIONS


def normalize_url(url: str) -> str:
    """Drop the fragment; keep path and query as they are."""
    parts = urlsplit(url.strip())
    path = parts.path or "/"
    query = f"?{parts.query}" if parts.query else ""
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}{path}{query}"


def host_of(url: str) -> str:
    return (urlsplit(url).hostname or "").lower()


# ── Crawler contract ───────────────────────────────────────────

class Crawler(ABC):
    """Produces candidate seed URLs. Link discovery lives elsewhere."""

    @abstractmethod
    def crawl_seeds(self) -> Iterable[str]:
        ...


class StaticSeedCrawler(Crawler):
    """
    A fixed list of seeds (CLI arguments, a file, an upstream crawler dump).
    Non-HTTP entries are dropped and duplicates collapsed.
    """

    def __init__(self, urls: Iterable[str], logger=None):
        self.urls: List[str] = list(urls)
        self.logger = logger

    def crawl_seeds(self) -> Iterator[str]:
        seen = set()
        for raw in self.urls:
            if not raw or not raw.strip():
                continue
            lower = raw.strip().lower()
            if not lower.startswith(("http://", "https://")):
                if self.logger:
                    self.logger.debug(f"Skipping non-HTTP seed {raw}")
                continue
            url = normalize_url(raw)
            if url in seen:
                continue
            seen.add(url)
            yield url


class RobotsSeedFilter(Crawler):
    """Wraps another crawler and drops seeds the host's robots.txt disallows."""

    def __init__(self, inner: Crawler, robots, user_agent: str = "WebProbe", logger=None):
        if inner is None or robots is None:
            raise ValueError("inner crawler and robots cache are required")
        self.inner = inner
        self.robots = robots
        self.user_agent = user_agent
        self.logger = logger
        self.skipped = 0

    def crawl_seeds(self) -> Iterator[str]:
        for url in self.inner.crawl_seeds():
            if self.robots.is_allowed(url, self.user_agent):
                yield url
                continue
            self.skipped += 1
            if self.logger:
                self.logger.debug(f"robots.txt disallows {url}")
