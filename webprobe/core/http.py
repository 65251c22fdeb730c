"""Passive HTTP analysis with retry accounting."""

import random
import threading
import time
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from webprobe.core.config import ScanConfig
from webprobe.core.exceptions import ScanCancelled
from webprobe.core.models import HttpResponseData

RETRY_AFTER_CAP_S = 30.0


# ── retry policies ─────────────────────────────────────────────

class RetryPolicy(ABC):
    """attempt numbers start at 1 and count the request being judged."""

    @abstractmethod
    def should_retry(self, status_code: int, attempt: int) -> bool:
        ...

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Seconds to wait before the next attempt."""
        ...

    @property
    @abstractmethod
    def max_attempts(self) -> int:
        ...


class DefaultRetryPolicy(RetryPolicy):
    """Retries 429, 5xx and network errors (-1): 250ms, 500ms, 1s ... with +-10% jitter."""

    def __init__(self, max_attempts: int = 3, base_ms: int = 250, rng: Optional[random.Random] = None):
        self._max_attempts = max(1, max_attempts)
        self.base_ms = max(1, base_ms)
        self.rng = rng or random.Random()

    def should_retry(self, status_code: int, attempt: int) -> bool:
        if attempt >= self._max_attempts:
            return False
        return status_code == 429 or status_code >= 500 or status_code == -1

    def next_delay(self, attempt: int) -> float:
        raw = self.base_ms * (1 << max(0, attempt - 1))
        jitter = 0.9 + self.rng.random() * 0.2
        return raw * jitter / 1000.0

    @property
    def max_attempts(self) -> int:
        return self._max_attempts


class CountingRetryPolicy(RetryPolicy):
    """Wraps a policy and counts granted retries. One instance per analyze call."""

    def __init__(self, delegate: RetryPolicy):
        if delegate is None:
            raise ValueError("delegate is required")
        self.delegate = delegate
        self.retry_count = 0

    def should_retry(self, status_code: int, attempt: int) -> bool:
        ok = self.delegate.should_retry(status_code, attempt)
        if ok:
            self.retry_count += 1
        return ok

    def next_delay(self, attempt: int) -> float:
        return self.delegate.next_delay(attempt)

    @property
    def max_attempts(self) -> int:
        return self.delegate.max_attempts


# ── sleepers ───────────────────────────────────────────────────

def default_sleeper(seconds: float):
    if seconds > 0:
        time.sleep(seconds)


class CancellableSleeper:
    """Sleeps on the run's cancel event; raises ScanCancelled when it fires."""

    def __init__(self, cancel: threading.Event):
        self.cancel = cancel

    def __call__(self, seconds: float):
        if self.cancel.wait(max(0.0, seconds)):
            raise ScanCancelled(details={"where": "retry backoff"})


def retry_delay(data: HttpResponseData, fallback: float) -> float:
    """Retry-After in seconds (capped) when present, else the policy delay."""
    value = data.header("retry-after")
    if not value:
        return fallback
    try:
        seconds = int(value.strip())
    except ValueError:
        # HTTP-date form is not interpreted
        return fallback
    return float(min(max(seconds, 0), RETRY_AFTER_CAP_S))


# ── analyzers ──────────────────────────────────────────────────

class HttpAnalyzer(ABC):
    """Fetches a page for passive analysis."""

    @abstractmethod
    def analyze(self, url: str) -> HttpResponseData:
        """GET *url*. Network errors come back as status -1."""
        ...

    def analyze_with_retry(self, url: str, policy: RetryPolicy, sleeper=default_sleeper) -> HttpResponseData:
        attempt = 1
        while True:
            data = self.analyze(url)
            if not policy.should_retry(data.status_code, attempt):
                return data
            sleeper(retry_delay(data, policy.next_delay(attempt)))
            attempt += 1

    def close(self):
        pass


class HttpxAnalyzer(HttpAnalyzer):

    def __init__(self, config: ScanConfig, client: Optional[httpx.Client] = None, logger=None):
        if config is None:
            raise ValueError("config is required")
        self.config = config
        self.logger = logger
        self._owns_client = client is None
        self.client = client or httpx.Client(
            verify=False, proxy=config.proxy,
            follow_redirects=config.follow_redirects,
            timeout=config.timeout_s,
            headers={"User-Agent": config.user_agent})

    def analyze(self, url: str) -> HttpResponseData:
        start = time.monotonic()
        try:
            resp = self.client.get(url)
        except httpx.HTTPError as e:
            if self.logger:
                self.logger.debug(f"GET {url} failed: {type(e).__name__}")
            return HttpResponseData(url=url, status_code=-1,
                                    response_time_ms=int((time.monotonic() - start) * 1000))
        headers = {}
        for k, v in resp.headers.multi_items():
            headers.setdefault(k, []).append(v)
        return HttpResponseData(
            url=url,
            status_code=resp.status_code,
            headers=headers,
            body=resp.text or "",
            content_type=resp.headers.get("content-type", ""),
            response_time_ms=int((time.monotonic() - start) * 1000),
        )

    def close(self):
        if self._owns_client:
            self.client.close()
