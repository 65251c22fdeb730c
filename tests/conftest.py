"""Shared fakes and fixtures for the webprobe test suite."""

import threading
from typing import Callable, Dict, List, Optional

import httpx
import pytest

from webprobe.core.engine import ProbeEngine
from webprobe.core.http import HttpAnalyzer
from webprobe.core.models import Finding, HttpResponseData, IssueType, Severity
from webprobe.core.seeds import Crawler
from webprobe.robots.cache import FetchResponse, RobotsFetcher


class FrozenClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeFetcher(RobotsFetcher):
    """Canned robots responses keyed by URL; unknown URLs are 404."""

    def __init__(self, responses: Optional[Dict[str, FetchResponse]] = None,
                 gate: Optional[threading.Event] = None):
        self.responses = dict(responses or {})
        self.calls: List[str] = []
        self.gate = gate
        self._lock = threading.Lock()

    def fetch(self, url: str) -> FetchResponse:
        with self._lock:
            self.calls.append(url)
        if self.gate is not None:
            self.gate.wait(5)
        return self.responses.get(url, FetchResponse(404, "", url))


class FakeAnalyzer(HttpAnalyzer):
    """Returns a fixed response per URL; URLs in *fail* raise."""

    def __init__(self, responses: Optional[Dict[str, HttpResponseData]] = None,
                 default_status: int = 200, fail=()):
        self.responses = dict(responses or {})
        self.default_status = default_status
        self.fail = set(fail)
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def analyze(self, url: str) -> HttpResponseData:
        with self._lock:
            self.calls.append(url)
        if url in self.fail:
            raise RuntimeError(f"boom on {url}")
        if url in self.responses:
            return self.responses[url]
        return HttpResponseData(url=url, status_code=self.default_status,
                                headers={"Content-Type": ["text/html"]},
                                body="<html></html>", content_type="text/html")


class ListCrawler(Crawler):
    def __init__(self, urls):
        self.urls = list(urls)

    def crawl_seeds(self):
        return iter(self.urls)


class StubEngine(ProbeEngine):
    """ProbeEngine answering from a handler(method, url, headers) -> httpx.Response."""

    def __init__(self, handler: Optional[Callable] = None):
        self.handler = handler or (lambda m, u, h: httpx.Response(200, text=""))
        self.requests: List[tuple] = []

    def request(self, method, url, headers=None, follow_redirects=None):
        self.requests.append((method, url, dict(headers or {})))
        resp = self.handler(method, url, headers or {})
        resp.request = httpx.Request(method, url)
        return resp


class RecordingDetector:
    """Detector double: records calls, returns findings from *result*."""

    def __init__(self, issue_type: IssueType = IssueType.XSS_REFLECTED, needs_param: bool = True,
                 result=None, signal: str = "sig", name: str = "recording"):
        self.issue_type = issue_type
        self.needs_param = needs_param
        self.result = result
        self.signal = signal
        self.name = name
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def detect(self, engine, config, url, param_key):
        with self._lock:
            self.calls.append((url, param_key))
        if isinstance(self.result, Exception):
            raise self.result
        if callable(self.result):
            return self.result(url, param_key)
        if self.result:
            return make_finding(url, self.issue_type, param=param_key, signal=self.signal)
        return None


def make_finding(url: str, issue: IssueType = IssueType.XSS_REFLECTED, param=None,
                 signal: str = "sig", severity: Severity = Severity.LOW) -> Finding:
    return Finding(url=url, issue_type=issue, severity=severity, title=issue.value,
                   param=param, signal=signal)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """No WEBPROBE_* variable from the host leaks into ScanSettings."""
    import os
    for name in list(os.environ):
        if name.upper().startswith("WEBPROBE_"):
            monkeypatch.delenv(name, raising=False)
