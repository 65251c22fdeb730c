"""Tests for the passive analyzer, retry policies and the probe engine."""

import random
import threading

import httpx
import pytest
import respx

from webprobe.core.config import ScanConfig
from webprobe.core.engine import HttpxProbeEngine, ProbeEngine
from webprobe.core.exceptions import ScanCancelled
from webprobe.core.http import (CancellableSleeper, CountingRetryPolicy, DefaultRetryPolicy,
                                HttpxAnalyzer, retry_delay)
from webprobe.core.models import HttpResponseData

URL = "https://h.test/page"


class TestRetryPolicy:
    def test_retryable_statuses(self):
        policy = DefaultRetryPolicy(max_attempts=3)
        assert policy.should_retry(429, 1)
        assert policy.should_retry(503, 2)
        assert policy.should_retry(-1, 1)
        assert not policy.should_retry(404, 1)
        assert not policy.should_retry(503, 3)

    def test_backoff_with_jitter(self):
        policy = DefaultRetryPolicy(base_ms=250, rng=random.Random(0))
        for attempt, base in [(1, 0.25), (2, 0.5), (3, 1.0)]:
            delay = policy.next_delay(attempt)
            assert base * 0.9 <= delay <= base * 1.1

    def test_counting_wrapper(self):
        policy = CountingRetryPolicy(DefaultRetryPolicy(max_attempts=3))
        policy.should_retry(500, 1)
        policy.should_retry(500, 2)
        policy.should_retry(500, 3)
        assert policy.retry_count == 2

    def test_retry_after_capped(self):
        data = HttpResponseData(URL, 429, headers={"Retry-After": ["120"]})
        assert retry_delay(data, 0.1) == 30.0
        data = HttpResponseData(URL, 429, headers={"Retry-After": ["Wed, 21 Oct 2015 07:28:00 GMT"]})
        assert retry_delay(data, 0.1) == 0.1

    def test_cancellable_sleeper(self):
        cancel = threading.Event()
        CancellableSleeper(cancel)(0)
        cancel.set()
        with pytest.raises(ScanCancelled):
            CancellableSleeper(cancel)(5)


class TestHttpxAnalyzer:
    @respx.mock
    def test_analyze_captures_response(self):
        respx.get(URL).mock(return_value=httpx.Response(
            200, text="<html>hi</html>",
            headers=[("Content-Type", "text/html"), ("Set-Cookie", "a=1"), ("Set-Cookie", "b=2")]))
        data = HttpxAnalyzer(ScanConfig()).analyze(URL)
        assert data.status_code == 200
        assert data.body == "<html>hi</html>"
        assert data.content_type == "text/html"
        assert data.header_values("set-cookie") == ["a=1", "b=2"]

    @respx.mock
    def test_network_error_is_minus_one(self):
        respx.get(URL).mock(side_effect=httpx.ConnectTimeout("slow"))
        assert HttpxAnalyzer(ScanConfig()).analyze(URL).status_code == -1

    @respx.mock
    def test_retry_counted(self):
        route = respx.get(URL).mock(side_effect=[
            httpx.Response(503, headers={"Retry-After": "2"}),
            httpx.Response(200, text="ok"),
        ])
        slept = []
        policy = CountingRetryPolicy(DefaultRetryPolicy())
        data = HttpxAnalyzer(ScanConfig()).analyze_with_retry(URL, policy, slept.append)

        assert data.status_code == 200
        assert policy.retry_count == 1
        assert route.call_count == 2
        assert slept == [2.0]

    @respx.mock
    def test_gives_up_after_max_attempts(self):
        route = respx.get(URL).mock(return_value=httpx.Response(500))
        policy = CountingRetryPolicy(DefaultRetryPolicy(max_attempts=3))
        data = HttpxAnalyzer(ScanConfig()).analyze_with_retry(URL, policy, lambda s: None)
        assert data.status_code == 500
        assert route.call_count == 3
        assert policy.retry_count == 2


class TestProbeEngine:
    def test_with_param_replaces_first(self):
        out = ProbeEngine.with_param("https://h.test/p?a=1&b=2&a=3", "a", "<x>")
        assert out == "https://h.test/p?a=%3Cx%3E&b=2&a=3"

    def test_with_param_appends(self):
        assert ProbeEngine.with_param("https://h.test/p", "next", "https://e.test/") == \
            "https://h.test/p?next=https%3A%2F%2Fe.test%2F"

    def test_snippet_and_mask(self):
        body = "x" * 200 + "TOKEN" + "y" * 200
        snip = ProbeEngine.snippet_around(body, "TOKEN", 10)
        assert snip == "x" * 10 + "TOKEN" + "y" * 10
        assert ProbeEngine.snippet_around("abc", "zzz", 1) == "ab"
        masked = ProbeEngine.mask_sensitive("root:x:0:0:root:/root:/bin/bash\napi_key=abcd")
        assert "root:x:***" in masked
        assert "abcd" not in masked

    @respx.mock
    def test_requests_go_through_client(self):
        route = respx.options(URL).mock(return_value=httpx.Response(
            204, headers={"Access-Control-Allow-Origin": "*"}))
        engine = HttpxProbeEngine(ScanConfig())
        resp = engine.preflight(URL, "https://o.test", "GET")
        assert resp.status_code == 204
        sent = route.calls.last.request
        assert sent.headers["Origin"] == "https://o.test"
        assert sent.headers["Access-Control-Request-Method"] == "GET"
        assert "text/html" in sent.headers["Accept"]

    @respx.mock
    def test_no_redirect_variant(self):
        respx.get(URL).mock(return_value=httpx.Response(302, headers={"Location": "https://e.test/"}))
        engine = HttpxProbeEngine(ScanConfig(follow_redirects=True))
        assert engine.get_no_redirect(URL).status_code == 302
