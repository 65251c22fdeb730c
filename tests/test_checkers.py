"""Tests for the default detectors."""

from urllib.parse import parse_qs, urlsplit

import httpx
import respx

from webprobe.checkers.cors import CORS
from webprobe.checkers.lfi import LFI
from webprobe.checkers.mixed_content import MixedContent
from webprobe.checkers.open_redirect import OpenRedirect
from webprobe.checkers.registry import default_detectors
from webprobe.checkers.sqli import SQLi, find_sql_error
from webprobe.checkers.ssti import SSTI
from webprobe.checkers.xss import XSS
from webprobe.core.config import ScanConfig
from webprobe.core.engine import HttpxProbeEngine
from webprobe.core.models import IssueType, Severity

from conftest import StubEngine

CFG = ScanConfig()


def param(url, key):
    return parse_qs(urlsplit(url).query).get(key, [""])[0]


def echo(key, template="<p>{}</p>"):
    """Handler reflecting *key* into the body."""
    def handler(method, url, headers):
        return httpx.Response(200, text=template.format(param(url, key)))
    return handler


class TestXSS:
    def test_verbatim_reflection(self):
        f = XSS().detect(StubEngine(echo("q")), CFG, "https://h.test/s?q=1", "q")
        assert f.issue_type is IssueType.XSS_REFLECTED
        assert f.severity is Severity.HIGH
        assert f.param == "q"
        assert f.signal == "xss_polyglot_v1"

    def test_attribute_reflection_is_medium(self):
        engine = StubEngine(echo("q", '<input value="{}">'))
        f = XSS().detect(engine, CFG, "https://h.test/s?q=1", "q")
        assert f.severity is Severity.MEDIUM

    def test_escaped_reflection_ignored(self):
        def handler(method, url, headers):
            return httpx.Response(200, text=param(url, "q").replace("<", "&lt;"))
        assert XSS().detect(StubEngine(handler), CFG, "https://h.test/s?q=1", "q") is None

    def test_needs_param(self):
        engine = StubEngine(echo("q"))
        assert XSS().detect(engine, CFG, "https://h.test/s?q=1", None) is None
        assert engine.requests == []


class TestSQLi:
    def test_database_error(self):
        def handler(method, url, headers):
            return httpx.Response(500, text="You have an error in your SQL syntax near ''")
        f = SQLi().detect(StubEngine(handler), CFG, "https://h.test/p?id=1", "id")
        assert f.severity is Severity.HIGH
        assert f.status_code == 500
        assert f.payload == "'"

    def test_clean_page(self):
        assert SQLi().detect(StubEngine(), CFG, "https://h.test/p?id=1", "id") is None

    def test_error_patterns(self):
        assert find_sql_error("ORA-00933: SQL command not properly ended")
        assert find_sql_error("nothing here") is None

    def test_extra_payloads(self):
        assert len(SQLi(extra=True).probes) == len(SQLi().probes) + 1


class TestLFI:
    def test_passwd_read(self):
        def handler(method, url, headers):
            if "passwd" in param(url, "file"):
                return httpx.Response(200, text="root:x:0:0:root:/root:/bin/bash\n")
            return httpx.Response(200, text="nope")
        f = LFI().detect(StubEngine(handler), CFG, "https://h.test/v?file=a.txt", "file")
        assert f.issue_type is IssueType.PATH_TRAVERSAL
        assert "root:x:***" in f.evidence

    def test_no_hit(self):
        assert LFI().detect(StubEngine(), CFG, "https://h.test/v?file=a", "file") is None


class TestSSTI:
    def test_evaluated_expression(self):
        def handler(method, url, headers):
            return httpx.Response(200, text="Hello 49WKAI")
        f = SSTI().detect(StubEngine(handler), CFG, "https://h.test/t?name=x", "name")
        assert f.severity is Severity.HIGH

    def test_template_error(self):
        def handler(method, url, headers):
            return httpx.Response(500, text="jinja2.exceptions.TemplateSyntaxError")
        f = SSTI().detect(StubEngine(handler), CFG, "https://h.test/t?name=x", "name")
        assert f.severity is Severity.MEDIUM
        assert f.signal == "jinja_expr_v1:error"

    def test_unevaluated_echo(self):
        f = SSTI().detect(StubEngine(echo("name")), CFG, "https://h.test/t?name=x", "name")
        assert f is None


class TestOpenRedirect:
    def test_external_location(self):
        def handler(method, url, headers):
            return httpx.Response(302, headers={"Location": param(url, "next")})
        f = OpenRedirect().detect(StubEngine(handler), CFG, "https://h.test/login?next=/", "next")
        assert f.issue_type is IssueType.OPEN_REDIRECT
        assert f.param == "next"
        assert f.signal == "host_ext"

    def test_same_host_location(self):
        def handler(method, url, headers):
            return httpx.Response(302, headers={"Location": "/home"})
        assert OpenRedirect().detect(StubEngine(handler), CFG,
                                     "https://h.test/login?next=/", "next") is None

    def test_head_fallback(self):
        def handler(method, url, headers):
            if method == "HEAD":
                return httpx.Response(301, headers={"Location": "https://wkai.example/"})
            return httpx.Response(200)
        f = OpenRedirect().detect(StubEngine(handler), CFG, "https://h.test/go?url=x", "url")
        assert f.request_line.startswith("HEAD ")

    def test_page_level_tries_default_keys(self):
        engine = StubEngine()
        assert OpenRedirect().detect(engine, CFG, "https://h.test/page", None) is None
        tried = {k for _, u, _ in engine.requests for k in parse_qs(urlsplit(u).query)}
        assert tried == {"next", "redirect", "url"}

    def test_is_external_redirect(self):
        assert OpenRedirect.is_external_redirect("//evil.test/x", "https://h.test/")
        assert OpenRedirect.is_external_redirect("javascript:alert(1)", "https://h.test/")
        assert not OpenRedirect.is_external_redirect("/local", "https://h.test/")


class TestCORS:
    def test_reflected_origin_with_credentials(self):
        def handler(method, url, headers):
            return httpx.Response(200, headers={
                "Access-Control-Allow-Origin": headers.get("Origin", ""),
                "Access-Control-Allow-Credentials": "true"})
        f = CORS().detect(StubEngine(handler), CFG, "https://h.test/api", None)
        assert f.severity is Severity.HIGH
        assert f.signal == "origin_host"

    def test_null_origin_without_credentials(self):
        def handler(method, url, headers):
            acao = "null" if headers.get("Origin") == "null" else ""
            return httpx.Response(200, headers={"Access-Control-Allow-Origin": acao})
        f = CORS().detect(StubEngine(handler), CFG, "https://h.test/api", None)
        assert f.severity is Severity.LOW
        assert f.signal == "origin_null"

    def test_wildcard_credentials_on_preflight(self):
        def handler(method, url, headers):
            if method == "OPTIONS":
                return httpx.Response(204, headers={"Access-Control-Allow-Origin": "*",
                                                    "Access-Control-Allow-Credentials": "true"})
            return httpx.Response(200)
        f = CORS().detect(StubEngine(handler), CFG, "https://h.test/api", None)
        assert f.signal == "wildcard_credentials"
        assert f.request_line.startswith("OPTIONS ")

    def test_locked_down(self):
        assert CORS().detect(StubEngine(), CFG, "https://h.test/api", None) is None


class TestMixedContent:
    def test_http_script_on_https_page(self):
        def handler(method, url, headers):
            return httpx.Response(200, text='<script src="http://cdn.test/a.js"></script>')
        f = MixedContent().detect(StubEngine(handler), CFG, "https://h.test/", None)
        assert f.issue_type is IssueType.MIXED_CONTENT
        assert "http://cdn.test/a.js" in f.evidence

    def test_http_page_skipped(self):
        engine = StubEngine()
        assert MixedContent().detect(engine, CFG, "http://h.test/", None) is None
        assert engine.requests == []


class TestRegistry:
    def test_default_detectors_cover_all_issue_types(self):
        issues = {d.issue_type for d in default_detectors()}
        assert issues == {IssueType.CORS_MISCONFIG, IssueType.OPEN_REDIRECT, IssueType.MIXED_CONTENT,
                          IssueType.XSS_REFLECTED, IssueType.SQLI_PATTERN,
                          IssueType.PATH_TRAVERSAL, IssueType.SSTI}

    @respx.mock
    def test_detector_over_real_engine(self):
        respx.get(host="h.test").mock(side_effect=lambda request: httpx.Response(
            200, text=f"<b>{request.url.params.get('q', '')}</b>"))
        f = XSS().detect(HttpxProbeEngine(CFG), CFG, "https://h.test/s?q=1", "q")
        assert f is not None
        assert f.param == "q"
