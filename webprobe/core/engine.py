"""Probe execution backend used by the active detectors."""

import re
from abc import ABC, abstractmethod
from typing import Dict, Optional
from urllib.parse import quote, urlsplit, urlunsplit

import httpx
from colorama import Style

from webprobe.core.config import ScanConfig

DEFAULT_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

_PASSWD_LINE = re.compile(r"(?m)^root:x:[^\n\r]*$")
_KEY_VALUE = re.compile(r"(?i)(\b(?:api[_-]?key|secret|token)\b\s*[:=]\s*)([^\s\"'\\]+)")


class ProbeEngine(ABC):
    """
    The one interface detectors talk to.

    Implementations only provide request(); the verb helpers, CORS preflight
    and evidence helpers are shared.
    """

    @abstractmethod
    def request(self, method: str, url: str, headers: Optional[Dict[str, str]] = None,
                follow_redirects: Optional[bool] = None) -> httpx.Response:
        """Send one probe. follow_redirects=None means "as configured"."""
        ...

    # ── verbs ───────────────────────────────────────────────────

    def get(self, url: str, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        return self.request("GET", url, headers)

    def head(self, url: str, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        return self.request("HEAD", url, headers)

    def options(self, url: str, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        return self.request("OPTIONS", url, headers)

    def get_no_redirect(self, url: str, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        return self.request("GET", url, headers, follow_redirects=False)

    def head_no_redirect(self, url: str, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        return self.request("HEAD", url, headers, follow_redirects=False)

    def preflight(self, url: str, origin: str, method: str = "GET") -> httpx.Response:
        """CORS preflight: OPTIONS with Origin and Access-Control-Request-Method."""
        headers = {"Accept": DEFAULT_ACCEPT}
        if origin:
            headers["Origin"] = origin
        if method:
            headers["Access-Control-Request-Method"] = method
        return self.options(url, headers)

    # ── evidence helpers ────────────────────────────────────────

    @staticmethod
    def request_line(method: str, url: str) -> str:
        """'GET https://example.com/a?b=1 HTTP/1.1'"""
        return f"{method or 'GET'} {url} HTTP/1.1"

    @staticmethod
    def snippet_around(body: str, token: Optional[str], radius: int = 80) -> str:
        """body[token-radius : token+radius], or the head of body if token is absent."""
        if not body:
            return ""
        r = radius if radius > 0 else 80
        i = body.find(token) if token else -1
        if i < 0:
            return body[:r * 2]
        return body[max(0, i - r):i + len(token) + r]

    @staticmethod
    def mask_sensitive(s: str) -> str:
        if not s:
            return s
        out = _PASSWD_LINE.sub("root:x:***", s)
        return _KEY_VALUE.sub(r"\1***", out)

    @staticmethod
    def with_param(url: str, key: str, value: str) -> str:
        """Replace the first *key* in the query (or append it) with a URL-encoded value."""
        parts = urlsplit(url)
        enc_key = quote(key, safe="")
        pair = f"{enc_key}={quote(value, safe='')}"
        out, replaced = [], False
        for part in (parts.query or "").split("&"):
            if not part:
                continue
            k = part.split("=", 1)[0]
            if not replaced and k == enc_key:
                out.append(pair)
                replaced = True
            else:
                out.append(part)
        if not replaced:
            out.append(pair)
        return urlunsplit((parts.scheme, parts.netloc, parts.path, "&".join(out), parts.fragment))


class HttpxProbeEngine(ProbeEngine):
    """ProbeEngine over a shared httpx.Client."""

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

    def request(self, method: str, url: str, headers: Optional[Dict[str, str]] = None,
                follow_redirects: Optional[bool] = None) -> httpx.Response:
        hdrs = dict(headers or {})
        if not any(k.lower() == "accept" for k in hdrs):
            hdrs["Accept"] = DEFAULT_ACCEPT
        follow = self.config.follow_redirects if follow_redirects is None else follow_redirects

        if self.logger and self.logger.verbose >= 2:
            self.logger.debug(f"→ {method} {self.logger.PAY}{url}{Style.RESET_ALL}")
        return self.client.request(method, url, headers=hdrs, follow_redirects=follow)

    def close(self):
        if self._owns_client:
            self.client.close()
