"""Passive signature scan of an unmodified response."""

import re
from typing import List
from urllib.parse import urlsplit

from webprobe.core.models import Finding, HttpResponseData, IssueType, Severity

_DIR_LISTING = re.compile(r"<title>\s*Index of /", re.I)
_STACK_TOKENS = [
    "Traceback (most recent call last)",
    "Exception in thread \"",
    "at java.",
    "System.NullReferenceException",
    "Stack trace:",
    "Fatal error: Uncaught",
]


class SignatureScanner:
    """
    Cheap checks that need no extra request:
      - 5xx responses
      - missing security headers (CSP, X-Content-Type-Options, X-Frame-Options, HSTS)
      - cookies without HttpOnly / Secure
      - directory listings and leaked stack traces
    """

    def scan(self, resp: HttpResponseData) -> List[Finding]:
        if resp is None or resp.status_code <= 0:
            return []
        out: List[Finding] = []
        url = resp.url
        https = urlsplit(url).scheme.lower() == "https"

        if resp.status_code >= 500:
            out.append(self._finding(url, IssueType.SERVER_ERROR_5XX, Severity.LOW,
                                     f"Server error {resp.status_code}", resp,
                                     evidence=f"HTTP {resp.status_code}"))

        if 200 <= resp.status_code < 300 and self._is_html(resp):
            out.extend(self._headers(url, resp, https))

        out.extend(self._cookies(url, resp, https))

        body = resp.body or ""
        if _DIR_LISTING.search(body):
            out.append(self._finding(url, IssueType.DIRECTORY_LISTING, Severity.LOW,
                                     "Directory listing enabled", resp,
                                     evidence=body[:120]))
        token = next((t for t in _STACK_TOKENS if t in body), None)
        if token:
            i = body.find(token)
            out.append(self._finding(url, IssueType.STACKTRACE_TOKEN, Severity.LOW,
                                     "Stack trace disclosed", resp, signal=token,
                                     evidence=body[max(0, i - 40):i + 120]))
        return out

    @staticmethod
    def _is_html(resp: HttpResponseData) -> bool:
        ctype = (resp.content_type or resp.header("content-type") or "").lower()
        return "html" in ctype or not ctype

    def _headers(self, url: str, resp: HttpResponseData, https: bool) -> List[Finding]:
        out = []
        csp = resp.header("content-security-policy")
        if not csp:
            sev = Severity.MEDIUM if https else Severity.INFO
            out.append(self._missing(url, resp, "Content-Security-Policy", sev))
        if (resp.header("x-content-type-options") or "").lower() != "nosniff":
            out.append(self._missing(url, resp, "X-Content-Type-Options", Severity.LOW))
        if not resp.header("x-frame-options") and "frame-ancestors" not in (csp or "").lower():
            out.append(self._missing(url, resp, "X-Frame-Options", Severity.LOW))
        if https and not resp.header("strict-transport-security"):
            out.append(self._missing(url, resp, "Strict-Transport-Security", Severity.LOW))
        return out

    def _cookies(self, url: str, resp: HttpResponseData, https: bool) -> List[Finding]:
        out = []
        for raw in resp.header_values("set-cookie"):
            name = raw.split("=", 1)[0].strip()
            attrs = [a.strip().lower() for a in raw.split(";")[1:]]
            if "httponly" not in attrs:
                out.append(self._finding(url, IssueType.COOKIE_HTTPONLY_MISSING, Severity.LOW,
                                         f"Cookie '{name}' without HttpOnly", resp,
                                         signal=name, evidence=raw[:120]))
            if https and "secure" not in attrs:
                out.append(self._finding(url, IssueType.COOKIE_SECURE_MISSING, Severity.LOW,
                                         f"Cookie '{name}' without Secure", resp,
                                         signal=name, evidence=raw[:120]))
        return out

    def _missing(self, url, resp, header: str, sev: Severity) -> Finding:
        return self._finding(url, IssueType.MISSING_SECURITY_HEADER, sev,
                             f"Missing {header}", resp, signal=header,
                             evidence=f"{header} not set")

    @staticmethod
    def _finding(url: str, issue: IssueType, sev: Severity, title: str,
                 resp: HttpResponseData, signal: str = "", evidence: str = "") -> Finding:
        return Finding(url=url, issue_type=issue, severity=sev, title=title,
                       signal=signal, status_code=resp.status_code, confidence=0.9,
                       evidence=evidence, request_line=f"GET {url} HTTP/1.1")
