"""Open Redirect checker: Location header pointing off-site."""

from typing import List, Optional
from urllib.parse import parse_qsl, urljoin, urlsplit

from webprobe.checkers.base import BaseChecker
from webprobe.core.config import ProbeClass
from webprobe.core.models import Finding, IssueType, Severity
from webprobe.core.probes import EXTERNAL_URL

# Common redirect parameter names, most likely first.
REDIRECT_KEYS = ["next", "redirect", "url", "returnUrl", "return", "dest",
                 "destination", "target", "continue", "r", "to"]
DEFAULT_KEYS = ["next", "redirect", "url"]

_ACCEPT_HTML = {"Accept": "text/html,application/xhtml+xml"}


class OpenRedirect(BaseChecker):
    """
    Uses a no-redirect client. GET first, HEAD when GET did not answer with
    a 3xx plus Location. Only an off-site Location is reported.
    """

    name = "Open Redirect"
    probe_class = ProbeClass.OPEN_REDIRECT
    issue_type = IssueType.OPEN_REDIRECT
    needs_param = False

    @staticmethod
    def candidate_keys(url: str, param_key: Optional[str]) -> List[str]:
        if param_key:
            return [param_key]
        present = {k for k, _ in parse_qsl(urlsplit(url).query, keep_blank_values=True)}
        keys = [k for k in REDIRECT_KEYS if k in present]
        return keys or list(DEFAULT_KEYS)

    @staticmethod
    def _is_redirect(code: int, location: str) -> bool:
        return 300 <= code < 400 and bool(location)

    @staticmethod
    def is_external_redirect(location: str, base_url: str) -> bool:
        """Does the Location header point to a host other than the page's?"""
        if not location:
            return False
        lower = location.strip().lower()
        if lower.startswith(("javascript:", "data:", "vbscript:")):
            return True
        host = (urlsplit(urljoin(base_url, location.strip())).hostname or "").lower()
        base_host = (urlsplit(base_url).hostname or "").lower()
        return bool(host) and host != base_host

    def detect(self, engine, config, url, param_key) -> Optional[Finding]:
        for key in self.candidate_keys(url, param_key):
            for probe in self.probes:
                target = engine.with_param(url, key, probe.payload)

                resp = engine.get_no_redirect(target, _ACCEPT_HTML)
                code, loc = resp.status_code, resp.headers.get("location", "")
                method = "GET"
                if not self._is_redirect(code, loc):
                    head = engine.head_no_redirect(target, _ACCEPT_HTML)
                    code, loc = head.status_code, head.headers.get("location", "")
                    method = "HEAD"

                if self._is_redirect(code, loc) and self.is_external_redirect(loc, url):
                    return self.finding(
                        target, Severity.MEDIUM, 0.85,
                        param=key, payload=probe.payload or EXTERNAL_URL,
                        signal=probe.signature, status_code=code, method=method,
                        evidence=f"HTTP {code}\nLocation: {loc[:200]}",
                        title=f"{self.name} via '{key}'",
                    )
        return None
