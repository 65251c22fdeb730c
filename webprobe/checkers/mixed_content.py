import re
from typing import Optional
from urllib.parse import urlsplit

from webprobe.checkers.base import BaseChecker
from webprobe.core.config import ProbeClass
from webprobe.core.models import Finding, IssueType, Severity

_HTTP_RESOURCE = re.compile(r"""(?i)\b(src|href|data|action)\s*=\s*["']?(http://[^"'\s>]+)""")


class MixedContent(BaseChecker):
    """http:// subresources referenced from an https page."""

    name = "Mixed Content"
    probe_class = ProbeClass.MIXED_CONTENT
    issue_type = IssueType.MIXED_CONTENT
    needs_param = False

    def detect(self, engine, config, url, param_key) -> Optional[Finding]:
        if urlsplit(url).scheme.lower() != "https":
            return None
        for probe in self.probes:
            resp = engine.get(url)
            body = resp.text or ""
            m = _HTTP_RESOURCE.search(body)
            if not m:
                continue
            return self.finding(
                url, Severity.LOW, 0.75,
                signal=probe.signature, status_code=resp.status_code,
                evidence=engine.snippet_around(body, m.group(2), 60),
            )
        return None
