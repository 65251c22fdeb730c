# webprobe/checkers/lfi.py
import re
from typing import Optional

from webprobe.checkers.base import BaseChecker
from webprobe.core.config import ProbeClass
from webprobe.core.models import Finding, IssueType, Severity

# Content that only shows up when the file was actually read.
_HIT = [
    re.compile(r"^root:x:0:0:", re.M),       # /etc/passwd
    re.compile(r"^\[fonts\]", re.I | re.M),   # win.ini
    re.compile(r"for 16-bit app support", re.I),
]


class LFI(BaseChecker):
    """
    Path traversal / local file inclusion:
      - raw and %2f-encoded ../ sequences towards /etc/passwd
      - win.ini variant when the extra payloads are enabled
      - content heuristic, error messages alone are not reported
    """

    name = "Path Traversal (LFI)"
    probe_class = ProbeClass.PATH_TRAVERSAL
    issue_type = IssueType.PATH_TRAVERSAL

    @staticmethod
    def signature_in(body: str) -> Optional[str]:
        for rx in _HIT:
            m = rx.search(body or "")
            if m:
                return m.group(0)
        return None

    def detect(self, engine, config, url, param_key) -> Optional[Finding]:
        if not param_key:
            return None
        for probe in self.probes:
            target = engine.with_param(url, param_key, probe.payload)
            resp = engine.get(target)
            body = resp.text or ""
            hit = self.signature_in(body)
            if not hit:
                continue
            return self.finding(
                target, Severity.HIGH, 0.85,
                param=param_key, payload=probe.payload, signal=probe.signature,
                status_code=resp.status_code,
                evidence=engine.snippet_around(body, hit, 80),
            )
        return None
