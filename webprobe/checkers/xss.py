import re
from typing import Optional

from webprobe.checkers.base import BaseChecker
from webprobe.core.config import ProbeClass
from webprobe.core.models import Finding, IssueType, Severity


class XSS(BaseChecker):
    """
    Reflected XSS.
    Strategy:
      1) Inject the polyglot into one parameter.
      2) Vulnerable if it comes back verbatim; entity-escaped echoes do not count.
      3) Reflection inside a quoted attribute is rated lower than in markup.
    Limitation: no DOM, no JS execution. Server-side heuristic.
    """

    name = "Cross-Site Scripting (Reflected XSS)"
    probe_class = ProbeClass.XSS
    issue_type = IssueType.XSS_REFLECTED

    @staticmethod
    def _in_attribute(body: str, payload: str) -> bool:
        p = re.escape(payload)
        return bool(re.search(r"=\s*\"[^\"<>]*" + p, body) or
                    re.search(r"=\s*'[^'<>]*" + p, body))

    def detect(self, engine, config, url, param_key) -> Optional[Finding]:
        if not param_key:
            return None
        for probe in self.probes:
            target = engine.with_param(url, param_key, probe.payload)
            resp = engine.get(target)
            body = resp.text or ""
            if probe.payload not in body:
                continue
            sev = Severity.MEDIUM if self._in_attribute(body, probe.payload) else Severity.HIGH
            return self.finding(
                target, sev, 0.8,
                param=param_key, payload=probe.payload, signal=probe.signature,
                status_code=resp.status_code,
                evidence=engine.snippet_around(body, probe.payload, 80),
            )
        return None
