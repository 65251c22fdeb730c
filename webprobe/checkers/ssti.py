from typing import Optional

from webprobe.checkers.base import BaseChecker
from webprobe.core.config import ProbeClass
from webprobe.core.models import Finding, IssueType, Severity
from webprobe.core.probes import SSTI_EXPECT

_TEMPLATE_ERRORS = [
    "TemplateSyntaxError", "Jinja2", "Thymeleaf", "Freemarker",
    "VelocityException", "MustacheException", "PebbleException",
]


class SSTI(BaseChecker):
    name = "Server-Side Template Injection (SSTI)"
    probe_class = ProbeClass.SSTI
    issue_type = IssueType.SSTI

    def detect(self, engine, config, url, param_key) -> Optional[Finding]:
        if not param_key:
            return None
        for probe in self.probes:
            target = engine.with_param(url, param_key, probe.payload)
            resp = engine.get(target)
            body = resp.text or ""
            if SSTI_EXPECT in body:
                # expression evaluated
                return self.finding(
                    target, Severity.HIGH, 0.8,
                    param=param_key, payload=probe.payload, signal=probe.signature,
                    status_code=resp.status_code,
                    evidence=engine.snippet_around(body, SSTI_EXPECT, 80),
                )
            err = next((e for e in _TEMPLATE_ERRORS if e in body), None)
            if err:
                return self.finding(
                    target, Severity.MEDIUM, 0.6,
                    param=param_key, payload=probe.payload,
                    signal=f"{probe.signature}:error",
                    status_code=resp.status_code,
                    evidence=engine.snippet_around(body, err, 80),
                )
        return None
