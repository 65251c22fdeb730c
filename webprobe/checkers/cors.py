"""CORS misconfiguration checker."""

from typing import Optional

from webprobe.checkers.base import BaseChecker
from webprobe.core.config import ProbeClass
from webprobe.core.models import Finding, IssueType, Severity
from webprobe.core.probes import origin_of

PREFLIGHT_ORIGIN = "https://wkai.example"


class CORS(BaseChecker):
    """
    Sends each probe Origin and reads the ACAO/ACAC answer:
      ACAO=<origin> + credentials   -> high
      ACAO=null + credentials       -> medium
      ACAO=* + credentials          -> medium (also checked via preflight)
      ACAO=<origin> w/o credentials -> low
    """

    name = "CORS Misconfiguration"
    probe_class = ProbeClass.CORS
    issue_type = IssueType.CORS_MISCONFIG
    needs_param = False

    @staticmethod
    def _verdict(origin: str, acao: str, creds: bool):
        if acao == "*" and creds:
            return Severity.MEDIUM, 0.8, "wildcard_credentials"
        if origin == "null" and acao == "null":
            return (Severity.MEDIUM, 0.8, None) if creds else (Severity.LOW, 0.6, None)
        if acao and acao == origin:
            return (Severity.HIGH, 0.9, None) if creds else (Severity.LOW, 0.6, None)
        return None

    def detect(self, engine, config, url, param_key) -> Optional[Finding]:
        for probe in self.probes:
            origin = origin_of(probe.payload)
            resp = engine.get(url, {"Origin": origin})
            acao = resp.headers.get("access-control-allow-origin", "").strip()
            acac = resp.headers.get("access-control-allow-credentials", "").strip()
            verdict = self._verdict(origin, acao, acac.lower() == "true")
            if verdict is None:
                continue
            sev, conf, signal = verdict
            return self.finding(
                url, sev, conf,
                payload=probe.payload, signal=signal or probe.signature,
                status_code=resp.status_code,
                evidence=f"Origin: {origin}\nAccess-Control-Allow-Origin: {acao}\n"
                         f"Access-Control-Allow-Credentials: {acac}",
            )

        resp = engine.preflight(url, PREFLIGHT_ORIGIN, "GET")
        acao = resp.headers.get("access-control-allow-origin", "").strip()
        acac = resp.headers.get("access-control-allow-credentials", "").strip()
        if acao == "*" and acac.lower() == "true":
            return self.finding(
                url, Severity.MEDIUM, 0.8,
                payload=f"Origin:{PREFLIGHT_ORIGIN}", signal="wildcard_credentials",
                status_code=resp.status_code, method="OPTIONS",
                evidence=f"Access-Control-Allow-Origin: {acao}\n"
                         f"Access-Control-Allow-Credentials: {acac}",
            )
        return None
