"""Abstract base for all active detectors."""

from abc import ABC, abstractmethod
from typing import Optional, Tuple
import random
import string

from webprobe.core.config import ProbeClass, ScanConfig
from webprobe.core.engine import ProbeEngine
from webprobe.core.models import Finding, IssueType, Severity
from webprobe.core.probes import CATALOGUE, EXTRA_CATALOGUE, Probe


class BaseChecker(ABC):
    """
    Every detector implements detect(engine, config, url, param_key).

    param_key is None for the URL-level pass. Returning None means "no
    finding"; exceptions are treated the same way by the planner.
    """

    name: str = "Unnamed Checker"
    probe_class: ProbeClass
    issue_type: IssueType
    needs_param: bool = True

    def __init__(self, extra: bool = False):
        self.extra = extra

    # ── public API ──────────────────────────────────────────────

    @abstractmethod
    def detect(
        self,
        engine: ProbeEngine,
        config: ScanConfig,
        url: str,
        param_key: Optional[str],
    ) -> Optional[Finding]:
        ...

    @property
    def probes(self) -> Tuple[Probe, ...]:
        base = CATALOGUE.get(self.probe_class, ())
        if self.extra:
            return base + EXTRA_CATALOGUE.get(self.probe_class, ())
        return base

    # ── shared helpers ──────────────────────────────────────────

    @staticmethod
    def rand(n: int = 8) -> str:
        """Random alphanumeric canary string."""
        abc = string.ascii_letters + string.digits
        return "".join(random.choice(abc) for _ in range(n))

    def finding(self, url: str, severity: Severity, confidence: float, *,
                param: Optional[str] = None, payload: str = "", signal: str = "",
                status_code: int = 0, evidence: str = "", method: str = "GET",
                title: Optional[str] = None) -> Finding:
        return Finding(
            url=url,
            issue_type=self.issue_type,
            severity=severity,
            title=title or self.name,
            param=param,
            payload=payload,
            signal=signal,
            confidence=confidence,
            status_code=status_code,
            evidence=ProbeEngine.mask_sensitive(evidence),
            request_line=ProbeEngine.request_line(method, url),
        )
