"""Shared data models for the probing core."""

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class IssueType(str, Enum):
    # passive signatures
    MISSING_SECURITY_HEADER = "missing_security_header"
    COOKIE_HTTPONLY_MISSING = "cookie_httponly_missing"
    COOKIE_SECURE_MISSING = "cookie_secure_missing"
    DIRECTORY_LISTING = "directory_listing"
    SERVER_ERROR_5XX = "server_error_5xx"
    STACKTRACE_TOKEN = "stacktrace_token"
    # active probes
    XSS_REFLECTED = "xss_reflected"
    SQLI_PATTERN = "sqli_pattern"
    PATH_TRAVERSAL = "path_traversal"
    SSTI = "ssti"
    OPEN_REDIRECT = "open_redirect"
    CORS_MISCONFIG = "cors_misconfig"
    MIXED_CONTENT = "mixed_content"


@dataclass
class Finding:
    """A single vulnerability finding."""
    url: str
    issue_type: IssueType
    severity: Severity
    title: str
    param: Optional[str] = None     # None for URL-level findings
    payload: str = ""
    signal: str = ""                # sub-variant, part of the dedupe identity
    confidence: float = 0.7         # 0.0..1.0
    status_code: int = 0
    evidence: str = ""              # short proof snippet
    request_line: str = ""          # e.g. "GET /path?x=1 HTTP/1.1"
    detected_at: float = field(default_factory=time.time)

    def __str__(self):
        where = f" param={self.param}" if self.param else ""
        return (f"[{self.severity.value.upper()}][{self.confidence:.2f}] {self.title} "
                f"@ {self.url}{where} payload={self.payload!r} "
                f"(HTTP {self.status_code})")


@dataclass
class HttpResponseData:
    """Captured data from a clean (payloadless) request."""
    url: str
    status_code: int = 0
    headers: Dict[str, List[str]] = field(default_factory=dict)
    body: str = ""
    content_type: str = ""
    response_time_ms: int = 0

    def header(self, name: str) -> Optional[str]:
        """First value of a header, case-insensitive."""
        values = self.header_values(name)
        return values[0] if values else None

    def header_values(self, name: str) -> List[str]:
        lname = name.lower()
        for k, v in self.headers.items():
            if k.lower() == lname:
                return list(v)
        return []


@dataclass(frozen=True)
class DedupeKey:
    """Identity used to suppress duplicate findings within one run."""
    url: str
    param_key: str
    issue_type: str
    signal: str = ""

    @classmethod
    def of(cls, url: str, param_key: Optional[str], issue_type, signal: Optional[str] = None) -> "DedupeKey":
        issue = issue_type.value if isinstance(issue_type, IssueType) else str(issue_type)
        return cls(url, param_key or "-", issue, signal or "")


# ── runtime telemetry ──────────────────────────────────────────

@dataclass(frozen=True)
class Snapshot:
    requests_total: int
    retries_total: int
    max_observed_concurrency: int
    avg_latency_ms: int


class ScanStats:
    """
    Thread-safe accumulator for runtime telemetry.

    attempts for one URL are (1 + retries); the average latency is the sum of
    per-URL wall time divided by attempts, so it includes backoff waits.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._requests_total = 0
        self._retries_total = 0
        self._sum_wall_ms = 0
        self._attempts = 0
        self._max_concurrency = 0

    def add_attempts(self, attempts: int):
        with self._lock:
            self._attempts += attempts
            self._requests_total += attempts

    def add_retries(self, retries: int):
        with self._lock:
            self._retries_total += retries

    def add_wall_time_ms(self, wall_ms: int):
        with self._lock:
            self._sum_wall_ms += wall_ms

    def observe_concurrency(self, current: int):
        with self._lock:
            if current > self._max_concurrency:
                self._max_concurrency = current

    def snapshot(self) -> Snapshot:
        with self._lock:
            attempts = max(1, self._attempts)
            return Snapshot(
                requests_total=self._requests_total,
                retries_total=self._retries_total,
                max_observed_concurrency=self._max_concurrency,
                avg_latency_ms=self._sum_wall_ms // attempts,
            )
