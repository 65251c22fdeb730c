"""
Scan configuration, capability resolution and the resolved run gate.

ScanConfig carries what the caller asked for. Capabilities answers "which
probe classes does this mode run" and is computed in one place. Gate is the
run-wide policy (first pages, sampling, active RPS and budgets) built once
from mode defaults and the WEBPROBE_* environment overrides read through
pydantic-settings; nothing reads the environment after that.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from webprobe.core.exceptions import ConfigurationError


class Mode(str, Enum):
    SAFE = "SAFE"                          # passive only
    SAFE_PLUS = "SAFE_PLUS"                # enhanced passive: light reflective probes
    AGGRESSIVE_LITE = "AGGRESSIVE_LITE"
    AGGRESSIVE = "AGGRESSIVE"

    @property
    def profile(self) -> str:
        """Short name used for per-profile overrides."""
        return _PROFILES[self]

    @classmethod
    def parse(cls, value) -> "Mode":
        if isinstance(value, Mode):
            return value
        key = str(value or "").strip().upper().replace("-", "_")
        for m in cls:
            if key in (m.value, m.value.replace("_", ""), m.profile.upper()):
                return m
        raise ConfigurationError("unknown scan mode", {"mode": value})


_PROFILES = {
    Mode.SAFE: "safe",
    Mode.SAFE_PLUS: "safeplus",
    Mode.AGGRESSIVE_LITE: "agglite",
    Mode.AGGRESSIVE: "aggressive",
}


class ProbeClass(str, Enum):
    XSS = "xss"
    SQLI = "sqli"
    CORS = "cors"
    OPEN_REDIRECT = "open_redirect"
    PATH_TRAVERSAL = "path_traversal"
    SSTI = "ssti"
    MIXED_CONTENT = "mixed_content"


# Classes that need a query parameter to inject into.
PARAM_CLASSES = frozenset({ProbeClass.XSS, ProbeClass.SQLI,
                           ProbeClass.PATH_TRAVERSAL, ProbeClass.SSTI})
# Classes that work on the URL itself.
PARAMLESS_CLASSES = frozenset({ProbeClass.CORS, ProbeClass.MIXED_CONTENT})

_MODE_CLASSES = {
    Mode.SAFE: frozenset(),
    Mode.SAFE_PLUS: frozenset({ProbeClass.XSS, ProbeClass.SQLI,
                               ProbeClass.CORS, ProbeClass.OPEN_REDIRECT}),
    Mode.AGGRESSIVE_LITE: frozenset({ProbeClass.PATH_TRAVERSAL, ProbeClass.SSTI,
                                     ProbeClass.OPEN_REDIRECT, ProbeClass.MIXED_CONTENT}),
    Mode.AGGRESSIVE: frozenset(ProbeClass),
}

_DEFAULT_PARAM_CAP = {
    Mode.SAFE: 0,
    Mode.SAFE_PLUS: 3,
    Mode.AGGRESSIVE_LITE: 4,
    Mode.AGGRESSIVE: 6,
}


def active_default_rps(mode: Mode, rps: int) -> int:
    """Active-only RPS derived from the global RPS, clamped per mode."""
    if mode is Mode.SAFE_PLUS:
        return max(2, min(3, rps))
    if mode is Mode.AGGRESSIVE_LITE:
        return max(3, min(5, rps))
    if mode is Mode.AGGRESSIVE:
        return max(4, min(7, rps))
    return 0


@dataclass(frozen=True)
class Capabilities:
    """Immutable per-run answer to "which probe classes are on"."""
    mode: Mode
    classes: FrozenSet[ProbeClass]
    default_param_cap: int
    active_default_rps: int

    def enabled(self, probe_class: ProbeClass) -> bool:
        return probe_class in self.classes

    @property
    def xss(self) -> bool:
        return ProbeClass.XSS in self.classes

    @property
    def sqli(self) -> bool:
        return ProbeClass.SQLI in self.classes

    @property
    def cors(self) -> bool:
        return ProbeClass.CORS in self.classes

    @property
    def open_redirect(self) -> bool:
        return ProbeClass.OPEN_REDIRECT in self.classes

    @property
    def path_traversal(self) -> bool:
        return ProbeClass.PATH_TRAVERSAL in self.classes

    @property
    def ssti(self) -> bool:
        return ProbeClass.SSTI in self.classes

    @property
    def mixed_content(self) -> bool:
        return ProbeClass.MIXED_CONTENT in self.classes

    @property
    def any_active(self) -> bool:
        return bool(self.classes)

    @property
    def any_param_class(self) -> bool:
        return bool(self.classes & PARAM_CLASSES)

    @property
    def any_paramless_class(self) -> bool:
        return bool(self.classes & PARAMLESS_CLASSES)

    @property
    def open_redirect_only(self) -> bool:
        return self.classes == frozenset({ProbeClass.OPEN_REDIRECT})


def parse_checks(names: Optional[Iterable[str]]) -> Optional[FrozenSet[ProbeClass]]:
    if names is None:
        return None
    out = set()
    for n in names:
        key = str(n).strip().lower().replace("-", "_")
        if key in ("lfi", "traversal"):
            key = ProbeClass.PATH_TRAVERSAL.value
        if key in ("redirect", "or"):
            key = ProbeClass.OPEN_REDIRECT.value
        try:
            out.add(ProbeClass(key))
        except ValueError:
            raise ConfigurationError("unknown check", {"check": n}) from None
    return frozenset(out)


def resolve_capabilities(mode: Mode, enabled_checks: Optional[Iterable[str]] = None,
                         rps: int = 10) -> Capabilities:
    """Single place where a mode (plus an optional check subset) becomes flags."""
    mode = Mode.parse(mode)
    classes = _MODE_CLASSES[mode]
    subset = parse_checks(enabled_checks)
    if subset is not None:
        classes = classes & subset
    return Capabilities(
        mode=mode,
        classes=frozenset(classes),
        default_param_cap=_DEFAULT_PARAM_CAP[mode],
        active_default_rps=active_default_rps(mode, rps),
    )


# ── scan configuration ─────────────────────────────────────────

@dataclass
class AggressiveConfig:
    max_params_per_url: int = 4
    run_time_budget_ms: int = 60_000


@dataclass
class ScanConfig:
    """Inputs for one scan run."""
    mode: Mode = Mode.SAFE
    rps: int = 10
    concurrency: int = 4
    timeout_s: float = 10.0
    follow_redirects: bool = True
    max_params_per_url: int = 3
    xss_param_hints: List[str] = field(
        default_factory=lambda: ["q", "search", "s", "query", "keyword"])
    sqli_param_hints: List[str] = field(
        default_factory=lambda: ["id", "uid", "user", "no", "prod", "cat", "page"])
    enabled_checks: Optional[List[str]] = None     # None: everything the mode allows
    active_on_query_only: Optional[bool] = None
    respect_robots: bool = True
    user_agent: str = "WebProbe/1.0"
    proxy: Optional[str] = None
    aggressive: AggressiveConfig = field(default_factory=AggressiveConfig)

    def __post_init__(self):
        self.mode = Mode.parse(self.mode)

    def validate(self) -> "ScanConfig":
        if self.rps < 0:
            raise ConfigurationError("rps must be >= 0", {"rps": self.rps})
        if self.concurrency < 1:
            raise ConfigurationError("concurrency must be >= 1",
                                     {"concurrency": self.concurrency})
        if self.timeout_s <= 0:
            raise ConfigurationError("timeout must be positive",
                                     {"timeout_s": self.timeout_s})
        if self.aggressive.run_time_budget_ms < 0:
            raise ConfigurationError("run_time_budget_ms must be >= 0",
                                     {"run_time_budget_ms": self.aggressive.run_time_budget_ms})
        parse_checks(self.enabled_checks)
        return self

    def capabilities(self) -> Capabilities:
        return resolve_capabilities(self.mode, self.enabled_checks, self.rps)


# ── environment overrides ──────────────────────────────────────

class ProfileOverrides(BaseModel):
    """Per-profile knobs, e.g. WEBPROBE_PROFILES__SAFEPLUS__SAMPLE=0.5"""
    first_pages: Optional[int] = None
    active_on_query_only: Optional[bool] = None
    sample: Optional[float] = None
    rps: Optional[int] = None
    max_active: Optional[int] = None
    max_active_per_host: Optional[int] = None


class ScanSettings(BaseSettings):
    """Run-level overrides loaded from WEBPROBE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="WEBPROBE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # global active overrides (below per-profile, above config/defaults)
    active_first_pages: Optional[int] = Field(default=None)
    active_on_query_only: Optional[bool] = Field(default=None)
    active_sample: Optional[float] = Field(default=None)
    active_rps: Optional[int] = Field(default=None)
    active_max: Optional[int] = Field(default=None)
    active_max_per_host: Optional[int] = Field(default=None)

    profiles: Dict[str, ProfileOverrides] = Field(default_factory=dict)

    # seed caps, -1 disables
    crawl_max_seeds: int = Field(default=-1)
    crawl_max_per_host: int = Field(default=-1)

    # robots cache; non-positive disables caching
    robots_success_ttl_minutes: Optional[int] = Field(default=None)
    robots_failure_ttl_minutes: Optional[int] = Field(default=None)

    # probe budget for one planner run
    budget_max_probes: Optional[int] = Field(default=None)
    budget_max_seconds: Optional[int] = Field(default=None)

    # extra AGGRESSIVE payloads
    aggressive_extra: bool = Field(default=False)

    def profile(self, mode: Mode) -> ProfileOverrides:
        return self.profiles.get(Mode.parse(mode).profile) or ProfileOverrides()


def _first(*values):
    for v in values:
        if v is not None:
            return v
    return None


def resolve_active_on_query_only(config: ScanConfig,
                                 settings: Optional[ScanSettings] = None) -> bool:
    """profile override -> global override -> config flag -> mode default."""
    settings = settings or ScanSettings()
    prof = settings.profile(config.mode)
    return bool(_first(prof.active_on_query_only,
                       settings.active_on_query_only,
                       config.active_on_query_only,
                       config.mode is Mode.SAFE_PLUS))


@dataclass(frozen=True)
class Gate:
    """Resolved run policy. Built once per run, never mutated."""
    first_pages: int
    on_query_only: bool
    sample_rate: float
    active_rps: int
    max_active_total: int
    max_active_per_host: int


def resolve_gate(config: ScanConfig, caps: Optional[Capabilities] = None,
                 settings: Optional[ScanSettings] = None) -> Gate:
    caps = caps or config.capabilities()
    settings = settings or ScanSettings()
    prof = settings.profile(config.mode)
    mode = config.mode

    first_pages = _first(prof.first_pages, settings.active_first_pages,
                         200 if mode is Mode.AGGRESSIVE else 50)
    sample = _first(prof.sample, settings.active_sample,
                    0.0 if mode is Mode.SAFE else 1.0)
    rps = _first(prof.rps, settings.active_rps, caps.active_default_rps)
    max_total = _first(prof.max_active, settings.active_max,
                       1000 if mode is Mode.AGGRESSIVE else 400)
    max_host = _first(prof.max_active_per_host, settings.active_max_per_host,
                      150 if mode is Mode.AGGRESSIVE else 60)

    return Gate(
        first_pages=max(1, int(first_pages)),
        on_query_only=resolve_active_on_query_only(config, settings),
        sample_rate=max(0.0, min(1.0, float(sample))),
        active_rps=max(0, int(rps)),
        max_active_total=max(0, int(max_total)),
        max_active_per_host=max(0, int(max_host)),
    )


def resolve_budget(config: ScanConfig, settings: Optional[ScanSettings] = None):
    """(max_probes, max_seconds) for one planner run."""
    settings = settings or ScanSettings()
    mode = config.mode
    if mode in (Mode.AGGRESSIVE_LITE, Mode.AGGRESSIVE):
        probes, seconds = 800, max(1, config.aggressive.run_time_budget_ms // 1000)
    elif mode is Mode.SAFE_PLUS:
        probes, seconds = 300, 30
    else:
        probes, seconds = 1, 1
    probes = _first(settings.budget_max_probes, probes)
    seconds = _first(settings.budget_max_seconds, seconds)
    return max(1, int(probes)), max(1, int(seconds))
