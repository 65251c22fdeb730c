"""
Active probe planning and execution.

For one page URL the planner picks which query parameters are worth
probing, expands the enabled probe classes into a deduplicated list of
ProbePlans, and runs the matching detectors:

  1. paramless pass: URL-level detectors, once each
  2. param pass:     parameter-aware detectors, once per selected key

Every detector call first takes a permit from the run's BudgetGate; an
exhausted budget ends the pass quietly, a set cancel event raises
ScanCancelled before the next call. A detector that raises counts as
"no finding". Findings are deduplicated per run on
(url, param or "-", issue type, signal), first writer wins.
"""

import random
import re
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import parse_qsl, urlsplit

from webprobe.core.budget import BudgetGate
from webprobe.core.config import (PARAM_CLASSES, Capabilities, Mode, ProbeClass, ScanConfig,
                                  ScanSettings, resolve_active_on_query_only, resolve_budget)
from webprobe.core.engine import ProbeEngine
from webprobe.core.exceptions import ScanCancelled
from webprobe.core.models import DedupeKey, Finding
from webprobe.core.probes import (CATALOGUE, EXTRA_CATALOGUE, ISSUE_FOR_CLASS,
                                  PAGE_HINT_SUFFIX, ProbeKind)

MAX_PARAM_KEYS = 32
TOP_SEATS = 2
NO_PARAM = "-"


@dataclass(frozen=True)
class ProbePlan:
    issue_key: str          # IssueType value
    param_key: str          # "-" for URL-level probes
    payload: str
    signature: str
    kind: ProbeKind

    def identity(self, url: str) -> str:
        return f"{url}|{self.param_key}|{self.issue_key}|{self.signature}"


# ── parameter heuristics ───────────────────────────────────────

_HIGH_VALUE = re.compile(r"^(id|q|query|search|redirect|returnurl|url|next|file|path)$")
_XSS_EXACT = {"q", "query", "search", "s", "keyword"}
_SQLI_EXACT = {"id", "uid", "user", "no", "prod", "cat", "page"}
_REDIRECT_EXACT = {"next", "redirect", "url", "returnurl", "return", "dest",
                   "destination", "target", "continue", "to", "r"}
_KEY_SPLIT = re.compile(r"[^a-z0-9]+")


def extract_param_keys(url: str) -> List[str]:
    """Decoded, de-duplicated query keys in URL order, at most 32."""
    out: List[str] = []
    for key, _ in parse_qsl(urlsplit(url).query, keep_blank_values=True, encoding="utf-8",
                            errors="replace"):
        if not key or key in out:
            continue
        out.append(key)
        if len(out) >= MAX_PARAM_KEYS:
            break
    return out


def weight_param(key: str) -> int:
    k = key.lower()
    if _HIGH_VALUE.match(k):
        return 100
    if "id" in k or "url" in k or "file" in k:
        return 60
    return 10


def is_redirect_like(key: str) -> bool:
    k = key.lower()
    return "redirect" in k or "returnurl" in k or k in ("url", "next")


def is_file_like(key: str) -> bool:
    k = key.lower()
    return "file" in k or "path" in k


def has_redirect_like_param(url: str) -> bool:
    return any(is_redirect_like(k) for k in extract_param_keys(url))


def class_score(key: str, probe_class: ProbeClass, config: Optional[ScanConfig] = None) -> int:
    """Keyword score of a parameter name for one probe class."""
    k = key.lower()
    if probe_class is ProbeClass.XSS:
        exact = _XSS_EXACT | {h.lower() for h in (config.xss_param_hints if config else [])}
        if k in exact:
            return 100
        return 60 if ("q" in k or "search" in k) else 10
    if probe_class is ProbeClass.SQLI:
        exact = _SQLI_EXACT | {h.lower() for h in (config.sqli_param_hints if config else [])}
        if k in exact:
            return 100
        return 60 if ("id" in k or "user" in k) else 10
    if probe_class is ProbeClass.PATH_TRAVERSAL:
        if k in ("file", "path"):
            return 100
        return 60 if is_file_like(k) else 10
    if probe_class is ProbeClass.OPEN_REDIRECT:
        if k in _REDIRECT_EXACT:
            return 100
        return 60 if ("redirect" in k or "return" in k or "url" in k or "next" in k) else 10
    return weight_param(k)


def rank_keys(keys: Iterable[str], probe_class: Optional[ProbeClass] = None,
              config: Optional[ScanConfig] = None,
              classes: Iterable[ProbeClass] = ()) -> List[str]:
    """Stable sort, best first. Without a class, the best score over *classes* counts."""
    pool = list(classes)

    def score(k: str) -> int:
        if probe_class is not None:
            return class_score(k, probe_class, config)
        return max([class_score(k, c, config) for c in pool] or [weight_param(k)])

    return sorted(keys, key=score, reverse=True)


def param_cap(config: ScanConfig, caps: Capabilities) -> int:
    if config.mode is Mode.AGGRESSIVE_LITE:
        return max(1, config.aggressive.max_params_per_url)
    if config.max_params_per_url > 0:
        return config.max_params_per_url
    return max(1, caps.default_param_cap)


def select_params(ranked: Sequence[str], cap: int, rng: random.Random) -> List[str]:
    """Top-ranked keys keep two seats; the rest are sampled without replacement."""
    ranked = list(ranked)
    if cap <= 0:
        return []
    if len(ranked) <= cap:
        return ranked
    seats = min(TOP_SEATS, cap)
    chosen = ranked[:seats]
    chosen += rng.sample(ranked[seats:], cap - seats)
    return chosen


def has_hint(url: str, config: ScanConfig) -> bool:
    """Is any query key named after a configured XSS/SQLi hint?

    Only key names count, split on non-alphanumerics, so "user_id" matches
    the hint "id" while a value such as "?x=nosuch" matches nothing.
    """
    hints = {h.lower() for h in list(config.xss_param_hints or []) + list(config.sqli_param_hints or [])
             if h}
    if not hints:
        return False
    for key in extract_param_keys(url):
        k = key.lower()
        if k in hints or hints.intersection(_KEY_SPLIT.split(k)):
            return True
    return False


def _issue_key(detector) -> Optional[str]:
    issue = getattr(detector, "issue_type", None)
    if issue is None:
        return None
    return getattr(issue, "value", str(issue))


_PARAM_ISSUES = {ISSUE_FOR_CLASS[c].value for c in PARAM_CLASSES}


def _needs_param_class(detector) -> bool:
    issue = _issue_key(detector)
    if issue is None:
        return getattr(detector, "needs_param", True)
    return issue in _PARAM_ISSUES


def _check(cancel: Optional[threading.Event], url: str):
    if cancel is not None and cancel.is_set():
        raise ScanCancelled(details={"where": "active probe", "url": url})


# ── planner ────────────────────────────────────────────────────

class ProbePlanner:
    """
    One planner per scan run. Its BudgetGate and dedupe table are shared by
    every worker thread of that run and never reused by another run.

    Usage:
        planner = ProbePlanner(engine, config, logger=log)
        findings = planner.probe(url, default_detectors())
    """

    def __init__(self, engine: ProbeEngine, config: ScanConfig,
                 settings: Optional[ScanSettings] = None,
                 caps: Optional[Capabilities] = None,
                 budget: Optional[BudgetGate] = None,
                 rng: Optional[random.Random] = None,
                 logger=None):
        if config is None:
            raise ValueError("config is required")
        self.engine = engine
        self.config = config
        self.settings = settings or ScanSettings()
        self.caps = caps or config.capabilities()
        self.logger = logger
        self.rng = rng or random.Random()
        self.on_query_only = resolve_active_on_query_only(config, self.settings)
        self.extra = self.settings.aggressive_extra and config.mode is Mode.AGGRESSIVE
        if budget is None:
            max_probes, max_seconds = resolve_budget(config, self.settings)
            budget = BudgetGate(max_probes, max_seconds)
        self.budget = budget

        self._seen: Dict[DedupeKey, bool] = {}
        self._seen_lock = threading.Lock()
        self._rng_lock = threading.Lock()

    # ── plan building ───────────────────────────────────────────

    def select_keys(self, url: str) -> List[str]:
        ranked = rank_keys(extract_param_keys(url), config=self.config, classes=self.caps.classes)
        with self._rng_lock:
            return select_params(ranked, param_cap(self.config, self.caps), self.rng)

    def _probes(self, probe_class: ProbeClass):
        probes = CATALOGUE.get(probe_class, ())
        if self.extra:
            probes = probes + EXTRA_CATALOGUE.get(probe_class, ())
        return probes

    def build_plans(self, url: str) -> List[ProbePlan]:
        caps = self.caps
        if not caps.any_active:
            return []

        keys = self.select_keys(url)
        or_candidates = [k for k in keys if is_redirect_like(k)]

        # open-redirect alone and nothing redirect-like: nothing to do here
        if caps.open_redirect_only and not or_candidates:
            if self.logger:
                self.logger.debug(f"skip active (redirect-only, no redirect-like param): {url}")
            return []

        has_query = bool(urlsplit(url).query) and bool(keys)
        block_param = self.on_query_only and not has_query

        plans: List[ProbePlan] = []

        def add(cls: ProbeClass, key: str, payload: str, sig: str, kind: ProbeKind):
            plans.append(ProbePlan(ISSUE_FOR_CLASS[cls].value, key or NO_PARAM, payload, sig, kind))

        # URL-level classes
        if caps.open_redirect:
            for probe in self._probes(ProbeClass.OPEN_REDIRECT):
                if or_candidates:
                    for k in or_candidates:
                        add(ProbeClass.OPEN_REDIRECT, k, probe.payload, probe.signature, ProbeKind.PARAM)
                else:
                    add(ProbeClass.OPEN_REDIRECT, NO_PARAM, probe.payload,
                        probe.signature + PAGE_HINT_SUFFIX, ProbeKind.PAGE)
        if caps.cors:
            for probe in self._probes(ProbeClass.CORS):
                add(ProbeClass.CORS, NO_PARAM, probe.payload, probe.signature, probe.kind)
        if caps.mixed_content and urlsplit(url).scheme.lower() == "https":
            for probe in self._probes(ProbeClass.MIXED_CONTENT):
                add(ProbeClass.MIXED_CONTENT, NO_PARAM, probe.payload, probe.signature, probe.kind)

        # parameter classes
        if block_param:
            if self.logger:
                self.logger.debug(f"param probes gated (query-only, no query): {url}")
        else:
            for cls in (ProbeClass.XSS, ProbeClass.SQLI, ProbeClass.PATH_TRAVERSAL, ProbeClass.SSTI):
                if not caps.enabled(cls):
                    continue
                for k in self._keys_for(cls, keys):
                    for probe in self._probes(cls):
                        add(cls, k, probe.payload, probe.signature, ProbeKind.PARAM)

        return self._dedupe_plans(url, plans)

    def _keys_for(self, cls: ProbeClass, keys: List[str]) -> List[str]:
        if cls is ProbeClass.SSTI:
            return list(keys)
        if cls is ProbeClass.PATH_TRAVERSAL:
            file_keys = [k for k in keys if is_file_like(k)]
            return rank_keys(file_keys or keys, cls, self.config)
        return rank_keys(keys, cls, self.config)

    @staticmethod
    def _dedupe_plans(url: str, plans: List[ProbePlan]) -> List[ProbePlan]:
        seen, out = set(), []
        for p in plans:
            ident = p.identity(url)
            if ident in seen:
                continue
            seen.add(ident)
            out.append(p)
        return out

    # ── execution ───────────────────────────────────────────────

    def probe(self, url: str, detectors: Sequence,
              cancel: Optional[threading.Event] = None) -> List[Finding]:
        """Plan for *url*, then run only the detector/parameter pairs the plans call for."""
        if not self.caps.any_active:
            return []
        plans = self.build_plans(url)
        if not plans:
            return []
        if self.logger:
            self.logger.debug(f"{len(plans)} probe plans for {url}")

        paramless_issues = {p.issue_key for p in plans if p.param_key == NO_PARAM}
        param_keys: List[str] = []
        issues_by_key: Dict[str, set] = {}
        for p in plans:
            if p.param_key == NO_PARAM:
                continue
            if p.param_key not in issues_by_key:
                param_keys.append(p.param_key)
                issues_by_key[p.param_key] = set()
            issues_by_key[p.param_key].add(p.issue_key)

        paramless = [d for d in detectors if _issue_key(d) in paramless_issues]
        pairs: List[Tuple[object, str]] = []
        for key in param_keys:
            for d in detectors:
                if _issue_key(d) in issues_by_key[key]:
                    pairs.append((d, key))
        return self._run_passes(self.config, url, paramless, pairs, cancel)

    def run(self, config: ScanConfig, url: str, candidate_params: Optional[Sequence[str]],
            detectors: Sequence, cancel: Optional[threading.Event] = None) -> List[Finding]:
        """
        Paramless pass over every enabled detector, then every parameter-aware
        detector per selected key. candidate_params=None takes the keys
        from the URL's query.

        Detectors of a disabled probe class never run. With open-redirect as
        the only class and no redirect-like key there is nothing to do, and
        the query-only gate drops parameter classes on URLs without a query.
        Plain callables carry no class and only follow the query-only gate.
        """
        if config is None or url is None or detectors is None:
            raise ValueError("config, url and detectors are required")
        caps = self.caps
        if not caps.any_active:
            return []

        if candidate_params is None:
            keys = self.select_keys(url)
        else:
            ranked = rank_keys([k for k in dict.fromkeys(candidate_params) if k],
                               config=config, classes=caps.classes)
            with self._rng_lock:
                keys = select_params(ranked, param_cap(config, caps), self.rng)

        if caps.open_redirect_only and not any(is_redirect_like(k) for k in keys):
            if self.logger:
                self.logger.debug(f"skip active (redirect-only, no redirect-like param): {url}")
            return []

        enabled = {ISSUE_FOR_CLASS[c].value for c in caps.classes}
        detectors = [d for d in detectors if _issue_key(d) is None or _issue_key(d) in enabled]
        if self.on_query_only and not urlsplit(url).query:
            if self.logger:
                self.logger.debug(f"param probes gated (query-only, no query): {url}")
            detectors = [d for d in detectors if not _needs_param_class(d)]

        param_aware = [d for d in detectors if getattr(d, "needs_param", True)]
        pairs = [(d, k) for k in keys for d in param_aware]
        return self._run_passes(config, url, detectors, pairs, cancel)

    def _run_passes(self, config: ScanConfig, url: str, paramless: Sequence,
                    pairs: Sequence[Tuple[object, str]],
                    cancel: Optional[threading.Event] = None) -> List[Finding]:
        found: List[Finding] = []

        for d in paramless:
            _check(cancel, url)
            if not self.budget.try_consume():
                self._budget_spent(url)
                return found
            self._invoke(config, url, d, None, found)

        for d, key in pairs:
            _check(cancel, url)
            if not self.budget.try_consume():
                self._budget_spent(url)
                return found
            self._invoke(config, url, d, key, found)

        return found

    def _invoke(self, config: ScanConfig, url: str, detector, param_key: Optional[str],
                found: List[Finding]):
        detect = getattr(detector, "detect", detector)
        try:
            finding = detect(self.engine, config, url, param_key)
        except Exception as e:
            if self.logger:
                name = getattr(detector, "name", type(detector).__name__)
                self.logger.debug(f"detector {name} failed on {url} [{param_key or NO_PARAM}]: {e!r}")
            return
        if finding is None:
            return
        if self._claim(url, param_key, finding):
            found.append(finding)
            if self.logger:
                self.logger.finding(finding.severity.value, finding.title, url,
                                    param_key or NO_PARAM, finding.payload, finding.status_code)

    def _claim(self, url: str, param_key: Optional[str], finding: Finding) -> bool:
        key = DedupeKey.of(url, param_key, finding.issue_type, finding.signal)
        with self._seen_lock:
            if key in self._seen:
                return False
            self._seen[key] = True
            return True

    def _budget_spent(self, url: str):
        if self.logger:
            self.logger.debug(f"probe budget exhausted, stopping at {url}")
