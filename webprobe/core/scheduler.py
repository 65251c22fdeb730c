"""
Scan run loop.

collecting-seeds -> scheduling -> draining -> done

Seeds come from a Crawler, minus static assets and the optional global /
per-host seed caps. Each seed becomes one task in a fixed worker pool with a
bounded backlog (2x the pool); the submitting thread blocks while the
backlog is full. A task rate-limits, fetches the page with retries, runs
the passive signature scan and, when the page is eligible, takes an active
token and hands the URL to the ProbePlanner.

A failing task is logged and excluded. Cancellation is cooperative: every
checkpoint raises ScanCancelled, and run() reports it as
ScanReport.cancelled with the findings gathered so far.
"""

import random
import threading
import time
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from webprobe.core.config import Capabilities, Gate, ScanConfig, ScanSettings, resolve_gate
from webprobe.core.exceptions import ScanCancelled
from webprobe.core.http import CancellableSleeper, CountingRetryPolicy, DefaultRetryPolicy, HttpAnalyzer
from webprobe.core.models import Finding, ScanStats, Snapshot
from webprobe.core.planner import ProbePlanner, has_hint, has_redirect_like_param
from webprobe.core.ratelimit import RateLimiter
from webprobe.core.seeds import Crawler, host_of, is_static
from webprobe.core.signatures import SignatureScanner

DRAIN_TIMEOUT_S = 30.0
BACKLOG_FACTOR = 2

ProgressListener = Callable[[float, str, int, int], None]


class ScanPhase(str, Enum):
    IDLE = "idle"
    COLLECTING_SEEDS = "collecting-seeds"
    SCHEDULING = "scheduling"
    DRAINING = "draining"
    DONE = "done"


@dataclass
class ScanReport:
    findings: List[Finding] = field(default_factory=list)
    cancelled: bool = False
    pages_scanned: int = 0
    failed_pages: int = 0
    seeds: int = 0
    stats: Optional[Snapshot] = None


class CancelToken:
    """Shared cancellation flag, checked at every suspension point."""

    def __init__(self):
        self.event = threading.Event()

    def cancel(self):
        self.event.set()

    @property
    def cancelled(self) -> bool:
        return self.event.is_set()

    def check(self, where: str = ""):
        if self.event.is_set():
            raise ScanCancelled(details={"where": where} if where else None)


class _Counter:
    def __init__(self):
        self._lock = threading.Lock()
        self.value = 0

    def add(self, n: int = 1) -> int:
        with self._lock:
            self.value += n
            return self.value


class ScanScheduler:
    """
    Usage:
        scheduler = ScanScheduler(config, StaticSeedCrawler(urls), HttpxAnalyzer(config),
                                  planner=ProbePlanner(engine, config), detectors=default_detectors(),
                                  logger=log)
        report = scheduler.run()
    """

    def __init__(self, config: ScanConfig, crawler: Crawler, analyzer: HttpAnalyzer, *,
                 planner: Optional[ProbePlanner] = None,
                 detectors: Sequence = (),
                 scanner: Optional[SignatureScanner] = None,
                 settings: Optional[ScanSettings] = None,
                 caps: Optional[Capabilities] = None,
                 gate: Optional[Gate] = None,
                 passive_limiter: Optional[RateLimiter] = None,
                 active_limiter: Optional[RateLimiter] = None,
                 cancel: Optional[CancelToken] = None,
                 progress: Optional[ProgressListener] = None,
                 retry_policy: Callable[[], object] = DefaultRetryPolicy,
                 rng: Optional[random.Random] = None,
                 logger=None):
        if config is None or crawler is None or analyzer is None:
            raise ValueError("config, crawler and analyzer are required")
        self.config = config.validate()
        self.crawler = crawler
        self.analyzer = analyzer
        self.planner = planner
        self.detectors = list(detectors)
        self.scanner = scanner or SignatureScanner()
        self.settings = settings or ScanSettings()
        self.caps = caps or config.capabilities()
        self.gate = gate or resolve_gate(config, self.caps, self.settings)
        self.passive_limiter = passive_limiter or RateLimiter(config.rps, name="passive")
        self.active_limiter = active_limiter or RateLimiter(self.gate.active_rps, name="active")
        self.cancel_token = cancel or CancelToken()
        self.progress = progress
        self.retry_policy = retry_policy
        self.rng = rng or random.Random()
        self.logger = logger

        self.stats = ScanStats()
        self.phase = ScanPhase.IDLE
        self._page_count = _Counter()
        self._done_pages = _Counter()
        self._in_flight = _Counter()
        self._lock = threading.Lock()
        self._active_total = 0
        self._active_per_host: Dict[str, int] = {}

    # ── public API ──────────────────────────────────────────────

    def cancel(self):
        self.cancel_token.cancel()

    def snapshot(self) -> Snapshot:
        return self.stats.snapshot()

    def run(self) -> ScanReport:
        cc = self.config.concurrency
        if self.logger:
            self.logger.info(f"Scan start mode={self.config.mode.value} rps={self.config.rps} "
                             f"cc={cc} active_rps={self.gate.active_rps}")

        self.phase = ScanPhase.COLLECTING_SEEDS
        self._notify(0.0, "crawl", 0, -1)
        try:
            seeds = self.collect_seeds()
        except ScanCancelled:
            return self._finish(ScanReport(cancelled=True))

        total = len(seeds)
        if total == 0:
            self._notify(1.0, "export", 0, 0)
            if self.logger:
                self.logger.info("Scan done: no seeds")
            return self._finish(ScanReport())

        self.phase = ScanPhase.SCHEDULING
        self._notify(0.0, "scan", 0, total)

        executor = ThreadPoolExecutor(max_workers=cc, thread_name_prefix="scan-worker")
        slots = threading.BoundedSemaphore(cc + cc * BACKLOG_FACTOR)
        futures: List[Future] = []
        cancelled = False
        try:
            for url in seeds:
                self._acquire_slot(slots)
                fut = executor.submit(self._task, url, total)
                fut.add_done_callback(lambda _f: slots.release())
                futures.append(fut)
        except ScanCancelled:
            cancelled = True

        self.phase = ScanPhase.DRAINING
        report = self._drain(executor, futures)
        report.cancelled = report.cancelled or cancelled or self.cancel_token.cancelled
        report.seeds = total

        self._notify(1.0, "export", self._done_pages.value, total)
        if self.logger:
            self.logger.info(f"Scan done: pages={report.pages_scanned} findings={len(report.findings)} "
                             f"failed={report.failed_pages} cancelled={report.cancelled}")
        return self._finish(report)

    # ── seeds ───────────────────────────────────────────────────

    def collect_seeds(self) -> List[str]:
        max_seeds = self.settings.crawl_max_seeds
        per_host = self.settings.crawl_max_per_host
        per_host_count: Dict[str, int] = {}
        seeds: List[str] = []

        for url in self.crawler.crawl_seeds():
            self.cancel_token.check("collecting seeds")
            if max_seeds > 0 and len(seeds) >= max_seeds:
                break
            host = host_of(url)
            if per_host > 0 and per_host_count.get(host, 0) >= per_host:
                continue
            if is_static(url):
                continue
            seeds.append(url)
            per_host_count[host] = per_host_count.get(host, 0) + 1

        if self.logger:
            self.logger.info(f"Collected {len(seeds)} seeds")
        return seeds

    # ── active eligibility ──────────────────────────────────────

    def should_active_probe(self, url: str) -> bool:
        if is_static(url):
            return False
        caps = self.caps
        if not caps.any_active:
            return False

        allow = caps.open_redirect or caps.any_paramless_class
        if allow and caps.open_redirect_only and not has_redirect_like_param(url):
            allow = False

        if caps.any_param_class and not allow:
            has_query = "?" in url and bool(url.split("?", 1)[1].split("#", 1)[0])
            if self.gate.on_query_only and not has_query:
                return False
            if has_query and not has_hint(url, self.config):
                return False
            allow = True

        if not allow:
            return False

        if self._page_count.value + 1 > self.gate.first_pages:
            return False

        if self.gate.sample_rate < 1.0:
            with self._lock:
                roll = self.rng.random()
            if roll > self.gate.sample_rate:
                return False

        return self._reserve(url)

    def _reserve(self, url: str) -> bool:
        """Take one total and one per-host active slot, both or neither."""
        total_max = self.gate.max_active_total
        host_max = self.gate.max_active_per_host
        host = host_of(url)
        with self._lock:
            if total_max > 0 and self._active_total >= total_max:
                return False
            used = self._active_per_host.get(host, 0)
            if host_max > 0 and used >= host_max:
                return False
            self._active_total += 1
            self._active_per_host[host] = used + 1
            return True

    # ── worker ──────────────────────────────────────────────────

    def _task(self, url: str, total: int) -> List[Finding]:
        token = self.cancel_token
        token.check("task start")
        self.passive_limiter.acquire(token.event)

        cur = self._in_flight.add(1)
        self.stats.observe_concurrency(cur)
        t0 = time.monotonic()
        policy = CountingRetryPolicy(self.retry_policy())
        try:
            token.check("before analyze")
            if self.logger:
                self.logger.debug(f"HTTP analyze: {url}")
            resp = self.analyzer.analyze_with_retry(url, policy, CancellableSleeper(token.event))
            token.check("after analyze")

            found = list(self.scanner.scan(resp))

            if self.planner is not None and self.should_active_probe(url):
                self.active_limiter.acquire(token.event)
                active = self.planner.probe(url, self.detectors, cancel=token.event)
                token.check("after active")
                if active and self.logger:
                    self.logger.info(f"Active probe {url}: {len(active)} hits")
                found.extend(active)

            n = self._page_count.add(1)
            if self.logger:
                self.logger.info(f"Scanned {url} (page #{n}) -> issues={len(found)}")
            done = self._done_pages.add(1)
            self._notify(min(1.0, done / total), "scan", done, total)
            return found
        finally:
            retries = policy.retry_count
            self.stats.add_attempts(1 + retries)
            self.stats.add_retries(retries)
            self.stats.add_wall_time_ms(int((time.monotonic() - t0) * 1000))
            left = self._in_flight.add(-1)
            self.stats.observe_concurrency(left)

    # ── internals ───────────────────────────────────────────────

    def _acquire_slot(self, slots: threading.BoundedSemaphore):
        while True:
            self.cancel_token.check("submitting")
            if slots.acquire(timeout=0.05):
                return

    def _drain(self, executor: ThreadPoolExecutor, futures: List[Future]) -> ScanReport:
        report = ScanReport()
        try:
            for fut in futures:
                if self.cancel_token.cancelled:
                    # queued tasks never start
                    executor.shutdown(wait=False, cancel_futures=True)
                try:
                    found = fut.result()
                except (ScanCancelled, CancelledError):
                    report.cancelled = True
                    continue
                except Exception as e:
                    report.failed_pages += 1
                    if self.logger:
                        self.logger.warn(f"Scan task failed: {type(e).__name__}: {e}")
                    continue
                report.findings.extend(found)
                report.pages_scanned += 1
        finally:
            executor.shutdown(wait=False, cancel_futures=self.cancel_token.cancelled)
            wait(futures, timeout=DRAIN_TIMEOUT_S)
        return report

    def _notify(self, progress: float, phase: str, done: int, total: int):
        if self.progress is None:
            return
        try:
            self.progress(progress, phase, done, total)
        except Exception as e:
            if self.logger:
                self.logger.debug(f"progress listener failed: {e!r}")

    def _finish(self, report: ScanReport) -> ScanReport:
        self.phase = ScanPhase.DONE
        report.stats = self.stats.snapshot()
        if self.logger:
            self.logger.stats(report.stats)
        return report
