import threading
from datetime import datetime
from typing import List

from colorama import init as colorama_init, Fore, Style

from webprobe.core.models import Finding, Snapshot

colorama_init(autoreset=True)

_SEV_COLOR = {"critical": Fore.RED, "high": Fore.RED, "medium": Fore.YELLOW,
              "low": Fore.GREEN, "info": Fore.WHITE}


class Log:
    """
    Console logger shared by every worker thread.
    verbose: 0 = warnings only, 1 = progress, 2 = debug + raw probe requests.
    """

    def __init__(self, verbose: int = 1):
        self.verbose = verbose
        self.PAY = Fore.MAGENTA
        self._lock = threading.Lock()

    def _time(self):
        return datetime.now().strftime("[%H:%M:%S]")

    def _fmt(self, level: str, color: str):
        return f"{self._time()} {color}[{level}]{Style.RESET_ALL}"

    def _emit(self, line: str):
        with self._lock:
            print(line, flush=True)

    def info(self, msg: str):
        if self.verbose >= 1:
            self._emit(f"{self._fmt('INFO', Fore.CYAN)} {msg}")

    def warn(self, msg: str):
        if self.verbose >= 0:
            self._emit(f"{self._fmt('WARNING', Fore.YELLOW)} {msg}")

    def ok(self, msg: str):
        self._emit(f"{self._fmt('SUCCESS', Fore.GREEN)} {msg}")

    def fail(self, msg: str):
        self._emit(f"{self._fmt('FAIL', Fore.RED)} {msg}")

    def debug(self, msg: str):
        if self.verbose >= 2:
            self._emit(f"{self._fmt('DEBUG', Fore.MAGENTA)} {msg}")

    def finding(self, sev: str, vuln: str, loc: str, param: str, payload: str, code: int):
        sev_col = _SEV_COLOR.get(sev, Fore.WHITE)
        self._emit(f"{self._fmt(sev.upper(), sev_col)} {vuln} "
                   f"{loc} [{param}] = {Fore.MAGENTA}{payload}{Style.RESET_ALL} "
                   f"{Style.DIM}(HTTP {code}){Style.RESET_ALL}")

    def stats(self, snap: Snapshot):
        if self.verbose >= 1:
            self._emit(f"{self._fmt('STATS', Fore.BLUE)} requests={snap.requests_total} "
                       f"retries={snap.retries_total} max_cc={snap.max_observed_concurrency} "
                       f"avg_ms={snap.avg_latency_ms}")

    def summary(self, findings: List[Finding]):
        """One line per finding, worst first."""
        order = ["critical", "high", "medium", "low", "info"]
        ranked = sorted(findings, key=lambda f: order.index(f.severity.value)
                        if f.severity.value in order else len(order))
        for f in ranked:
            col = _SEV_COLOR.get(f.severity.value, Fore.WHITE)
            param = f" [{f.param}]" if f.param else ""
            self._emit(f"  {col}{f.severity.value.upper():<8}{Style.RESET_ALL} "
                       f"{f.issue_type.value:<24} {f.url}{param}")
