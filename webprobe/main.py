import argparse
import signal
import sys

from webprobe.checkers.registry import default_detectors
from webprobe.core.config import ScanConfig, ScanSettings
from webprobe.core.engine import HttpxProbeEngine
from webprobe.core.exceptions import ConfigurationError
from webprobe.core.http import HttpxAnalyzer
from webprobe.core.planner import ProbePlanner
from webprobe.core.scheduler import ScanScheduler
from webprobe.core.seeds import RobotsSeedFilter, StaticSeedCrawler
from webprobe.reporters.console import Log
from webprobe.robots.cache import HttpRobotsFetcher, RobotsPolicyCache


def _read_seeds(args) -> list:
    urls = list(args.urls)
    if args.file:
        with open(args.file, encoding="utf-8") as fh:
            urls += [line.strip() for line in fh if line.strip() and not line.startswith("#")]
    return urls


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Web vulnerability scanner (active probing core)")
    p.add_argument("urls", nargs="*", help="Seed URLs")
    p.add_argument("-f", "--file", help="File with one seed URL per line")
    p.add_argument("--mode", default="safe", type=str.lower,
                   choices=["safe", "safe-plus", "aggressive-lite", "aggressive"])
    p.add_argument("--rps", type=int, default=10, help="Passive requests per second (0 = unlimited)")
    p.add_argument("-c", "--concurrency", type=int, default=4)
    p.add_argument("--timeout", type=float, default=10.0)
    p.add_argument("--checks", help="Comma separated subset: xss,sqli,cors,open_redirect,lfi,ssti,mixed_content")
    p.add_argument("--max-params", type=int, default=3)
    p.add_argument("--query-only", action="store_true", default=None,
                   help="Parameter probes only on URLs with a query string")
    p.add_argument("--proxy", help="Proxy (e.g. http://127.0.0.1:8080)")
    p.add_argument("--user-agent", default="WebProbe/1.0")
    p.add_argument("--no-robots", action="store_true", help="Ignore robots.txt")
    p.add_argument("-v", "--verbose", action="count", default=1,
                   help="-v, -vv")
    p.add_argument("-q", "--quiet", action="store_true")
    return p


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    log = Log(verbose=0 if args.quiet else args.verbose)

    try:
        config = ScanConfig(
            mode=args.mode,
            rps=args.rps,
            concurrency=args.concurrency,
            timeout_s=args.timeout,
            max_params_per_url=args.max_params,
            enabled_checks=[c for c in args.checks.split(",") if c.strip()] if args.checks else None,
            active_on_query_only=args.query_only,
            respect_robots=not args.no_robots,
            user_agent=args.user_agent,
            proxy=args.proxy,
        ).validate()
        settings = ScanSettings()
        urls = _read_seeds(args)
    except (ConfigurationError, OSError) as e:
        log.fail(str(e))
        return 2

    if not urls:
        log.fail("no seed URLs given")
        return 2

    crawler = StaticSeedCrawler(urls, logger=log)
    fetcher = None
    if config.respect_robots:
        fetcher = HttpRobotsFetcher(user_agent=config.user_agent, timeout=config.timeout_s, logger=log)
        robots = RobotsPolicyCache(fetcher, settings=settings, logger=log)
        crawler = RobotsSeedFilter(crawler, robots, user_agent=config.user_agent, logger=log)

    analyzer = HttpxAnalyzer(config, logger=log)
    engine = None
    planner = None
    caps = config.capabilities()
    if caps.any_active:
        engine = HttpxProbeEngine(config, logger=log)
        planner = ProbePlanner(engine, config, settings=settings, caps=caps, logger=log)

    scheduler = ScanScheduler(
        config, crawler, analyzer,
        planner=planner,
        detectors=default_detectors(extra=planner.extra if planner else False),
        settings=settings,
        caps=caps,
        logger=log,
    )
    previous = signal.signal(signal.SIGINT, lambda *_: scheduler.cancel())

    try:
        report = scheduler.run()
    finally:
        signal.signal(signal.SIGINT, previous)
        analyzer.close()
        if engine:
            engine.close()
        if fetcher:
            fetcher.close()

    if report.cancelled:
        log.warn("scan cancelled, partial results")
    log.ok(f"{len(report.findings)} findings on {report.pages_scanned}/{report.seeds} pages")
    log.summary(report.findings)
    return 1 if report.cancelled else 0


if __name__ == "__main__":
    sys.exit(main())
