"""Tests for the command line entry point and console logger."""

from webprobe.core.models import Finding, IssueType, Severity, Snapshot
from webprobe.main import build_parser, main
from webprobe.reporters.console import Log


class TestParser:
    def test_defaults(self):
        args = build_parser().parse_args(["https://h.test/"])
        assert args.urls == ["https://h.test/"]
        assert args.mode == "safe"
        assert args.query_only is None
        assert not args.no_robots

    def test_flags(self):
        args = build_parser().parse_args(["--mode", "aggressive-lite", "--checks", "lfi,ssti",
                                          "-c", "8", "--no-robots", "-vv", "https://h.test/"])
        assert args.mode == "aggressive-lite"
        assert args.checks == "lfi,ssti"
        assert args.concurrency == 8
        assert args.no_robots
        assert args.verbose == 3


class TestMain:
    def test_no_seeds(self, capsys):
        assert main(["--no-robots"]) == 2
        assert "no seed URLs" in capsys.readouterr().out

    def test_unknown_check(self, capsys):
        assert main(["--checks", "bogus", "https://h.test/"]) == 2
        assert "unknown check" in capsys.readouterr().out

    def test_static_only_seeds_finish_cleanly(self, capsys):
        assert main(["--no-robots", "https://h.test/app.js"]) == 0
        assert "0 findings" in capsys.readouterr().out

    def test_seed_file(self, tmp_path, capsys):
        seeds = tmp_path / "seeds.txt"
        seeds.write_text("# comment\nhttps://h.test/style.css\n\n")
        assert main(["--no-robots", "-f", str(seeds)]) == 0


class TestLog:
    def test_levels(self, capsys):
        log = Log(verbose=1)
        log.info("hello")
        log.debug("hidden")
        out = capsys.readouterr().out
        assert "hello" in out
        assert "hidden" not in out

    def test_stats_and_summary(self, capsys):
        log = Log(verbose=1)
        log.stats(Snapshot(10, 2, 4, 35))
        log.summary([
            Finding("https://h.test/", IssueType.MISSING_SECURITY_HEADER, Severity.LOW, "t"),
            Finding("https://h.test/?q=1", IssueType.XSS_REFLECTED, Severity.HIGH, "t", param="q"),
        ])
        out = capsys.readouterr().out
        assert "requests=10" in out
        assert out.index("xss_reflected") < out.index("missing_security_header")
