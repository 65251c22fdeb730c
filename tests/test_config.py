"""Tests for modes, capabilities, the resolved gate and budgets."""

import pytest

from webprobe.core.config import (Mode, ProbeClass, ScanConfig, ScanSettings, active_default_rps,
                                  parse_checks, resolve_active_on_query_only, resolve_budget,
                                  resolve_capabilities, resolve_gate)
from webprobe.core.exceptions import ConfigurationError


class TestMode:
    @pytest.mark.parametrize("raw,mode", [
        ("safe", Mode.SAFE),
        ("safe-plus", Mode.SAFE_PLUS),
        ("SAFE_PLUS", Mode.SAFE_PLUS),
        ("safeplus", Mode.SAFE_PLUS),
        ("aggressive-lite", Mode.AGGRESSIVE_LITE),
        ("agglite", Mode.AGGRESSIVE_LITE),
        ("Aggressive", Mode.AGGRESSIVE),
    ])
    def test_parse(self, raw, mode):
        assert Mode.parse(raw) is mode

    def test_parse_unknown(self):
        with pytest.raises(ConfigurationError):
            Mode.parse("yolo")

    def test_config_parses_mode(self):
        assert ScanConfig(mode="safe-plus").mode is Mode.SAFE_PLUS


class TestCapabilities:
    def test_safe_is_passive(self):
        caps = resolve_capabilities(Mode.SAFE)
        assert not caps.any_active
        assert caps.active_default_rps == 0

    def test_safe_plus_classes(self):
        caps = resolve_capabilities(Mode.SAFE_PLUS)
        assert caps.xss and caps.sqli and caps.cors and caps.open_redirect
        assert not caps.path_traversal and not caps.ssti and not caps.mixed_content

    def test_subset_intersects_mode(self):
        caps = resolve_capabilities(Mode.SAFE_PLUS, ["redirect", "ssti"])
        assert caps.classes == frozenset({ProbeClass.OPEN_REDIRECT})
        assert caps.open_redirect_only

    def test_aliases_and_unknown(self):
        assert parse_checks(["lfi", "or"]) == frozenset({ProbeClass.PATH_TRAVERSAL,
                                                         ProbeClass.OPEN_REDIRECT})
        with pytest.raises(ConfigurationError):
            parse_checks(["nope"])

    @pytest.mark.parametrize("mode,rps,expected", [
        (Mode.SAFE_PLUS, 10, 3),
        (Mode.SAFE_PLUS, 1, 2),
        (Mode.AGGRESSIVE_LITE, 10, 5),
        (Mode.AGGRESSIVE, 1, 4),
        (Mode.AGGRESSIVE, 50, 7),
        (Mode.SAFE, 10, 0),
    ])
    def test_active_default_rps(self, mode, rps, expected):
        assert active_default_rps(mode, rps) == expected


class TestScanConfig:
    def test_validate_rejects_bad_values(self):
        with pytest.raises(ConfigurationError):
            ScanConfig(concurrency=0).validate()
        with pytest.raises(ConfigurationError):
            ScanConfig(rps=-1).validate()
        with pytest.raises(ConfigurationError):
            ScanConfig(enabled_checks=["bogus"]).validate()

    def test_validate_returns_self(self):
        cfg = ScanConfig()
        assert cfg.validate() is cfg


class TestQueryOnlyPrecedence:
    def test_mode_default(self):
        assert resolve_active_on_query_only(ScanConfig(mode=Mode.SAFE_PLUS))
        assert not resolve_active_on_query_only(ScanConfig(mode=Mode.AGGRESSIVE))

    def test_config_beats_mode_default(self):
        cfg = ScanConfig(mode=Mode.SAFE_PLUS, active_on_query_only=False)
        assert not resolve_active_on_query_only(cfg)

    def test_global_beats_config(self):
        cfg = ScanConfig(mode=Mode.AGGRESSIVE, active_on_query_only=False)
        assert resolve_active_on_query_only(cfg, ScanSettings(active_on_query_only=True))

    def test_profile_beats_global(self):
        cfg = ScanConfig(mode=Mode.AGGRESSIVE)
        settings = ScanSettings(active_on_query_only=True,
                                profiles={"aggressive": {"active_on_query_only": False}})
        assert not resolve_active_on_query_only(cfg, settings)

    def test_other_profile_ignored(self):
        cfg = ScanConfig(mode=Mode.AGGRESSIVE)
        settings = ScanSettings(profiles={"safeplus": {"active_on_query_only": True}})
        assert not resolve_active_on_query_only(cfg, settings)


class TestGate:
    def test_defaults_per_mode(self):
        gate = resolve_gate(ScanConfig(mode=Mode.SAFE_PLUS, rps=10))
        assert gate.first_pages == 50
        assert gate.sample_rate == 1.0
        assert gate.active_rps == 3
        assert gate.max_active_total == 400
        assert gate.max_active_per_host == 60

        agg = resolve_gate(ScanConfig(mode=Mode.AGGRESSIVE))
        assert agg.first_pages == 200
        assert agg.max_active_total == 1000
        assert agg.max_active_per_host == 150

        safe = resolve_gate(ScanConfig(mode=Mode.SAFE))
        assert safe.sample_rate == 0.0

    def test_profile_then_global_then_default(self):
        settings = ScanSettings(active_sample=0.5, active_first_pages=9,
                                profiles={"safeplus": {"sample": 0.25}})
        plus = resolve_gate(ScanConfig(mode=Mode.SAFE_PLUS), settings=settings)
        assert plus.sample_rate == 0.25
        assert plus.first_pages == 9

        agg = resolve_gate(ScanConfig(mode=Mode.AGGRESSIVE), settings=settings)
        assert agg.sample_rate == 0.5

    def test_values_clamped(self):
        settings = ScanSettings(active_sample=7.0, active_first_pages=0, active_rps=-3)
        gate = resolve_gate(ScanConfig(mode=Mode.AGGRESSIVE), settings=settings)
        assert gate.sample_rate == 1.0
        assert gate.first_pages == 1
        assert gate.active_rps == 0

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("WEBPROBE_ACTIVE_FIRST_PAGES", "7")
        monkeypatch.setenv("WEBPROBE_ACTIVE_MAX_PER_HOST", "2")
        gate = resolve_gate(ScanConfig(mode=Mode.SAFE_PLUS))
        assert gate.first_pages == 7
        assert gate.max_active_per_host == 2


class TestBudget:
    @pytest.mark.parametrize("mode,expected", [
        (Mode.SAFE, (1, 1)),
        (Mode.SAFE_PLUS, (300, 30)),
        (Mode.AGGRESSIVE_LITE, (800, 60)),
        (Mode.AGGRESSIVE, (800, 60)),
    ])
    def test_mode_budgets(self, mode, expected):
        assert resolve_budget(ScanConfig(mode=mode)) == expected

    def test_settings_override(self):
        settings = ScanSettings(budget_max_probes=5, budget_max_seconds=2)
        assert resolve_budget(ScanConfig(mode=Mode.AGGRESSIVE), settings) == (5, 2)
