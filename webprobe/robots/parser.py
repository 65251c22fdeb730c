"""
robots.txt parser.

Supported directives: User-agent / Allow / Disallow / Crawl-delay / Sitemap
(keys are case-insensitive, anything else is skipped). Consecutive
User-agent lines open one group that shares the rules that follow; the
next User-agent line after any other directive starts a new group. Rules
seen before any User-agent line belong to '*'. The parser never raises.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from webprobe.robots.matcher import Rule, RuleKind, normalize_rule, specificity

UA_ALL = "*"
DEFAULT_UA = "webprobe"

_KV = re.compile(r"^\s*([A-Za-z-]+)\s*:\s*(.*?)\s*$")


@dataclass(frozen=True)
class UserAgentGroup:
    name: str
    rules: Tuple[Rule, ...] = ()
    crawl_delay: Optional[float] = None


@dataclass(frozen=True)
class RobotsDocument:
    groups: Dict[str, UserAgentGroup]
    sitemaps: Tuple[str, ...] = ()


@dataclass
class _Builder:
    rules: List[Rule] = field(default_factory=list)
    crawl_delay: Optional[float] = None


def compile_rule(text: str, kind: RuleKind) -> Optional[Rule]:
    """Normalized Rule, or None for an empty value."""
    pattern = normalize_rule(text)
    if not pattern:
        return None
    return Rule(kind=kind, pattern=pattern, specificity=specificity(pattern))


def _strip_comment(line: str) -> str:
    i = line.find("#")
    return line[:i] if i >= 0 else line


def _parse_delay(value: str) -> Optional[float]:
    try:
        delay = float(value)
    except ValueError:
        return None
    return delay if delay >= 0 else None


def parse_document(body: Optional[str]) -> RobotsDocument:
    by_ua: Dict[str, _Builder] = {}
    sitemaps: List[str] = []
    current: List[str] = []
    last_was_ua = False

    def ensure_agents():
        if not current:
            current.append(UA_ALL)
            by_ua.setdefault(UA_ALL, _Builder())

    for raw in (body or "").splitlines():
        line = _strip_comment(raw).strip()
        if not line:
            continue
        m = _KV.match(line)
        if not m:
            continue
        key, val = m.group(1).lower(), m.group(2).strip()

        if key == "user-agent":
            ua = (val or UA_ALL).lower()
            if not last_was_ua:
                current = []
            current.append(ua)
            by_ua.setdefault(ua, _Builder())
            last_was_ua = True
        elif key in ("allow", "disallow"):
            ensure_agents()
            kind = RuleKind.ALLOW if key == "allow" else RuleKind.DENY
            rule = compile_rule(val, kind)
            if rule is not None:
                for ua in current:
                    by_ua[ua].rules.append(rule)
            last_was_ua = False
        elif key == "crawl-delay":
            ensure_agents()
            delay = _parse_delay(val)
            if delay is not None:
                for ua in current:
                    by_ua[ua].crawl_delay = delay
            last_was_ua = False
        elif key == "sitemap":
            # not group-bound
            if val:
                sitemaps.append(val)
            last_was_ua = False
        else:
            last_was_ua = False

    by_ua.setdefault(UA_ALL, _Builder())
    groups = {ua: UserAgentGroup(ua, tuple(b.rules), b.crawl_delay)
              for ua, b in by_ua.items()}
    return RobotsDocument(groups=groups, sitemaps=tuple(sitemaps))


def parse(body: Optional[str]) -> Dict[str, UserAgentGroup]:
    """Lowercased user-agent -> group. Always contains '*'."""
    return parse_document(body).groups


def select_group(groups: Dict[str, UserAgentGroup], user_agent: Optional[str]) -> UserAgentGroup:
    """Exact (case-insensitive) match, else '*', else an empty allow-all group."""
    ua = (user_agent or "").strip().lower() or DEFAULT_UA
    group = groups.get(ua)
    if group is not None:
        return group
    star = groups.get(UA_ALL)
    if star is not None:
        return star
    return UserAgentGroup(ua)
