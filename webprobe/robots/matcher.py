"""
Robots rule matching.

Paths are compared in their raw form: nothing is decoded, percent-encoded
triplets are only case-normalized to upper hex, on both the rule and the
path. Priority:
  1) the most specific matching rule wins ('*' and a trailing '$' don't count)
  2) on equal specificity, Allow wins
  3) no matching rule means allowed
A plain rule is a prefix that must end on a segment boundary (end of path or
'/') unless it already ends in '/'. A trailing '$' anchors at end of path.
"""

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Iterable, Optional
from urllib.parse import urlsplit

_PCT = re.compile(r"%[0-9A-Fa-f]{2}")


class RuleKind(str, Enum):
    ALLOW = "allow"
    DENY = "disallow"


@dataclass(frozen=True)
class Rule:
    kind: RuleKind
    pattern: str
    specificity: int

    @property
    def allow(self) -> bool:
        return self.kind is RuleKind.ALLOW


# ── normalization ──────────────────────────────────────────────

def uppercase_pct_hex(s: str) -> str:
    """'%2f' -> '%2F'; everything else untouched."""
    return _PCT.sub(lambda m: m.group(0).upper(), s)


def normalize_path(url_or_path: str) -> str:
    """Raw (undecoded) path of a URL, query and fragment dropped."""
    raw = url_or_path or ""
    if "://" in raw or raw.startswith("//"):
        raw = urlsplit(raw).path
    else:
        raw = raw.split("#", 1)[0].split("?", 1)[0]
    return uppercase_pct_hex(raw or "/")


def normalize_rule(value: str) -> str:
    r = (value or "").strip()
    if not r:
        return r
    anchored = r.endswith("$")
    if anchored:
        r = r[:-1]
    r = uppercase_pct_hex(r)
    return r + "$" if anchored else r


def specificity(pattern: str) -> int:
    p = pattern[:-1] if pattern.endswith("$") else pattern
    return len(p.replace("*", ""))


# ── matching ───────────────────────────────────────────────────

@lru_cache(maxsize=1024)
def _wildcard_regex(body: str, anchored: bool):
    parts = [re.escape(chunk) for chunk in body.split("*")]
    return re.compile("^" + ".*".join(parts) + ("$" if anchored else ""), re.S)


def matches(path: str, pattern: str) -> bool:
    """Does a normalized rule pattern match a normalized path?"""
    r = (pattern or "").strip()
    if not r:
        return False
    anchored = r.endswith("$")
    if anchored:
        r = r[:-1]

    if "*" in r:
        # prefix semantics: the regex only has to match from the start
        return _wildcard_regex(r, anchored).match(path) is not None

    if anchored:
        return path == r
    if r.endswith("/"):
        return path.startswith(r)
    if not path.startswith(r):
        return False
    return len(path) == len(r) or path[len(r)] == "/"


def best_match(path: str, rules: Iterable[Rule]) -> Optional[Rule]:
    best = None
    for rule in rules:
        if not matches(path, rule.pattern):
            continue
        if best is None or rule.specificity > best.specificity:
            best = rule
        elif rule.specificity == best.specificity and rule.allow and not best.allow:
            best = rule
    return best


def is_allowed(path: str, rules: Iterable[Rule]) -> bool:
    """Verdict for an already normalized path against one group's rules."""
    rule = best_match(path, rules)
    return rule is None or rule.allow
