"""Probe payload catalogue shared by the planner and the default detectors."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple

from webprobe.core.config import ProbeClass
from webprobe.core.models import IssueType


class ProbeKind(str, Enum):
    PARAM = "PARAM"      # injected into a query parameter
    HEADER = "HEADER"    # sent as a request header
    PAGE = "PAGE"        # inspects the page itself


@dataclass(frozen=True)
class Probe:
    payload: str
    signature: str
    kind: ProbeKind = ProbeKind.PARAM


# External host used to detect open redirects.
EXTERNAL_HOST = "wkai.example"
EXTERNAL_URL = f"https://{EXTERNAL_HOST}/"

XSS_MARKER = "WKAI"
SSTI_EXPECT = "49WKAI"

ISSUE_FOR_CLASS: Dict[ProbeClass, IssueType] = {
    ProbeClass.XSS: IssueType.XSS_REFLECTED,
    ProbeClass.SQLI: IssueType.SQLI_PATTERN,
    ProbeClass.PATH_TRAVERSAL: IssueType.PATH_TRAVERSAL,
    ProbeClass.SSTI: IssueType.SSTI,
    ProbeClass.OPEN_REDIRECT: IssueType.OPEN_REDIRECT,
    ProbeClass.CORS: IssueType.CORS_MISCONFIG,
    ProbeClass.MIXED_CONTENT: IssueType.MIXED_CONTENT,
}

CATALOGUE: Dict[ProbeClass, Tuple[Probe, ...]] = {
    ProbeClass.OPEN_REDIRECT: (
        Probe(EXTERNAL_URL, "host_ext"),
    ),
    ProbeClass.CORS: (
        Probe("Origin:https://evil.example", "origin_host", ProbeKind.HEADER),
        Probe("Origin:null", "origin_null", ProbeKind.HEADER),
        Probe("Origin:https://sub.evil.example", "origin_sub", ProbeKind.HEADER),
    ),
    ProbeClass.MIXED_CONTENT: (
        Probe("", "scan_https_asset", ProbeKind.PAGE),
    ),
    ProbeClass.XSS: (
        Probe(f"{XSS_MARKER}</div><svg/onload=confirm(1)>", "xss_polyglot_v1"),
    ),
    ProbeClass.SQLI: (
        Probe("'", "tick_only"),
    ),
    ProbeClass.PATH_TRAVERSAL: (
        Probe("../../../../../etc/passwd", "unix_passwd"),
        Probe("..%2f..%2f..%2f..%2f..%2fetc%2fpasswd", "unix_passwd_enc"),
    ),
    ProbeClass.SSTI: (
        Probe("{{7*7}}WKAI", "jinja_expr_v1"),
    ),
}

# Opt-in extra payloads for AGGRESSIVE.
EXTRA_CATALOGUE: Dict[ProbeClass, Tuple[Probe, ...]] = {
    ProbeClass.PATH_TRAVERSAL: (
        Probe("..%2F..%2Fwindows%2Fwin.ini", "win_ini_enc"),
    ),
    ProbeClass.SQLI: (
        Probe("'\")--", "tick_quote_comment"),
    ),
}

# Used when the redirect probe has no redirect-like parameter to target.
PAGE_HINT_SUFFIX = "_page_hint"


def origin_of(payload: str) -> str:
    """'Origin:https://evil.example' -> 'https://evil.example'"""
    _, _, value = payload.partition(":")
    return value.strip()
