"""Immutable robots policy for one host."""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from webprobe.robots.matcher import is_allowed, normalize_path
from webprobe.robots.parser import UserAgentGroup, parse_document, select_group


@dataclass(frozen=True)
class RobotsPolicy:
    groups: Dict[str, UserAgentGroup] = field(default_factory=dict)
    allow_all: bool = False
    sitemaps: Tuple[str, ...] = ()

    @classmethod
    def allow_all_policy(cls) -> "RobotsPolicy":
        return cls(allow_all=True)

    @classmethod
    def from_text(cls, body: Optional[str]) -> "RobotsPolicy":
        doc = parse_document(body)
        return cls(groups=doc.groups, sitemaps=doc.sitemaps)

    def group_for(self, user_agent: Optional[str]) -> UserAgentGroup:
        return select_group(self.groups, user_agent)

    def is_allowed(self, url: str, user_agent: Optional[str] = None) -> bool:
        if self.allow_all:
            return True
        return is_allowed(normalize_path(url), self.group_for(user_agent).rules)

    def crawl_delay(self, user_agent: Optional[str] = None) -> Optional[float]:
        if self.allow_all:
            return None
        return self.group_for(user_agent).crawl_delay
