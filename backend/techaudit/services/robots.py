"""
robots.txt parsing.

Line oriented: `key: value` split on the first colon, `User-agent` selects the
group that subsequent Allow/Disallow/Crawl-delay lines apply to. Unknown
directives are skipped; malformed lines are collected as syntax errors.
"""
import logging
from dataclasses import dataclass, field
from typing import Any

from techaudit.core.url_safety import is_absolute_url

logger = logging.getLogger(__name__)

WILDCARD_AGENT = "*"
KNOWN_DIRECTIVES = {"user-agent", "disallow", "allow", "crawl-delay", "sitemap"}


@dataclass
class UserAgentGroup:
    user_agent: str
    disallow: list[str] = field(default_factory=list)
    allow: list[str] = field(default_factory=list)
    crawl_delay: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "disallow": list(self.disallow),
            "allow": list(self.allow),
            "crawl_delay": self.crawl_delay,
        }


@dataclass
class RobotsDirectiveSet:
    groups: dict[str, UserAgentGroup] = field(default_factory=dict)
    sitemaps: list[str] = field(default_factory=list)
    syntax_errors: list[str] = field(default_factory=list)
    directives_count: int = 0

    def group(self, user_agent: str) -> UserAgentGroup:
        if user_agent not in self.groups:
            self.groups[user_agent] = UserAgentGroup(user_agent=user_agent)
        return self.groups[user_agent]

    @property
    def disallowed_paths(self) -> list[str]:
        return _unique(path for g in self.groups.values() for path in g.disallow)

    @property
    def allowed_paths(self) -> list[str]:
        return _unique(path for g in self.groups.values() for path in g.allow)

    @property
    def crawl_delay(self) -> int | None:
        """Wildcard group's delay, else the first one declared."""
        wildcard = self.groups.get(WILDCARD_AGENT)
        if wildcard and wildcard.crawl_delay is not None:
            return wildcard.crawl_delay
        for g in self.groups.values():
            if g.crawl_delay is not None:
                return g.crawl_delay
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_agents": {ua: g.to_dict() for ua, g in self.groups.items()},
            "sitemaps": list(self.sitemaps),
            "disallowed_paths": self.disallowed_paths,
            "allowed_paths": self.allowed_paths,
            "crawl_delay": self.crawl_delay,
            "syntax_errors": list(self.syntax_errors),
            "directives_count": self.directives_count,
        }


def _unique(values) -> list[str]:
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def parse_robots_txt(content: str) -> RobotsDirectiveSet:
    directives = RobotsDirectiveSet()
    current_agent = WILDCARD_AGENT

    for line_number, raw_line in enumerate(content.lstrip("\ufeff").splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue

        if "#" in line:
            line = line.split("#", 1)[0].strip()

        if ":" not in line:
            directives.syntax_errors.append(f"Line {line_number}: Missing ':' separator")
            continue

        key, value = line.split(":", 1)
        key = key.strip().lower()
        value = value.strip()

        if key not in KNOWN_DIRECTIVES:
            logger.debug(f"Ignoring unknown robots.txt directive '{key}' on line {line_number}")
            continue

        directives.directives_count += 1

        if key == "user-agent":
            if not value:
                directives.syntax_errors.append(f"Line {line_number}: Empty user-agent")
                continue
            current_agent = value
            directives.group(current_agent)

        elif key == "disallow":
            # An empty Disallow means "allow everything" and adds no rule
            if value:
                directives.group(current_agent).disallow.append(value)

        elif key == "allow":
            if value:
                directives.group(current_agent).allow.append(value)

        elif key == "crawl-delay":
            if value.isascii() and value.isdigit():
                directives.group(current_agent).crawl_delay = int(value)
            else:
                directives.syntax_errors.append(f"Line {line_number}: Invalid crawl-delay value '{value}'")

        elif key == "sitemap":
            if is_absolute_url(value):
                if value not in directives.sitemaps:
                    directives.sitemaps.append(value)
            else:
                directives.syntax_errors.append(f"Line {line_number}: Invalid sitemap URL '{value}'")

    return directives
