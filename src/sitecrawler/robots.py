"""robots.txt access rules and in-page robots directives."""

import logging
from dataclasses import dataclass, field
from urllib.parse import urljoin

import httpx
from robotexclusionrulesparser import RobotExclusionRulesParser

logger = logging.getLogger(__name__)

ALLOW_ALL = "User-agent: *\nAllow: /\n"
DISALLOW_ALL = "User-agent: *\nDisallow: /\n"


class RobotsFile:
    """Parsed robots.txt of a single site."""

    def __init__(self, robots_txt: str = ALLOW_ALL):
        self._parser = RobotExclusionRulesParser()
        self._parser.parse(robots_txt)

    @classmethod
    async def from_url(cls, client: httpx.AsyncClient, base_url: str) -> "RobotsFile":
        """Fetch and parse robots.txt for the site at base_url.

        Authorization failures disallow the whole site; a missing file,
        any other status or a transport error allows everything.
        """
        robots_url = urljoin(base_url, "/robots.txt")
        try:
            resp = await client.get(robots_url)
        except httpx.HTTPError as e:
            logger.warning("Could not read %s (%s), allowing all URLs.", robots_url, e)
            return cls(ALLOW_ALL)

        if resp.status_code in (401, 403):
            logger.debug("%s returned %d, disallowing all URLs.", robots_url, resp.status_code)
            return cls(DISALLOW_ALL)
        if 200 <= resp.status_code <= 299:
            return cls(resp.text)

        logger.debug("%s returned %d, allowing all URLs.", robots_url, resp.status_code)
        return cls(ALLOW_ALL)

    def is_allowed(self, url: str, user_agent: str) -> bool:
        return self._parser.is_allowed(user_agent, url)

    def crawl_delay(self, user_agent: str) -> float | None:
        """Crawl-delay in seconds declared for user_agent, if any."""
        delay = self._parser.get_crawl_delay(user_agent)
        return float(delay) if delay is not None else None

    @property
    def sitemaps(self) -> list[str]:
        return list(self._parser.sitemaps)


NO_INDEX = {"noindex", "none"}
NO_FOLLOW = {"nofollow", "none"}
KNOWN_DIRECTIVES = {
    "all", "index", "follow", "noindex", "nofollow", "none", "noarchive",
    "nosnippet", "notranslate", "noimageindex", "noodp", "noydir",
    "unavailable_after", "max-snippet", "max-image-preview", "max-video-preview",
    "indexifembedded",
}


@dataclass
class RobotsPageDirectives:
    """Directives from X-Robots-Tag headers and robots meta tags.

    Directives are kept per user agent; "*" holds the unscoped ones.
    """

    directives: dict[str, set[str]] = field(default_factory=dict)

    @classmethod
    def from_rules(cls, rules: list[str]) -> "RobotsPageDirectives":
        page = cls()
        for rule in rules:
            agent = "*"
            for token in rule.split(","):
                token = token.strip().lower()
                if not token:
                    continue
                name, sep, rest = token.partition(":")
                name = name.strip()
                if sep and name not in KNOWN_DIRECTIVES:
                    # "googlebot: noindex" scopes the rest of this rule
                    agent = name
                    token = rest.strip()
                    if not token:
                        continue
                else:
                    token = name
                page.directives.setdefault(agent, set()).add(token)
        return page

    def _applicable(self, user_agent: str) -> set[str]:
        user_agent = user_agent.lower()
        found: set[str] = set()
        for agent, values in self.directives.items():
            if agent == "*" or agent in user_agent:
                found |= values
        return found

    def can_index(self, user_agent: str) -> bool:
        return not (self._applicable(user_agent) & NO_INDEX)

    def can_follow_links(self, user_agent: str) -> bool:
        return not (self._applicable(user_agent) & NO_FOLLOW)
