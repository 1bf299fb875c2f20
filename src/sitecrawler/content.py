"""Content processing: links, canonical URI and robots rules from a fetched page."""

from typing import Protocol
from urllib.parse import urljoin, urlparse

from selectolax.parser import HTMLParser

from .models import CrawledContent, CrawlLink


class ContentProcessor(Protocol):
    """Protocol for content processors."""

    def parse(self, request_uri: str, headers: dict[str, str], content: str) -> CrawledContent:
        ...


def build_uri_from_href(request_uri: str, href: str | None, base_href: str = "") -> str | None:
    """Resolve href against <base href> and the request URI. Returns None for unusable hrefs."""
    if href is None:
        return None
    href = href.strip()
    if not href:
        return None

    base = urljoin(request_uri, base_href) if base_href else request_uri
    try:
        resolved = urljoin(base, href)
        # Invalid ports only surface when accessed
        urlparse(resolved).port
    except ValueError:
        return None
    return resolved


class DefaultContentProcessor:
    """Extract links, canonical URI and robots rules from HTML using selectolax."""

    def parse(self, request_uri: str, headers: dict[str, str], content: str) -> CrawledContent:
        headers = {name.lower(): value for name, value in headers.items()}
        content_type_header = headers.get("content-type")

        content_type = None
        charset = None
        if content_type_header:
            parts = content_type_header.split(";")
            content_type = parts[0].strip()
            for part in parts[1:]:
                part = part.strip()
                if part.lower().startswith("charset="):
                    charset = part.split("=", 1)[1].strip()
                    break

        tree = HTMLParser(content or "")

        page_robot_rules = []
        if "x-robots-tag" in headers:
            page_robot_rules.extend(headers["x-robots-tag"].split(","))

        for node in tree.css("head meta[name]"):
            if node.attributes.get("name", "").lower() == "robots":
                robots_content = node.attributes.get("content")
                if robots_content is not None:
                    page_robot_rules.append(robots_content)
                    break

        base_href = self._get_base_href(tree)

        return CrawledContent(
            content_type=content_type,
            character_set=charset,
            page_robot_rules=page_robot_rules,
            canonical_uri=self._get_canonical_uri(tree, request_uri, base_href),
            links=list(self._get_links(tree, request_uri, base_href)),
        )

    def _get_base_href(self, tree: HTMLParser) -> str:
        node = tree.css_first("head base[href]")
        if node is None:
            return ""
        return node.attributes.get("href") or ""

    def _get_canonical_uri(self, tree: HTMLParser, request_uri: str, base_href: str) -> str | None:
        for node in tree.css("head link[rel]"):
            if (node.attributes.get("rel") or "").lower() == "canonical":
                return build_uri_from_href(request_uri, node.attributes.get("href"), base_href)
        return None

    def _get_links(self, tree: HTMLParser, request_uri: str, base_href: str):
        for node in tree.css("a[href]"):
            location = build_uri_from_href(request_uri, node.attributes.get("href"), base_href)
            if location is None:
                continue

            # Skip non-HTTP links
            if urlparse(location).scheme not in ("http", "https"):
                continue

            yield CrawlLink(
                location=location,
                title=node.attributes.get("title"),
                text=node.text(),
                relationship=node.attributes.get("rel"),
            )
