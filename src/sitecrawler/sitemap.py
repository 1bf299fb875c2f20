"""Sitemap discovery for crawl seeds."""

import gzip
import logging
from urllib.parse import urljoin
from xml.etree import ElementTree as ET

import httpx

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"


def _local_name(tag: str) -> str:
    """Strip the XML namespace from a tag."""
    return tag.rsplit("}", 1)[-1]


class SitemapReader:
    """Reads sitemaps and sitemap indexes, returning the page URLs they list."""

    def __init__(self, client: httpx.AsyncClient, max_sitemaps: int = 50):
        self.client = client
        self.max_sitemaps = max_sitemaps

    async def get_urls(self, base_url: str, sitemap_urls: list[str] | None = None) -> list[str]:
        """Collect distinct page URLs from the given sitemaps, or <base>/sitemap.xml."""
        pending = list(sitemap_urls or [urljoin(base_url, "/sitemap.xml")])
        visited: set[str] = set()
        urls: list[str] = []
        seen_urls: set[str] = set()

        while pending and len(visited) < self.max_sitemaps:
            sitemap_url = pending.pop(0)
            if sitemap_url in visited:
                continue
            visited.add(sitemap_url)

            content = await self._fetch(sitemap_url)
            if content is None:
                continue

            child_sitemaps, page_urls = self.parse(content)
            pending.extend(child_sitemaps)
            for url in page_urls:
                if url not in seen_urls:
                    seen_urls.add(url)
                    urls.append(url)

        logger.debug("Found %d URLs in %d sitemaps.", len(urls), len(visited))
        return urls

    async def _fetch(self, sitemap_url: str) -> bytes | None:
        try:
            resp = await self.client.get(sitemap_url)
        except httpx.HTTPError as e:
            logger.warning("Could not read sitemap %s: %s", sitemap_url, e)
            return None

        if not 200 <= resp.status_code <= 299:
            logger.debug("Sitemap %s returned %d.", sitemap_url, resp.status_code)
            return None

        content = resp.content
        if content.startswith(GZIP_MAGIC):
            try:
                content = gzip.decompress(content)
            except OSError as e:
                logger.warning("Could not decompress sitemap %s: %s", sitemap_url, e)
                return None
        return content

    @staticmethod
    def parse(content: bytes) -> tuple[list[str], list[str]]:
        """Parse a sitemap document.

        Returns:
            Tuple of (child sitemap URLs, page URLs)
        """
        try:
            root = ET.fromstring(content)
        except ET.ParseError as e:
            logger.warning("Malformed sitemap: %s", e)
            return [], []

        locations = []
        for entry in root:
            for child in entry:
                if _local_name(child.tag) == "loc" and child.text and child.text.strip():
                    locations.append(child.text.strip())

        if _local_name(root.tag) == "sitemapindex":
            return locations, []
        return [], locations
