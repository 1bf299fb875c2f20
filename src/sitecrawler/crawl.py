"""Crawler facade: robots.txt, sitemap seeding and the crawl run."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from urllib.parse import urlparse

import httpx
import typer

from .content import ContentProcessor, DefaultContentProcessor
from .core import Fetcher, HttpFetcher
from .core.fetcher import DEFAULT_USER_AGENT
from .models import CrawlResult, RequestResult, UriCrawlState
from .output import StreamingOutputWriter, crawled_uri_to_dict
from .robots import RobotsFile
from .runner import CrawlRunner
from .scheduler import RequestProcessor, RequestProcessorOptions
from .sitemap import SitemapReader

logger = logging.getLogger(__name__)


@dataclass
class CrawlSettings:
    """Per-crawl settings."""

    user_agent: str = DEFAULT_USER_AGENT
    number_of_retries: int = 3
    max_number_of_redirects: int = 3
    max_number_of_pages_to_crawl: int = 0
    host_aliases: list[str] | None = None
    request_processor_options: RequestProcessorOptions = field(default_factory=RequestProcessorOptions)
    content_processor: ContentProcessor = field(default_factory=DefaultContentProcessor)


def base_uri_of(site_url: str) -> str:
    """Scheme and authority of a URL, with a root path."""
    parsed = urlparse(site_url)
    return f"{parsed.scheme}://{parsed.netloc}/"


def apply_crawl_delay(robots_file: RobotsFile, user_agent: str, options: RequestProcessorOptions):
    """Raise the start delay to the robots.txt Crawl-delay when that is larger."""
    robots_delay = robots_file.crawl_delay(user_agent) or 0.0
    options.delay_between_request_start = max(robots_delay, options.delay_between_request_start)


class Crawler:
    """Crawls a single site starting from its home page and sitemaps."""

    def __init__(
        self,
        fetcher: Fetcher | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.fetcher = fetcher
        self.client = client

    async def crawl(
        self,
        site_url: str,
        settings: CrawlSettings,
        cancel_event: asyncio.Event | None = None,
    ) -> CrawlResult:
        """Crawl the site and return every crawled URI."""
        result = CrawlResult(crawl_start=datetime.now(timezone.utc))
        start_time = time.perf_counter()

        fetcher = self.fetcher or HttpFetcher(user_agent=settings.user_agent)
        client = self.client or httpx.AsyncClient(
            headers={"User-Agent": settings.user_agent},
            follow_redirects=True,
            timeout=settings.request_processor_options.request_timeout,
        )

        try:
            base_uri = base_uri_of(site_url)
            robots_file = await RobotsFile.from_url(client, base_uri)

            apply_crawl_delay(robots_file, settings.user_agent, settings.request_processor_options)

            runner = CrawlRunner(
                base_uri=base_uri,
                robots_file=robots_file,
                request_processor=RequestProcessor(fetcher),
                options=settings.request_processor_options,
                user_agent=settings.user_agent,
                number_of_retries=settings.number_of_retries,
                max_number_of_redirects=settings.max_number_of_redirects,
                max_number_of_pages_to_crawl=settings.max_number_of_pages_to_crawl,
                host_aliases=settings.host_aliases,
            )

            # Use any links referred to by the sitemaps as a starting point
            sitemap_urls = await SitemapReader(client).get_urls(base_uri, robots_file.sitemaps)
            for uri in sitemap_urls:
                runner.add_request(uri)

            async def on_success(request_result: RequestResult, crawl_state: UriCrawlState):
                logger.info("Location: %s", crawl_state.location)
                content = settings.content_processor.parse(
                    crawl_state.location,
                    request_result.headers,
                    request_result.content or "",
                )
                content.raw_content = request_result.content
                runner.add_result(crawl_state.location, content)

            result.crawled_uris = await runner.process(on_success, cancel_event)
        finally:
            if self.fetcher is None:
                await fetcher.close()
            if self.client is None:
                await client.aclose()

        result.elapsed_time = time.perf_counter() - start_time
        return result


async def run_crawl(
    site_url: str,
    settings: CrawlSettings,
    output_path: str = "crawl_results/results.jsonl",
    include_content: bool = False,
    use_browser: bool = False,
):
    """Run a crawl and save results."""
    typer.echo(f"Starting crawl of {site_url}")

    fetcher = None
    if use_browser:
        from .core import get_browser_fetcher
        fetcher = get_browser_fetcher()(user_agent=settings.user_agent)

    try:
        result = await Crawler(fetcher=fetcher).crawl(site_url, settings)
    finally:
        if fetcher is not None:
            await fetcher.close()

    typer.echo(f"\nCrawl complete: {len(result.crawled_uris)} URIs in {result.elapsed_time:.1f}s")

    with StreamingOutputWriter(output_path, include_content=include_content) as writer:
        for crawled_uri in result.crawled_uris:
            writer.write_one(crawled_uri_to_dict(crawled_uri))
    typer.echo(f"Results saved to {output_path}")

    stats: dict[str, int] = {}
    for crawled_uri in result.crawled_uris:
        stats[crawled_uri.status.value] = stats.get(crawled_uri.status.value, 0) + 1
    typer.echo(f"Status counts: {stats}")
    return result
