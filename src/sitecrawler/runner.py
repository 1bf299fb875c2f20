"""Crawl runner: per-URI state, admission policy and result interpretation."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from http import HTTPStatus
from urllib.parse import urljoin, urlparse

from .models import (
    CrawledContent,
    CrawledUri,
    CrawlLink,
    CrawlRequest,
    CrawlStatus,
    RedirectHop,
    RequestResult,
    UriCrawlState,
)
from .robots import RobotsFile, RobotsPageDirectives
from .scheduler import RequestProcessor, RequestProcessorOptions

logger = logging.getLogger(__name__)

REDIRECT_STATUS_CODES = {
    HTTPStatus.MOVED_PERMANENTLY,
    HTTPStatus.FOUND,
    HTTPStatus.TEMPORARY_REDIRECT,
}

SuccessAction = Callable[[RequestResult, UriCrawlState], Awaitable[None]]


def strip_fragment(url: str) -> str:
    """Remove the fragment from a URL."""
    return url.split("#", 1)[0]


class CrawlRunner:
    """Feeds the request processor and turns its results into crawled URIs.

    All ledger, seen-set and result mutations happen on the coroutine that
    runs process(); fetch tasks only return results.
    """

    def __init__(
        self,
        base_uri: str,
        robots_file: RobotsFile,
        request_processor: RequestProcessor,
        options: RequestProcessorOptions,
        user_agent: str,
        number_of_retries: int = 3,
        max_number_of_redirects: int = 3,
        max_number_of_pages_to_crawl: int = 0,
        host_aliases: list[str] | None = None,
    ):
        self.base_uri = base_uri
        self.base_host = urlparse(base_uri).hostname
        self.robots_file = robots_file
        self.request_processor = request_processor
        self.options = options
        self.user_agent = user_agent
        self.number_of_retries = number_of_retries
        self.max_number_of_redirects = max_number_of_redirects
        self.max_number_of_pages_to_crawl = max_number_of_pages_to_crawl
        self.host_aliases = [alias.lower() for alias in host_aliases] if host_aliases is not None else None

        self.crawl_states: dict[str, UriCrawlState] = {}
        self.seen_uris: set[str] = set()
        # Queued or in flight, awaiting a result
        self.pending_uris: set[str] = set()
        self.finalized_uris: set[str] = set()
        self.crawled_uris: list[CrawledUri] = []

        self.add_request(base_uri)

    def _is_allowed_host(self, uri: str) -> bool:
        host = urlparse(uri).hostname
        if host == self.base_host:
            return True
        if self.host_aliases is not None:
            if host in self.host_aliases:
                return True
            logger.debug("Host %s is not in the list of allowed hosts, ignoring %s.", host, uri)
        else:
            logger.debug("Host %s doesn't match the base host, ignoring %s.", host, uri)
        return False

    def add_request(self, uri: str):
        """Queue a URI for crawling, subject to host, page limit and robots policy."""
        self._add_request(strip_fragment(uri), skip_max_page_check=False)

    def add_link(self, link: CrawlLink):
        """Queue a discovered link unless it is nofollow or already seen."""
        if link.relationship is not None and link.relationship.strip().lower() == "nofollow":
            return

        uri = strip_fragment(link.location)
        if uri in self.seen_uris:
            return

        self._add_request(uri, skip_max_page_check=False)

    def add_redirect(self, request_uri: str, location_header: str):
        """Move the crawl state of request_uri to the redirect target and queue it."""
        crawl_state = self.crawl_states.pop(request_uri, None)
        if crawl_state is None:
            return

        redirect_uri = strip_fragment(urljoin(request_uri, location_header))
        redirects = list(crawl_state.redirects or [])
        redirects.append(RedirectHop(location=crawl_state.location, requests=crawl_state.requests))

        if redirect_uri not in self.crawl_states:
            # A target that is queued but not yet fetched picks up the hop here
            self.crawl_states[redirect_uri] = UriCrawlState(location=redirect_uri, redirects=redirects)

        # A redirect continues an existing page, it is not a new one
        self._add_request(redirect_uri, skip_max_page_check=True)

    def add_result(self, request_uri: str, content: CrawledContent):
        """Record a successfully fetched page and follow its links."""
        crawl_state = self.crawl_states.get(request_uri)
        if crawl_state is None:
            return

        directives = RobotsPageDirectives.from_rules(content.page_robot_rules)
        if not directives.can_index(self.user_agent):
            logger.debug("Content for %s is blocked by an in-page robots rule.", request_uri)
            self._add_crawled_uri(self._crawled_uri(crawl_state, CrawlStatus.ROBOTS_BLOCKED))
            return

        logger.debug("Result for %s completed successfully with content.", request_uri)
        self._add_crawled_uri(self._crawled_uri(crawl_state, CrawlStatus.CRAWLED, content))

        if directives.can_follow_links(self.user_agent):
            for link in content.links:
                self.add_link(link)

    def _page_limit_reached(self) -> bool:
        if self.max_number_of_pages_to_crawl <= 0:
            return False
        expected = len(self.crawled_uris) + self.request_processor.pending_requests
        return expected >= self.max_number_of_pages_to_crawl

    def _add_request(self, uri: str, skip_max_page_check: bool):
        if not self._is_allowed_host(uri):
            return

        if uri in self.pending_uris:
            logger.debug("Request for %s is already queued.", uri)
            return

        if uri in self.finalized_uris:
            logger.debug("Request for %s already has a result.", uri)
            return

        if not skip_max_page_check and self._page_limit_reached():
            logger.debug("Page crawl limit blocks adding %s.", uri)
            return

        self.seen_uris.add(uri)

        crawl_state = self.crawl_states.get(uri)
        if crawl_state is not None:
            if crawl_state.requests and crawl_state.requests[-1].is_successful_status:
                return

            if len(crawl_state.requests) >= self.number_of_retries:
                logger.debug(
                    "Request for %s hit the maximum retry limit (%d).", uri, self.number_of_retries,
                )
                self._add_crawled_uri(self._crawled_uri(crawl_state, CrawlStatus.MAX_RETRIES))
                return

            if (
                crawl_state.redirects is not None
                and len(crawl_state.redirects) >= self.max_number_of_redirects
            ):
                logger.debug(
                    "Request for %s hit the maximum redirect limit (%d).",
                    uri, self.max_number_of_redirects,
                )
                self._add_crawled_uri(self._crawled_uri(crawl_state, CrawlStatus.MAX_REDIRECTS))
                return

        if self.robots_file.is_allowed(uri, self.user_agent):
            logger.debug("Added %s to the request queue.", uri)
            self.pending_uris.add(uri)
            self.request_processor.add(uri)
        else:
            logger.debug("Request for %s is blocked by robots.txt.", uri)
            if crawl_state is not None:
                self._add_crawled_uri(self._crawled_uri(crawl_state, CrawlStatus.ROBOTS_BLOCKED))
            else:
                self._add_crawled_uri(CrawledUri(location=uri, status=CrawlStatus.ROBOTS_BLOCKED))

    @staticmethod
    def _crawled_uri(
        crawl_state: UriCrawlState,
        status: CrawlStatus,
        content: CrawledContent | None = None,
    ) -> CrawledUri:
        return CrawledUri(
            location=crawl_state.location,
            status=status,
            requests=tuple(crawl_state.requests),
            redirect_chain=tuple(crawl_state.redirects) if crawl_state.redirects is not None else None,
            content=content,
        )

    def _add_crawled_uri(self, result: CrawledUri):
        self.finalized_uris.add(result.location)
        self.crawled_uris.append(result)

    async def process(
        self,
        response_success_action: SuccessAction,
        cancel_event: asyncio.Event | None = None,
    ) -> list[CrawledUri]:
        """Run the request processor to completion and return every crawled URI."""

        async def handle(result: RequestResult):
            self.pending_uris.discard(result.request_uri)
            crawl_state = self.crawl_states.setdefault(
                result.request_uri, UriCrawlState(location=result.request_uri),
            )

            if result.exception is not None:
                logger.debug(
                    "Request for %s failed (%s), queueing it to be attempted again.",
                    crawl_state.location, result.exception,
                )
                crawl_state.requests.append(CrawlRequest(
                    request_start=result.request_start,
                    elapsed_time=result.elapsed_time,
                ))
                self.add_request(crawl_state.location)
                return

            crawl_request = CrawlRequest(
                request_start=result.request_start,
                elapsed_time=result.elapsed_time,
                status_code=result.status_code,
            )
            crawl_state.requests.append(crawl_request)
            location_header = result.headers.get("location")

            if crawl_request.status_code in REDIRECT_STATUS_CODES and location_header:
                logger.debug(
                    "Result for %s was a redirect to %s.", crawl_state.location, location_header,
                )
                self.add_redirect(crawl_state.location, location_header)
            elif crawl_request.is_successful_status:
                await response_success_action(result, crawl_state)
            elif 500 <= crawl_request.status_code <= 599:
                logger.debug(
                    "Result for %s was a server error (%d), queueing it to be attempted again.",
                    crawl_state.location, crawl_request.status_code,
                )
                self.add_request(crawl_state.location)
            else:
                # Record what was seen and move on, the content is irrelevant
                logger.debug(
                    "Result for %s was unexpected (%d), no further requests will be made.",
                    crawl_state.location, crawl_request.status_code,
                )
                self._add_crawled_uri(self._crawled_uri(crawl_state, CrawlStatus.CRAWLED))

        await self.request_processor.process(handle, self.options, cancel_event)

        logger.debug("Completed crawling %d pages.", len(self.crawled_uris))
        return list(self.crawled_uris)
