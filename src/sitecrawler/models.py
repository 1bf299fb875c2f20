"""Records shared by the scheduler, the crawl runner and the crawler facade."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class CrawlStatus(str, Enum):
    """Terminal status of a crawled URI."""

    CRAWLED = "crawled"
    ROBOTS_BLOCKED = "robots_blocked"
    MAX_RETRIES = "max_retries"
    MAX_REDIRECTS = "max_redirects"


@dataclass
class CrawlRequest:
    """A single fetch attempt of a URI."""

    request_start: datetime
    elapsed_time: float
    status_code: int | None = None

    @property
    def is_successful_status(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code <= 299


@dataclass
class RedirectHop:
    """A location that redirected elsewhere, with the attempts made there."""

    location: str
    requests: list[CrawlRequest] = field(default_factory=list)


@dataclass
class UriCrawlState:
    """Mutable per-URI ledger entry, owned by the crawl runner."""

    location: str
    requests: list[CrawlRequest] = field(default_factory=list)
    redirects: list[RedirectHop] | None = None


@dataclass
class CrawlLink:
    """A link found in a page."""

    location: str
    title: str | None = None
    text: str | None = None
    relationship: str | None = None


@dataclass
class CrawledContent:
    """What the content processor extracted from a fetched page."""

    content_type: str | None = None
    character_set: str | None = None
    raw_content: str | None = None
    canonical_uri: str | None = None
    page_robot_rules: list[str] = field(default_factory=list)
    links: list[CrawlLink] = field(default_factory=list)


@dataclass(frozen=True)
class CrawledUri:
    """Terminal result for a URI. Exactly one is produced per crawl target."""

    location: str
    status: CrawlStatus
    requests: tuple[CrawlRequest, ...] = ()
    redirect_chain: tuple[RedirectHop, ...] | None = None
    content: CrawledContent | None = None


@dataclass
class RequestResult:
    """Outcome of one fetch, handed from the request processor to the runner."""

    request_uri: str
    request_start: datetime
    request_start_delay: float
    elapsed_time: float
    status_code: int | None = None
    headers: dict[str, str] = field(default_factory=dict)
    content: str | None = None
    exception: BaseException | None = None


@dataclass
class CrawlResult:
    """Outcome of a whole crawl."""

    crawl_start: datetime
    elapsed_time: float = 0.0
    crawled_uris: list[CrawledUri] = field(default_factory=list)
