"""Site crawler with robots.txt support, redirect tracking and adaptive throttling."""

__version__ = "0.1.0"

from .crawl import Crawler, CrawlSettings
from .models import CrawledUri, CrawlResult, CrawlStatus
from .scheduler import CrawlCancelledError, RequestProcessorOptions

__all__ = [
    "Crawler",
    "CrawlSettings",
    "CrawledUri",
    "CrawlResult",
    "CrawlStatus",
    "CrawlCancelledError",
    "RequestProcessorOptions",
]
