"""Core fetcher components."""

from .fetcher import HttpFetcher
from .protocols import FetchError, Fetcher, Response

__all__ = ["Fetcher", "FetchError", "Response", "HttpFetcher"]

# Lazy import for optional browser support
def get_browser_fetcher():
    from .browser_fetcher import BrowserFetcher
    return BrowserFetcher
