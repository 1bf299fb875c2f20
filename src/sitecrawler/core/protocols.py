"""Protocol definitions for fetchers."""

from dataclasses import dataclass
from typing import Protocol


class FetchError(Exception):
    """Transport-level failure of a fetch (connection, timeout, protocol)."""

    def __init__(self, url: str, message: str):
        super().__init__(f"{url}: {message}")
        self.url = url


@dataclass
class Response:
    """HTTP response container. Header names are lower-cased."""

    url: str
    status: int
    content: bytes
    headers: dict[str, str]

    @property
    def text(self) -> str:
        """Decode content as UTF-8."""
        return self.content.decode("utf-8", errors="replace")


class Fetcher(Protocol):
    """Protocol for URL fetchers.

    Implementations must not follow redirects: a 3xx comes back as a
    Response so every hop can be recorded. Transport failures are raised
    as FetchError.
    """

    async def fetch(self, url: str, timeout: float) -> Response:
        """Fetch a URL and return the response."""
        ...

    async def close(self) -> None:
        ...
