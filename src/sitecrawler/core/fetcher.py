"""HTTP fetcher implementation using httpx."""

import asyncio

import httpx

from .protocols import FetchError, Response

DEFAULT_USER_AGENT = "SiteCrawler/0.1 (+https://github.com/site-crawler)"


class HttpFetcher:
    """Async HTTP fetcher using httpx with connection reuse."""

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        max_connections: int = 100,
        max_keepalive_connections: int = 20,
    ):
        self.user_agent = user_agent
        self.limits = httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive_connections,
        )
        self._client: httpx.AsyncClient | None = None
        self._lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client with double-checked locking."""
        if self._client is None:
            async with self._lock:
                if self._client is None:
                    self._client = httpx.AsyncClient(
                        limits=self.limits,
                        headers={"User-Agent": self.user_agent},
                        follow_redirects=False,
                    )
        return self._client

    async def fetch(self, url: str, timeout: float) -> Response:
        """Fetch a URL without following redirects."""
        client = await self._get_client()
        try:
            resp = await client.get(url, timeout=httpx.Timeout(timeout))
        except (httpx.RequestError, httpx.InvalidURL) as e:
            raise FetchError(url, f"{type(e).__name__}: {e}") from e
        return Response(
            url=str(resp.url),
            status=resp.status_code,
            content=resp.content,
            headers={name.lower(): value for name, value in resp.headers.items()},
        )

    async def close(self):
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
