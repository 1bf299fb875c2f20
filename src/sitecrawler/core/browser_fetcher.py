"""Browser-based fetcher using Playwright."""

import asyncio

from playwright.async_api import Browser, BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError

from .protocols import FetchError, Response


class BrowserPool:
    """Manages a pool of browser pages for reuse."""

    def __init__(
        self,
        pool_size: int = 3,
        headless: bool = True,
        user_agent: str | None = None,
    ):
        self.pool_size = pool_size
        self.headless = headless
        self.user_agent = user_agent
        self._playwright = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._pages: asyncio.Queue[Page] = asyncio.Queue()
        self._lock = asyncio.Lock()
        self._initialized = False

    async def _initialize(self):
        """Initialize browser and page pool."""
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(headless=self.headless)

            context_opts = {}
            if self.user_agent:
                context_opts["user_agent"] = self.user_agent
            self._context = await self._browser.new_context(**context_opts)

            for _ in range(self.pool_size):
                page = await self._context.new_page()
                await self._pages.put(page)

            self._initialized = True

    async def acquire(self) -> Page:
        """Acquire a page from the pool."""
        await self._initialize()
        return await self._pages.get()

    async def release(self, page: Page):
        """Release a page back to the pool."""
        await self._pages.put(page)

    async def close(self):
        """Close all browser resources."""
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        self._initialized = False


class BrowserFetcher:
    """Async browser fetcher using Playwright for JavaScript rendering.

    The browser follows redirects on its own, so the crawl only ever sees
    the final page of a redirect chain.
    """

    def __init__(
        self,
        user_agent: str | None = None,
        headless: bool = True,
        pool_size: int = 3,
    ):
        self.user_agent = user_agent
        self.headless = headless
        self._pool = BrowserPool(
            pool_size=pool_size,
            headless=headless,
            user_agent=user_agent,
        )

    async def fetch(self, url: str, timeout: float) -> Response:
        """Render a URL using a pooled browser page."""
        page = await self._pool.acquire()
        try:
            # Playwright uses milliseconds
            response = await page.goto(
                url,
                timeout=timeout * 1000,
                wait_until="domcontentloaded",
            )
            content = await page.content()

            headers = {}
            status = 200
            if response:
                headers = await response.all_headers()
                status = response.status

            return Response(
                url=page.url,
                status=status,
                content=content.encode("utf-8"),
                headers={name.lower(): value for name, value in headers.items()},
            )
        except PlaywrightError as e:
            raise FetchError(url, str(e)) from e
        finally:
            await self._pool.release(page)

    async def close(self):
        """Close the browser pool."""
        await self._pool.close()
