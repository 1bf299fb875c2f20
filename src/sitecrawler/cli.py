"""CLI interface using typer."""

import asyncio
import json
import sys

import typer

from .config import settings
from .logging_config import setup_logging

app = typer.Typer(
    name="sitecrawler",
    help="Site crawler with robots.txt support and adaptive throttling",
    no_args_is_help=True,
)


async def _fetch(url: str, use_browser: bool = False) -> dict:
    """Fetch a URL without following redirects and return result as dict."""
    if use_browser:
        from .core import get_browser_fetcher
        fetcher = get_browser_fetcher()(user_agent=settings.user_agent)
    else:
        from .core import HttpFetcher
        fetcher = HttpFetcher(
            user_agent=settings.user_agent,
            max_connections=settings.max_connections,
            max_keepalive_connections=settings.max_keepalive_connections,
        )

    try:
        response = await fetcher.fetch(url, settings.request_timeout)
    finally:
        await fetcher.close()

    return {
        "url": response.url,
        "status": response.status,
        "content_length": len(response.content),
        "headers": response.headers,
        "content": response.text,
        "used_browser": use_browser,
    }


@app.command()
def fetch(
    url: str = typer.Argument(..., help="URL to fetch"),
    output: str = typer.Option(None, "-o", "--output", help="Output file (JSON)"),
    js: bool = typer.Option(False, "--js", help="Use browser for JavaScript rendering"),
    quiet: bool = typer.Option(False, "-q", "--quiet", help="Only output content"),
):
    """Fetch a single URL. Redirects are reported, not followed."""
    from .core import FetchError

    try:
        result = asyncio.run(_fetch(url, use_browser=js))
    except FetchError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    if output:
        with open(output, "w") as f:
            json.dump(result, f, indent=2, ensure_ascii=False)
        typer.echo(f"Saved to {output}")
    elif quiet:
        sys.stdout.write(result["content"])
    else:
        typer.echo(f"URL: {result['url']}")
        typer.echo(f"Status: {result['status']}")
        typer.echo(f"Content-Length: {result['content_length']}")
        if "location" in result["headers"]:
            typer.echo(f"Location: {result['headers']['location']}")
        if result.get("used_browser"):
            typer.echo("Renderer: Browser (Playwright)")
        typer.echo("---")
        typer.echo(result["content"][:2000])
        if len(result["content"]) > 2000:
            typer.echo(f"\n... (truncated, {len(result['content'])} chars total)")


@app.command()
def crawl(
    site_url: str = typer.Argument(..., help="Site to crawl"),
    max_pages: int = typer.Option(settings.max_number_of_pages_to_crawl, "--max-pages", "-n", help="Maximum pages to crawl (0 = unlimited)"),
    retries: int = typer.Option(settings.number_of_retries, "--retries", help="Attempts per URL before giving up"),
    max_redirects: int = typer.Option(settings.max_number_of_redirects, "--max-redirects", help="Maximum redirects followed per URL"),
    host_alias: list[str] = typer.Option(None, "--host-alias", help="Additional host to crawl (repeatable)"),
    concurrency: int = typer.Option(settings.max_simultaneous_requests, "--concurrency", "-c", help="Concurrent requests"),
    delay: float = typer.Option(settings.delay_between_request_start, "--delay", help="Delay before each request start (seconds)"),
    jitter: float = typer.Option(settings.delay_jitter, "--jitter", help="Random extra delay per request (seconds)"),
    timeout: float = typer.Option(settings.request_timeout, "--timeout", help="Per-request timeout (seconds)"),
    output: str = typer.Option("crawl_results/results.jsonl", "-o", "--output", help="Output file (JSONL)"),
    include_content: bool = typer.Option(False, "--include-content", help="Store page content in the output"),
    js: bool = typer.Option(False, "--js", help="Use browser for all pages"),
    log_level: str = typer.Option(settings.log_level, "--log-level", help="Log level"),
    log_file: str = typer.Option(None, "--log-file", help="Also write logs to this file"),
):
    """Crawl a website starting from its home page and sitemaps."""
    from .crawl import run_crawl

    setup_logging(log_level, log_file)

    crawl_settings = settings.to_crawl_settings(host_aliases=host_alias or None)
    crawl_settings.max_number_of_pages_to_crawl = max_pages
    crawl_settings.number_of_retries = retries
    crawl_settings.max_number_of_redirects = max_redirects

    options = crawl_settings.request_processor_options
    options.max_simultaneous_requests = concurrency
    options.delay_between_request_start = delay
    options.delay_jitter = jitter
    options.request_timeout = timeout

    asyncio.run(run_crawl(
        site_url=site_url,
        settings=crawl_settings,
        output_path=output,
        include_content=include_content,
        use_browser=js,
    ))


@app.command()
def version():
    """Show version."""
    from . import __version__

    typer.echo(f"site-crawler {__version__}")


if __name__ == "__main__":
    app()
