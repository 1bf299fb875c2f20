"""Configuration using pydantic-settings."""

from pydantic_settings import BaseSettings

from .crawl import CrawlSettings
from .scheduler import RequestProcessorOptions


class CrawlerSettings(BaseSettings):
    """Crawler configuration."""

    user_agent: str = "SiteCrawler/0.1 (+https://github.com/site-crawler)"
    max_connections: int = 100
    max_keepalive_connections: int = 20

    number_of_retries: int = 3
    max_number_of_redirects: int = 3
    max_number_of_pages_to_crawl: int = 0

    max_simultaneous_requests: int = 10
    delay_between_request_start: float = 1.0
    delay_jitter: float = 1.0
    request_timeout: float = 20.0
    timeout_before_throttle: float = 2.5
    throttling_request_backoff: float = 5.0
    min_sequential_successes_to_minimise_throttling: int = 5

    log_level: str = "INFO"

    model_config = {"env_prefix": "SITECRAWLER_"}

    def to_crawl_settings(self, host_aliases: list[str] | None = None) -> CrawlSettings:
        """Build per-crawl settings from these defaults."""
        return CrawlSettings(
            user_agent=self.user_agent,
            number_of_retries=self.number_of_retries,
            max_number_of_redirects=self.max_number_of_redirects,
            max_number_of_pages_to_crawl=self.max_number_of_pages_to_crawl,
            host_aliases=host_aliases,
            request_processor_options=RequestProcessorOptions(
                max_simultaneous_requests=self.max_simultaneous_requests,
                delay_between_request_start=self.delay_between_request_start,
                delay_jitter=self.delay_jitter,
                request_timeout=self.request_timeout,
                timeout_before_throttle=self.timeout_before_throttle,
                throttling_request_backoff=self.throttling_request_backoff,
                min_sequential_successes_to_minimise_throttling=(
                    self.min_sequential_successes_to_minimise_throttling
                ),
            ),
        )


settings = CrawlerSettings()
