"""
HTTP page fetcher for detection URLs
"""
import logging
from dataclasses import dataclass
from typing import Optional
import httpx

from ..common.config import WatcherConfig
from ..common.scheduler import RateLimiter

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """Raised when a detection page cannot be fetched"""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(FetchError):
    """Raised when the provider answers 429 Too Many Requests"""
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


@dataclass
class PageResponse:
    url: str
    status_code: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        # HTTP-date form is not worth honouring for a poll loop
        return None


class PageFetcher:
    """
    Fetches provider pages with the watcher's user agent.

    Non-2xx responses come back with an empty body so the detector
    treats them as closed.
    """

    def __init__(self, config: WatcherConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.rate_limiter = RateLimiter(config.requests_per_second)
        self.client = client or httpx.AsyncClient(
            headers={"User-Agent": config.user_agent},
            timeout=config.timeout,
            follow_redirects=True
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def close(self):
        await self.client.aclose()

    async def fetch(self, url: str) -> PageResponse:
        async with self.rate_limiter:
            try:
                response = await self.client.get(
                    url,
                    headers={"User-Agent": self.config.user_agent}
                )
            except httpx.HTTPError as e:
                raise FetchError(f"GET {url} failed: {e}") from e

        if response.status_code == 429:
            retry_after = _retry_after(response)
            raise RateLimitedError(f"Rate limited by {url}", retry_after=retry_after)

        page = PageResponse(url=url, status_code=response.status_code, text="")
        if page.ok:
            page.text = response.text
        else:
            logger.debug(f"GET {url} returned {response.status_code}")
        return page
