import os
import asyncio
import logging
from typing import Optional
from urllib.parse import urlparse

import aiohttp

logger = logging.getLogger(__name__)

# Some sites refuse anything that doesn't look like a browser.
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/118.0.0.0 Safari/537.36"
)
HEADERS = {"User-Agent": USER_AGENT}
ALLOWED_SCHEMES = {"http", "https"}
DEFAULT_FETCH_TIMEOUT = 10


def fetch_timeout() -> float:
    """Seconds allowed per fetch, from ``URL_FETCH_TIMEOUT``."""
    return float(os.getenv("URL_FETCH_TIMEOUT", DEFAULT_FETCH_TIMEOUT))


class FetchError(Exception):
    """Base class for page retrieval failures."""

    def __init__(self, url: str, reason: object = None):
        self.url = url
        self.reason = reason
        super().__init__(f"{url}: {reason}" if reason is not None else url)


class FetchUnreachable(FetchError):
    """The page could not be requested at all."""


class FetchBodyDecodeFailed(FetchError):
    """A response arrived but its body could not be read as text."""


def create_session() -> aiohttp.ClientSession:
    """Return a session for fetching the pages linked from one message."""
    return aiohttp.ClientSession()


async def fetch_page(
    url: str,
    session: aiohttp.ClientSession,
    timeout: Optional[float] = None,
) -> str:
    """GET *url* and return the response body as text.

    Status codes are not checked; an error page is still a page. Raises
    :class:`FetchUnreachable` or :class:`FetchBodyDecodeFailed`.
    """
    if timeout is None:
        timeout = fetch_timeout()
    if urlparse(url).scheme.lower() not in ALLOWED_SCHEMES:
        raise FetchUnreachable(url, "unsupported URL scheme")

    try:
        async with session.get(
            url,
            timeout=aiohttp.ClientTimeout(total=timeout),
            headers=HEADERS,
        ) as resp:
            logger.debug("GET %s -> %s", url, resp.status)
            try:
                return await resp.text()
            except (aiohttp.ClientError, UnicodeDecodeError, LookupError, asyncio.TimeoutError) as e:
                raise FetchBodyDecodeFailed(url, e) from e
    except FetchError:
        raise
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        raise FetchUnreachable(url, e) from e


__all__ = [
    "USER_AGENT",
    "DEFAULT_FETCH_TIMEOUT",
    "fetch_timeout",
    "FetchError",
    "FetchUnreachable",
    "FetchBodyDecodeFailed",
    "create_session",
    "fetch_page",
]
