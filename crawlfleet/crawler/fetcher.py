"""
Fetch capability: turns a target URL into a parsed page response.

Fetcher is the boundary the agent depends on. WebFetcher is the HTTP
variant; other variants (a headless renderer, say) implement the same two
coroutines.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError

from ..errors import FetchError
from ..models import NoContent, PageContent, PageResponse
from .parser import ContentParser, DEFAULT_TITLE
from .validators import validate_url


class Fetcher(ABC):
    """Something that can fetch a URL and produce a PageResponse."""

    @abstractmethod
    async def fetch(self, url: str) -> PageResponse:
        """Fetch and parse a page. Raises FetchError on any failure."""

    @abstractmethod
    async def fetch_text(self, url: str) -> Tuple[int, str]:
        """Fetch a URL as text. Raises FetchError on transport failure."""

    async def close(self):
        pass


class WebFetcher(Fetcher):
    """
    Fetches web pages over HTTP with aiohttp and parses them with ContentParser.
    """

    TEXT_TYPES = (
        'text/html',
        'text/plain',
        'text/xml',
        'application/xml',
        'application/xhtml+xml',
    )

    def __init__(self, user_agent: str, request_timeout: int = 30,
                 max_concurrent_requests: int = 10, max_content_size: int = 10 * 1024 * 1024,
                 parser: Optional[ContentParser] = None):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_concurrent_requests = max_concurrent_requests
        self.max_content_size = max_content_size
        self.parser = parser or ContentParser()

        self.logger = logging.getLogger(__name__)
        self.session: Optional[ClientSession] = None
        self.semaphore = asyncio.Semaphore(max_concurrent_requests)

        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'total_bytes_downloaded': 0
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            timeout = ClientTimeout(total=self.request_timeout)
            headers = {'User-Agent': self.user_agent}

            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers,
                connector=aiohttp.TCPConnector(
                    limit=self.max_concurrent_requests * 2,
                    limit_per_host=10,
                    ttl_dns_cache=300,
                    use_dns_cache=True
                )
            )
            self.logger.info("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("WebFetcher session closed")

    async def fetch(self, url: str) -> PageResponse:
        """
        Fetch and parse a single URL.

        Args:
            url: The URL to fetch

        Returns:
            PageResponse for the page. Non-text responses carry NoContent.

        Raises:
            FetchError: invalid URL, timeout, client error or parse failure
        """
        validate_url(url)
        await self.start()
        start_time = time.time()

        async with self.semaphore:
            self.stats['total_requests'] += 1
            try:
                async with self.session.get(url) as response:
                    headers = [f"{key}: {value}" for key, value in response.headers.items()]
                    content_type = response.headers.get('content-type', '').lower()

                    if not self._is_text_content(content_type):
                        self.logger.debug(f"Skipping non-text content: {url} ({content_type})")
                        self.stats['successful_requests'] += 1
                        return PageResponse(
                            title=DEFAULT_TITLE,
                            status_code=response.status,
                            headers=headers,
                            extra=NoContent(reason=f"non-text content type {content_type!r}")
                        )

                    body = await self._read_content_safely(response)
                    status_code = response.status

            except asyncio.TimeoutError:
                self.stats['failed_requests'] += 1
                raise FetchError(f"Request timeout fetching {url}")
            except ClientError as e:
                self.stats['failed_requests'] += 1
                raise FetchError(f"Client error fetching {url}: {e}")
            except ValueError as e:
                self.stats['failed_requests'] += 1
                raise FetchError(f"Invalid request for {url}: {e}")

        self.stats['successful_requests'] += 1
        self.stats['total_bytes_downloaded'] += len(body)

        parsed = self.parser.parse(url, body)
        self.logger.debug(f"Fetched {url}: {status_code} ({len(body)} chars) "
                          f"in {time.time() - start_time:.2f}s")

        return PageResponse(
            title=parsed.title,
            status_code=status_code,
            headers=headers,
            meta=parsed.meta,
            extra=PageContent(links=parsed.links, body=body)
        )

    async def fetch_text(self, url: str) -> Tuple[int, str]:
        """Fetch a URL and return its status and decoded body."""
        await self.start()
        try:
            async with self.session.get(url) as response:
                return response.status, await self._read_content_safely(response)
        except asyncio.TimeoutError:
            raise FetchError(f"Request timeout fetching {url}")
        except ClientError as e:
            raise FetchError(f"Client error fetching {url}: {e}")
        except ValueError as e:
            raise FetchError(f"Invalid request for {url}: {e}")

    def _is_text_content(self, content_type: str) -> bool:
        """Check if content type is text-based. A missing type is treated as text."""
        if not content_type:
            return True
        return any(text_type in content_type for text_type in self.TEXT_TYPES)

    async def _read_content_safely(self, response) -> str:
        """
        Read response content with a size limit.

        Raises:
            FetchError: if the content is larger than max_content_size
        """
        content_length = response.headers.get('content-length')
        if content_length and content_length.isdigit() and int(content_length) > self.max_content_size:
            raise FetchError(f"Content too large ({content_length} bytes): {response.url}")

        content_bytes = b''
        async for chunk in response.content.iter_chunked(8192):
            content_bytes += chunk
            if len(content_bytes) > self.max_content_size:
                raise FetchError(f"Content exceeded size limit during reading: {response.url}")

        encoding = response.charset or 'utf-8'
        try:
            return content_bytes.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            for fallback_encoding in ['utf-8', 'cp1252']:
                try:
                    return content_bytes.decode(fallback_encoding)
                except UnicodeDecodeError:
                    continue
            return content_bytes.decode('latin-1')

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()
