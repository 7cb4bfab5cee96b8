"""
HTML parser for extracting the title, meta tags and outbound links of a page.
"""

import re
import logging
from typing import List, Optional
from urllib.parse import urljoin, urlparse, urlunparse
from dataclasses import dataclass, field

from bs4 import BeautifulSoup

from ..errors import FetchError
from .validators import is_valid_url


DEFAULT_TITLE = "No title"


@dataclass
class ParsedContent:
    """Container for the parts of a page the crawler forwards."""
    url: str
    title: str = DEFAULT_TITLE
    meta: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)


class ContentParser:
    """
    Parses HTML content to extract the title, meta tags and links.
    """

    def __init__(self, features: str = 'lxml'):
        self.features = features
        self.logger = logging.getLogger(__name__)
        self.whitespace_pattern = re.compile(r'\s+')

    def parse(self, url: str, html_content: str) -> ParsedContent:
        """
        Parse HTML content.

        Args:
            url: The URL of the page, used to resolve relative links
            html_content: Raw HTML content

        Returns:
            ParsedContent with title, meta and links

        Raises:
            FetchError: if the document cannot be parsed
        """
        try:
            soup = BeautifulSoup(html_content, self.features)
        except Exception as e:
            raise FetchError(f"Error parsing content from {url}: {e}")

        parsed_content = ParsedContent(url=url)
        self._extract_title(soup, parsed_content)
        self._extract_meta_tags(soup, parsed_content)
        self._extract_links(soup, parsed_content, url)

        self.logger.debug(f"Parsed {url}: title={parsed_content.title!r}, "
                          f"{len(parsed_content.meta)} meta, {len(parsed_content.links)} links")
        return parsed_content

    def _extract_title(self, soup: BeautifulSoup, parsed_content: ParsedContent):
        """Extract page title."""
        title_tag = soup.find('title')
        if title_tag:
            title = self._clean_text(title_tag.get_text())
            if title:
                parsed_content.title = title

    def _extract_meta_tags(self, soup: BeautifulSoup, parsed_content: ParsedContent):
        """Extract named meta tags as "name: content", then charset declarations."""
        meta = []
        for tag in soup.find_all('meta', attrs={'name': True}):
            content = tag.get('content')
            if content is None:
                continue
            meta.append(f"{tag['name']}: {content}")

        for tag in soup.find_all('meta', attrs={'charset': True}):
            meta.append(f"charset: {tag['charset']}")

        parsed_content.meta = meta

    def _extract_links(self, soup: BeautifulSoup, parsed_content: ParsedContent, base_url: str):
        """Extract and normalize links, keeping document order."""
        seen = set()
        links = []

        for link in soup.find_all('a', href=True):
            href = link['href'].strip()
            if not href or href.startswith('#'):
                continue

            normalized_url = self._normalize_url(base_url, href)
            if normalized_url is None or normalized_url in seen:
                continue
            if is_valid_url(normalized_url):
                seen.add(normalized_url)
                links.append(normalized_url)

        parsed_content.links = links

    def _normalize_url(self, base_url: str, href: str) -> Optional[str]:
        """Resolve against the page URL, lower-case the host and drop the fragment."""
        try:
            parsed = urlparse(urljoin(base_url, href))
        except ValueError:
            return None
        return urlunparse((
            parsed.scheme,
            parsed.netloc.lower(),
            parsed.path,
            parsed.params,
            parsed.query,
            ''
        ))

    def _clean_text(self, text: str) -> str:
        if not text:
            return ""
        return self.whitespace_pattern.sub(' ', text.strip())
