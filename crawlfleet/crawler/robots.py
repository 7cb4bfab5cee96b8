"""
robots.txt gate: per-domain allow/deny decisions with a cache of parsed rules.

Only the `User-agent: *` group and `Disallow` lines are honoured. The gate
fails open: when robots.txt cannot be fetched, crawling is allowed. URLs
whose host is an IP literal rather than a domain name are refused.
"""

import asyncio
import ipaddress
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

from ..errors import FetchError
from .fetcher import Fetcher


@dataclass(frozen=True)
class RobotsRuleSet:
    """Disallow rules that apply to every user agent on one domain."""
    disallow_prefixes: Tuple[str, ...] = ()
    disallow_all: bool = False

    def allows(self, url: str) -> bool:
        if self.disallow_all:
            return False
        return not any(prefix in url for prefix in self.disallow_prefixes)


def parse_robots_txt(robots_txt: str) -> RobotsRuleSet:
    """
    Collect Disallow rules that follow a `User-agent: *` line.

    A Disallow value of exactly "/" disallows everything. Empty values are
    ignored.
    """
    user_agent_found = False
    disallow_all = False
    prefixes: List[str] = []

    for raw_line in robots_txt.splitlines():
        line = raw_line.split('#', 1)[0].strip()
        if not line or ':' not in line:
            continue

        directive, _, value = line.partition(':')
        directive = directive.strip().lower()
        value = value.strip()

        if directive == 'user-agent' and value == '*':
            user_agent_found = True
        elif directive == 'disallow' and user_agent_found:
            if value == '/':
                disallow_all = True
            elif value:
                prefixes.append(value)

    return RobotsRuleSet(disallow_prefixes=tuple(prefixes), disallow_all=disallow_all)


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


class RobotsGate:
    """
    Decides whether a URL may be crawled.

    Rule sets are cached per domain for the lifetime of the gate. Concurrent
    misses for the same domain may each fetch robots.txt; the cache insert
    itself is serialized.
    """

    def __init__(self, fetcher: Fetcher):
        self.fetcher = fetcher
        self.logger = logging.getLogger(__name__)
        self._cache: Dict[str, RobotsRuleSet] = {}
        self._lock = asyncio.Lock()
        self.stats = {
            'checks': 0,
            'cache_hits': 0,
            'fetches': 0,
            'denied': 0,
            'fetch_failures': 0
        }

    async def is_allowed(self, url: str) -> bool:
        """Check a URL against its domain's robots.txt."""
        self.stats['checks'] += 1
        try:
            parsed = urlparse(url)
            domain = parsed.hostname
            port = parsed.port
        except ValueError:
            self.logger.warning(f"Unparseable URL refused: {url!r}")
            return self._deny()

        if not parsed.scheme or not domain:
            self.logger.warning(f"URL without scheme or domain refused: {url!r}")
            return self._deny()

        if _is_ip_literal(domain):
            self.logger.warning(f"URL with an IP address host refused: {url!r}")
            return self._deny()

        rules = self._cache.get(domain)
        if rules is not None:
            self.stats['cache_hits'] += 1
            self.logger.debug(f"Found robots.txt for {domain} in cache")
            return self._evaluate(rules, url)

        authority = f"{domain}:{port}" if port is not None else domain
        robots_url = f"{parsed.scheme}://{authority}/robots.txt"
        self.logger.info(f"Fetching robots.txt from {robots_url}")
        self.stats['fetches'] += 1
        try:
            status, body = await self.fetcher.fetch_text(robots_url)
        except FetchError as e:
            self.stats['fetch_failures'] += 1
            self.logger.warning(f"Failed to fetch robots.txt for {domain}: {e}")
            return True

        if not 200 <= status < 300:
            self.logger.debug(f"robots.txt for {domain} returned {status}, allowing")
            return True

        rules = parse_robots_txt(body)
        async with self._lock:
            self._cache.setdefault(domain, rules)
        return self._evaluate(rules, url)

    def rules_for(self, domain: str) -> Optional[RobotsRuleSet]:
        """Cached rule set for a domain, if any."""
        return self._cache.get(domain)

    @property
    def cached_domains(self) -> int:
        return len(self._cache)

    def _evaluate(self, rules: RobotsRuleSet, url: str) -> bool:
        if rules.allows(url):
            return True
        return self._deny()

    def _deny(self) -> bool:
        self.stats['denied'] += 1
        return False
