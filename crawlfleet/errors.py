"""
Error taxonomy for the crawler.

Per-task and per-message errors are absorbed by the loop that raised them.
TransportError is the only one that ends an agent or consumer loop.
"""


class CrawlerError(Exception):
    """Base class for all crawler errors."""
    pass


class PolicyError(CrawlerError):
    """A URL was refused by robots.txt policy."""
    pass


class FetchError(CrawlerError):
    """Malformed URL, HTTP/network failure or parse failure."""
    pass


class StoreError(CrawlerError):
    """The dedup store could not answer or record a key."""
    pass


class DecodeError(CrawlerError):
    """A delivered message could not be turned into a payload."""
    pass


class SerializationError(CrawlerError):
    """A payload could not be encoded for publishing."""
    pass


class TransportError(CrawlerError):
    """The connection to the broker or cache was lost or refused."""
    pass


class ConfigError(CrawlerError):
    """A required setting is missing or invalid."""
    pass
