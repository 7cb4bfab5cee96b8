"""
URL validation helpers.
"""

import logging
from urllib.parse import urlparse

from ..errors import FetchError

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ('http', 'https')


def validate_url(url: str) -> str:
    """
    Ensure a URL is absolute http(s) with a host that IDNA can encode.

    Returns the URL unchanged, raises FetchError otherwise.
    """
    logger.debug(f"Validating URL: {url}")
    try:
        parsed = urlparse(url)
        host = parsed.hostname
    except ValueError as e:
        raise FetchError(f"Invalid URL: {e}")

    if parsed.scheme not in ALLOWED_SCHEMES:
        raise FetchError(f"Invalid URL scheme: {parsed.scheme or '<none>'}")
    if not host:
        raise FetchError(f"Invalid URL: missing host in {url!r}")
    try:
        host.encode('idna')
    except UnicodeError as e:
        raise FetchError(f"Invalid URL host {host!r}: {e}")
    return url


def is_valid_url(url: str) -> bool:
    """Boolean form of validate_url."""
    try:
        validate_url(url)
    except FetchError:
        return False
    return True
