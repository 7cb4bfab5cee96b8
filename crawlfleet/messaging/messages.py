"""
Messages that cross the outbound stream.
"""

import json
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from ..models import PageContent, PageResponse
from ..errors import DecodeError, SerializationError

JSON_CONTENT_TYPE = "application/json"
WILDCARD_CONTENT_TYPE = "*"


@dataclass(frozen=True)
class PageResult:
    """Extracted page data published once per successfully executed task."""
    url: str
    title: str
    status_code: int
    headers: List[str] = field(default_factory=list)
    meta: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    body: str = ""

    _STRING_FIELDS = ('url', 'title', 'body')
    _LIST_FIELDS = ('headers', 'meta', 'links')

    @classmethod
    def from_response(cls, url: str, response: PageResponse) -> 'PageResult':
        """Build a result for the task URL. NoContent yields empty links and body."""
        links: List[str] = []
        body = ""
        if isinstance(response.extra, PageContent):
            links = list(response.extra.links)
            body = response.extra.body
        return cls(
            url=url,
            title=response.title,
            status_code=response.status_code,
            headers=list(response.headers),
            meta=list(response.meta),
            links=links,
            body=body
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PageResult':
        """Build a PageResult from a decoded JSON object, checking field types."""
        if not isinstance(data, dict):
            raise DecodeError(f"Expected a JSON object, got {type(data).__name__}")

        for name in cls._STRING_FIELDS:
            if not isinstance(data.get(name), str):
                raise DecodeError(f"Field {name!r} must be a string")

        status_code = data.get('status_code')
        if isinstance(status_code, bool) or not isinstance(status_code, int):
            raise DecodeError("Field 'status_code' must be an integer")

        for name in cls._LIST_FIELDS:
            value = data.get(name)
            if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
                raise DecodeError(f"Field {name!r} must be a list of strings")

        return cls(
            url=data['url'],
            title=data['title'],
            status_code=status_code,
            headers=list(data['headers']),
            meta=list(data['meta']),
            links=list(data['links']),
            body=data['body']
        )

    def to_json(self) -> str:
        return encode_payload(self.to_dict())

    @classmethod
    def from_json(cls, payload: bytes) -> 'PageResult':
        return cls.from_dict(decode_json(payload))

    def __str__(self) -> str:
        return (f"PageResult(url={self.url}, title={self.title}, status_code={self.status_code}, "
                f"headers={len(self.headers)}, meta={len(self.meta)}, links={len(self.links)}, "
                f"body_length={len(self.body)})")


def encode_payload(payload: Any) -> str:
    """
    Canonical JSON encoding: sorted keys, compact separators, UTF-8 kept as is.

    Raises:
        SerializationError: if the payload is not JSON-serializable
    """
    if isinstance(payload, PageResult):
        payload = payload.to_dict()
    try:
        return json.dumps(payload, sort_keys=True, separators=(',', ':'), ensure_ascii=False)
    except (TypeError, ValueError, RecursionError) as e:
        raise SerializationError(f"Failed to serialize payload: {e}")


def decode_json(payload: bytes) -> Any:
    """Raises DecodeError for any undecodable payload, including one nested too deep."""
    try:
        text = payload.decode('utf-8') if isinstance(payload, (bytes, bytearray)) else payload
        return json.loads(text)
    except (UnicodeDecodeError, ValueError, RecursionError) as e:
        raise DecodeError(f"Malformed payload: {e}")


def content_type_matches(expected: str, actual: Optional[str]) -> bool:
    """A wildcard accepts anything, including a missing content type."""
    if expected == WILDCARD_CONTENT_TYPE:
        return True
    return actual is not None and actual == expected
