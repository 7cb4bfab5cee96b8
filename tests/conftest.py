from __future__ import annotations

from typing import Dict, List, Optional, Tuple, Union

import pytest

from crawlfleet.crawler.fetcher import Fetcher
from crawlfleet.errors import FetchError, TransportError
from crawlfleet.messaging.broker import Delivery
from crawlfleet.models import NoContent, PageContent, PageResponse
from crawlfleet.storage.dedup_store import MemoryDedupStore
from crawlfleet.utils.config import BrokerConfig


def html_page(*links: str, title: str = "Page") -> PageResponse:
    body = "<html><head><title>%s</title></head><body>%s</body></html>" % (
        title, "".join(f'<a href="{link}">x</a>' for link in links)
    )
    return PageResponse(
        title=title,
        status_code=200,
        headers=["Content-Type: text/html"],
        meta=["description: test"],
        extra=PageContent(links=list(links), body=body),
    )


class FakeFetcher(Fetcher):
    """Serves canned pages and robots.txt bodies, recording every call."""

    def __init__(self, pages: Optional[Dict[str, Union[PageResponse, Exception]]] = None,
                 robots: Optional[Dict[str, Union[Tuple[int, str], Exception]]] = None):
        self.pages = pages or {}
        self.robots = robots or {}
        self.fetched: List[str] = []
        self.text_fetched: List[str] = []

    async def fetch(self, url: str) -> PageResponse:
        self.fetched.append(url)
        page = self.pages.get(url)
        if isinstance(page, Exception):
            raise page
        if page is None:
            return PageResponse(title="No title", status_code=200,
                                extra=NoContent(reason="no canned page"))
        return page

    async def fetch_text(self, url: str) -> Tuple[int, str]:
        self.text_fetched.append(url)
        result = self.robots.get(url, (404, ""))
        if isinstance(result, Exception):
            raise result
        return result


class RecordingPublisher:
    """Publisher stand-in that keeps published results in memory."""

    def __init__(self, fail_on: Optional[Dict[str, Exception]] = None):
        self.results = []
        self.fail_on = fail_on or {}

    async def enqueue(self, payload):
        error = self.fail_on.get(payload.url)
        if error is not None:
            raise error
        self.results.append(payload)
        return f"{len(self.results)}-0"

    @property
    def urls(self) -> List[str]:
        return [result.url for result in self.results]

    async def close(self):
        pass


class FakeConnection:
    """
    In-memory stand-in for BrokerConnection.

    Messages sent to the main stream become pending deliveries. Delivered
    entries stay unacked until ack(); reading them again uses entry id '0'.
    Reading new entries past the last pending delivery raises TransportError
    so a miscounted consume loop fails instead of blocking.
    """

    def __init__(self, config: Optional[BrokerConfig] = None):
        self.config = config or BrokerConfig()
        self.stream = self.config.queue
        self.group = self.config.group
        self.consumer_tag = self.config.consumer_tag
        self.sent: List[dict] = []
        self.pending: List[Delivery] = []
        self.unacked: Dict[str, Delivery] = {}
        self.stale: List[Delivery] = []
        self.acked: List[str] = []
        self.reads: List[str] = []
        self.claims: List[Tuple[int, int]] = []
        self.closed = False
        self._next_id = 1

    def deliver(self, payload: bytes, content_type: Optional[str] = "application/json") -> str:
        tag = f"{self._next_id}-0"
        self._next_id += 1
        self.pending.append(Delivery(payload=payload, delivery_tag=tag, content_type=content_type))
        return tag

    def deliver_unacked(self, payload: bytes, content_type: Optional[str] = "application/json") -> str:
        """An entry handed to this consumer by an earlier run and never settled."""
        tag = self.deliver(payload, content_type)
        self.unacked[tag] = self.pending.pop()
        return tag

    def deliver_stale(self, payload: bytes, content_type: Optional[str] = "application/json") -> str:
        """An entry left unacked by some other consumer."""
        tag = self.deliver(payload, content_type)
        self.stale.append(self.pending.pop())
        return tag

    async def send(self, payload: str, content_type: str, stream: Optional[str] = None,
                   extra_fields: Optional[Dict[str, str]] = None) -> str:
        self.sent.append({
            'payload': payload,
            'content_type': content_type,
            'stream': stream or self.stream,
            'extra_fields': extra_fields,
        })
        if stream is None:
            return self.deliver(payload.encode('utf-8'), content_type)
        return f"dl-{len(self.sent)}"

    async def receive(self, count: int, block_ms: int, entry_id: str = '>') -> List[Delivery]:
        self.reads.append(entry_id)
        if entry_id != '>':
            return list(self.unacked.values())[:count]
        if not self.pending:
            raise TransportError("connection closed by fake broker")
        batch, self.pending = self.pending[:count], self.pending[count:]
        for delivery in batch:
            self.unacked[delivery.delivery_tag] = delivery
        return batch

    async def claim_stale(self, min_idle_ms: int, count: int) -> int:
        self.claims.append((min_idle_ms, count))
        claimed, self.stale = self.stale, []
        for delivery in claimed:
            self.unacked[delivery.delivery_tag] = delivery
        return len(claimed)

    async def ack(self, delivery_tag: str):
        self.unacked.pop(delivery_tag, None)
        self.acked.append(delivery_tag)

    async def close(self):
        self.closed = True


@pytest.fixture
def dedup_store():
    return MemoryDedupStore()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def connection():
    return FakeConnection()


@pytest.fixture
def fetch_error():
    return FetchError("connection refused")
