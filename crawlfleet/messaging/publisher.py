"""
Durable, acknowledged enqueue of page results onto the outbound stream.
"""

import asyncio
import logging
from typing import Any, Optional

from ..utils.monitoring import CrawlerMonitor
from .broker import BrokerConnection
from .messages import JSON_CONTENT_TYPE, encode_payload


class Publisher:
    """
    Serializes payloads to canonical JSON and appends them to the stream.

    One Publisher may be shared by every agent in the process; calls to
    enqueue() are serialized on the single underlying connection.
    """

    def __init__(self, connection: BrokerConnection, monitor: Optional[CrawlerMonitor] = None):
        self.connection = connection
        self.monitor = monitor
        self.logger = logging.getLogger(__name__)
        self._lock = asyncio.Lock()
        self.published = 0

    async def enqueue(self, payload: Any) -> str:
        """
        Publish a payload and wait for the broker to accept it.

        Args:
            payload: a PageResult or any JSON-serializable value

        Returns:
            The entry id assigned by the broker

        Raises:
            SerializationError: the payload could not be encoded (not retried)
            TransportError: the broker connection failed or rejected the send
        """
        data = encode_payload(payload)

        async with self._lock:
            entry_id = await self.connection.send(data, JSON_CONTENT_TYPE)
            self.published += 1

        self.logger.debug(f"Message {entry_id} published to {self.connection.stream} "
                          f"({len(data)} chars)")
        if self.monitor:
            self.monitor.record_page_published()
        return entry_id

    async def close(self):
        await self.connection.close()
