"""
Broker transport over a Redis Stream.

The stream is the durable named channel; a consumer group tracks which
deliveries are still pending. XADD returning an entry id is the broker's
acknowledgment that a message was accepted.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError, ResponseError

from ..errors import TransportError
from ..utils.config import BrokerConfig


@dataclass(frozen=True)
class Delivery:
    """One message handed out by the broker, settled exactly once."""
    payload: bytes
    delivery_tag: str
    content_type: Optional[str] = None


def _text(value) -> str:
    if isinstance(value, (bytes, bytearray)):
        return value.decode('utf-8')
    return str(value)


class BrokerConnection:
    """
    Connection to the stream and its consumer group.

    Call connect() before use; every Redis failure afterwards surfaces as
    TransportError.
    """

    def __init__(self, config: BrokerConfig, redis_client: Optional[redis.Redis] = None):
        self.config = config
        self.stream = config.queue
        self.group = config.group
        self.consumer_tag = config.consumer_tag
        self.logger = logging.getLogger(__name__)
        self._client = redis_client
        self._owns_client = redis_client is None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise TransportError("Broker connection is not open")
        return self._client

    @property
    def address(self) -> str:
        """Connection address safe to log."""
        return f"redis://{self.config.host}:{self.config.port}/{self.config.db}"

    async def connect(self) -> 'BrokerConnection':
        """Open the connection, then declare the stream and consumer group."""
        if self._client is None:
            self._client = redis.Redis(
                host=self.config.host,
                port=self.config.port,
                db=self.config.db,
                username=self.config.user,
                password=self.config.password,
                decode_responses=False
            )

        self.logger.info(f"Connecting to broker at {self.address}")
        try:
            await self._client.ping()
        except RedisError as e:
            raise TransportError(f"Failed to connect to broker at {self.address}: {e}")
        self.logger.info("Broker connection established")

        await self.declare()
        return self

    async def declare(self):
        """Create the stream and consumer group if they do not exist."""
        try:
            await self.client.xgroup_create(self.stream, self.group, id='0', mkstream=True)
            self.logger.info(f"Declared stream {self.stream} with group {self.group}")
        except ResponseError as e:
            if 'BUSYGROUP' not in str(e):
                raise TransportError(f"Stream declare failed for {self.stream!r}: {e}")
            self.logger.debug(f"Consumer group {self.group} already exists")
        except RedisError as e:
            raise TransportError(f"Stream declare failed for {self.stream!r}: {e}")

    async def send(self, payload: str, content_type: str, stream: Optional[str] = None,
                   extra_fields: Optional[Dict[str, str]] = None) -> str:
        """Append a message and return the entry id the broker assigned."""
        fields = {'payload': payload, 'content_type': content_type}
        if extra_fields:
            fields.update(extra_fields)
        try:
            entry_id = await self.client.xadd(
                stream or self.stream,
                fields,
                maxlen=self.config.max_length,
                approximate=True
            )
        except RedisError as e:
            raise TransportError(f"Publish send failed: {e}")
        return _text(entry_id)

    async def receive(self, count: int, block_ms: int, entry_id: str = '>') -> List[Delivery]:
        """
        Read deliveries for this consumer.

        entry_id '>' reads new entries, blocking up to block_ms. Any other id
        re-reads this consumer's own unacknowledged entries after that id and
        never blocks.
        """
        try:
            response = await self.client.xreadgroup(
                self.group,
                self.consumer_tag,
                streams={self.stream: entry_id},
                count=count,
                block=block_ms if entry_id == '>' else None
            )
        except RedisError as e:
            raise TransportError(f"Consumer read failed: {e}")

        if not response:
            return []

        deliveries = []
        for _stream, entries in response:
            for message_id, fields in entries:
                deliveries.append(self._to_delivery(message_id, fields or {}))
        return deliveries

    async def claim_stale(self, min_idle_ms: int, count: int) -> int:
        """
        Take over entries another consumer left unacknowledged for at least
        min_idle_ms. Claimed entries join this consumer's pending list.
        """
        claimed = 0
        start_id = '0-0'
        try:
            while True:
                response = await self.client.xautoclaim(
                    self.stream,
                    self.group,
                    self.consumer_tag,
                    min_idle_ms,
                    start_id=start_id,
                    count=count
                )
                claimed += len(response[1])
                start_id = _text(response[0])
                if start_id == '0-0':
                    break
        except RedisError as e:
            raise TransportError(f"Claiming stale entries failed: {e}")

        if claimed:
            self.logger.info(f"Claimed {claimed} stale entries for {self.consumer_tag}")
        return claimed

    @staticmethod
    def _to_delivery(entry_id, fields: dict) -> Delivery:
        content_type = fields.get(b'content_type', fields.get('content_type'))
        payload = fields.get(b'payload', fields.get('payload', b''))
        if isinstance(payload, str):
            payload = payload.encode('utf-8')
        return Delivery(
            payload=payload,
            delivery_tag=_text(entry_id),
            content_type=_text(content_type) if content_type is not None else None
        )

    async def ack(self, delivery_tag: str):
        """Settle a delivery so it is never handed out again."""
        try:
            await self.client.xack(self.stream, self.group, delivery_tag)
        except RedisError as e:
            raise TransportError(f"Ack failed for tag {delivery_tag}: {e}")

    async def close(self):
        if self._client is not None and self._owns_client:
            self.logger.info("Closing broker connection")
            await self._client.aclose()
            self._client = None
