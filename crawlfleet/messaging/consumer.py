"""
Consumer side of the outbound stream.

Each delivery is settled exactly once: acknowledged when the handler
succeeds, rejected without requeue when decoding or the handler fails.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from ..errors import CrawlerError, DecodeError
from ..utils.monitoring import CrawlerMonitor
from .broker import BrokerConnection, Delivery
from .messages import PageResult, content_type_matches

Handler = Callable[[Any], Union[Optional[bool], Awaitable[Optional[bool]]]]
Decoder = Callable[[bytes], Any]


@dataclass
class ConsumeStats:
    """Outcome counts for one consume() call."""
    received: int = 0
    acked: int = 0
    rejected: int = 0
    decode_failures: int = 0


class Consumer:
    """
    Pulls deliveries from the stream's consumer group and hands decoded
    payloads to a handler.

    A handler fails by raising or by returning False. Failed messages are
    dropped after one attempt (optionally copied to a dead-letter stream).
    Transport errors end the loop and propagate.
    """

    def __init__(self, connection: BrokerConnection, decoder: Decoder = PageResult.from_json,
                 expected_content_type: Optional[str] = None,
                 monitor: Optional[CrawlerMonitor] = None):
        self.connection = connection
        self.decoder = decoder
        self.expected_content_type = (expected_content_type
                                      or connection.config.expected_content_type)
        self.dead_letter_stream = connection.config.dead_letter_stream
        self.batch_size = connection.config.batch_size
        self.block_ms = connection.config.block_ms
        self.claim_idle_ms = connection.config.claim_idle_ms
        self.monitor = monitor
        self.logger = logging.getLogger(__name__)
        self._stop = asyncio.Event()

    def stop(self):
        """End the consume loop after the current batch."""
        self._stop.set()

    async def consume(self, handler: Handler, max_messages: Optional[int] = None) -> ConsumeStats:
        """
        Consume deliveries until stopped or max_messages have been settled.

        Entries this consumer received earlier but never settled are handled
        first, after claiming stale entries from other consumers when
        claim_idle_ms is set. New entries are read once that backlog is empty.

        Raises:
            TransportError: reading, acknowledging or rejecting failed
        """
        stats = ConsumeStats()
        self._stop.clear()
        self.logger.info(f"Starting consumer {self.connection.consumer_tag} "
                         f"on {self.connection.stream}")

        if self.claim_idle_ms is not None:
            await self.connection.claim_stale(self.claim_idle_ms, self.batch_size)

        entry_id = '0'
        while not self._stop.is_set():
            if max_messages is not None and stats.received >= max_messages:
                break

            count = self.batch_size
            if max_messages is not None:
                count = min(count, max_messages - stats.received)

            deliveries = await self.connection.receive(count, self.block_ms, entry_id=entry_id)
            if entry_id != '>' and not deliveries:
                self.logger.debug("Pending backlog drained, reading new entries")
                entry_id = '>'
                continue
            for delivery in deliveries:
                stats.received += 1
                await self._handle(delivery, handler, stats)

        self.logger.info(f"Consumer stopped: {stats.acked} acked, {stats.rejected} rejected")
        return stats

    async def _handle(self, delivery: Delivery, handler: Handler, stats: ConsumeStats):
        tag = delivery.delivery_tag
        self.logger.debug(f"Received message {tag} ({len(delivery.payload)} bytes)")

        try:
            decoded = self.decode(delivery)
        except DecodeError as e:
            self.logger.warning(f"Decode failed for tag {tag}: {e}")
            stats.decode_failures += 1
            await self.reject(delivery, f"decode: {e}")
            stats.rejected += 1
            return

        try:
            result = handler(decoded)
            if inspect.isawaitable(result):
                result = await result
        except CrawlerError as e:
            await self._handler_failed(delivery, str(e), stats)
            return
        except Exception as e:
            self.logger.exception(f"Unexpected handler error for tag {tag}")
            await self._handler_failed(delivery, repr(e), stats)
            return

        if result is False:
            await self._handler_failed(delivery, "handler reported failure", stats)
            return

        await self.connection.ack(tag)
        stats.acked += 1
        self.logger.debug(f"Acked tag {tag}")
        if self.monitor:
            self.monitor.record_message_settled('acked')

    def decode(self, delivery: Delivery) -> Any:
        """Check the content type, then run the decoder."""
        if not content_type_matches(self.expected_content_type, delivery.content_type):
            raise DecodeError(f"Unsupported content type: {delivery.content_type!r}")
        try:
            return self.decoder(delivery.payload)
        except DecodeError:
            raise
        except Exception as e:
            raise DecodeError(f"Decoder failed: {e!r}") from e

    async def reject(self, delivery: Delivery, reason: str):
        """Settle a delivery without requeue."""
        if self.dead_letter_stream:
            await self.connection.send(
                delivery.payload.decode('utf-8', errors='replace'),
                delivery.content_type or '',
                stream=self.dead_letter_stream,
                extra_fields={'reason': reason, 'delivery_tag': delivery.delivery_tag}
            )
        await self.connection.ack(delivery.delivery_tag)
        self.logger.debug(f"Rejected tag {delivery.delivery_tag} (requeue=false)")
        if self.monitor:
            self.monitor.record_message_settled('rejected')

    async def _handler_failed(self, delivery: Delivery, reason: str, stats: ConsumeStats):
        self.logger.warning(f"Handler error for tag {delivery.delivery_tag}: {reason}")
        await self.reject(delivery, f"handler: {reason}")
        stats.rejected += 1
