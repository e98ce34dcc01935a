"""
Event Channel - Ordered per-chain hand-off from producers to the processor.

Delivery is at-least-once and in publish order. A producer awaits
the processor's acknowledgement on EventBatch.done before it may
move the chain cursor.
"""

import asyncio
import logging
from typing import Optional

from indexer.models import BatchResult, EventBatch


logger = logging.getLogger(__name__)


class ChannelClosedError(RuntimeError):
    """Raised when publishing to a closed channel."""


class EventChannel:
    """asyncio.Queue of EventBatch for a single chain."""

    _CLOSE = None

    def __init__(self, chain_id: int, maxsize: int = 0) -> None:
        self.chain_id = chain_id
        self._queue: asyncio.Queue[Optional[EventBatch]] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return self._queue.qsize()

    async def publish(self, batch: EventBatch) -> BatchResult:
        """
        Enqueue a batch and wait until the processor has handled it.

        Raises:
            ChannelClosedError: the channel no longer accepts batches
        """
        if self._closed:
            raise ChannelClosedError(f"Channel for chain {self.chain_id} is closed")
        await self._queue.put(batch)
        return await batch.done

    async def receive(self) -> Optional[EventBatch]:
        """Next batch, or None once the channel is closed and drained."""
        batch = await self._queue.get()
        self._queue.task_done()
        return batch

    async def close(self) -> None:
        """Stop accepting batches; already queued batches are still delivered."""
        if self._closed:
            return
        self._closed = True
        await self._queue.put(self._CLOSE)
        logger.debug(f"[chain {self.chain_id}] Event channel closed")
