"""
Event Listener - Live polling of one chain.

============================================================
RESPONSIBILITY
============================================================
Two loops per chain, both stopped by one asyncio.Event:

- Poll loop: every poll interval, index the next confirmed
  range after the cursor and advance the cursor once the
  processor has acknowledged the whole range
- Head watcher: every few seconds, if the head is well past
  the last completed tip, index the head block eagerly; this
  never moves the cursor

============================================================
GUARANTEES
============================================================
- At most one batch in flight per chain; overlapping triggers
  are dropped, not queued
- The cursor only moves when all four category fetches
  succeeded and the processor reported zero failed events
- stop() lets an in-flight batch finish
- A failing step is logged and the loop carries on at the next tick

============================================================
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from core.exceptions import TransientSourceError
from indexer.channel import ChannelClosedError, EventChannel
from indexer.collector import EventCollector
from indexer.config import ChainConfig, ListenerSettings
from indexer.models import (
    BatchResult,
    BatchSource,
    BlockRange,
    EventBatch,
    compute_next_range,
)
from onchain_adapters.base import ChainLogSource
from storage.database import Database, DatabaseError
from storage.repositories import ChainRepository, RepositoryException


logger = logging.getLogger(__name__)


async def advance_cursor(database: Database, chain_id: int, block_number: int) -> bool:
    async with database.transaction() as session:
        return await ChainRepository(session).advance_cursor(chain_id, block_number)


async def read_cursor(database: Database, chain: ChainConfig) -> int:
    """Last indexed block, never earlier than start_block - 1."""
    async with database.session() as session:
        cursor = await ChainRepository(session).get_cursor(chain.chain_id)
    return max(cursor or 0, chain.start_block - 1)


class EventListener:
    """Polls one chain and publishes batches on its channel."""

    def __init__(
        self,
        chain: ChainConfig,
        settings: ListenerSettings,
        database: Database,
        source: ChainLogSource,
        channel: EventChannel,
        collector: Optional[EventCollector] = None,
    ) -> None:
        self._chain = chain
        self._settings = settings
        self._database = database
        self._source = source
        self._channel = channel
        self._collector = collector or EventCollector(chain, source)

        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._in_flight = False

        self._last_tip: Optional[int] = None
        self._last_eager_block: Optional[int] = None
        self._last_poll_at: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._batches_committed = 0
        self._batches_dropped = 0

    @property
    def chain_id(self) -> int:
        return self._chain.chain_id

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    # =========================================================
    # LIFECYCLE
    # =========================================================

    def start_listening(self, poll_interval_seconds: Optional[float] = None) -> None:
        """Start the poll loop and head watcher as background tasks."""
        if self.is_running:
            return
        interval = poll_interval_seconds or self._settings.poll_interval_seconds
        self._stop.clear()
        self._tasks = [
            asyncio.create_task(self._poll_loop(interval), name=f"poll-{self.chain_id}"),
            asyncio.create_task(self._head_loop(), name=f"head-{self.chain_id}"),
        ]
        logger.info(
            f"[chain {self.chain_id}] Listening every {interval}s "
            f"(buffer {self._settings.confirmation_buffer}, batch {self._chain.batch_size})"
        )

    async def stop(self) -> None:
        """Signal both loops and wait for them to return."""
        self._stop.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info(f"[chain {self.chain_id}] Listener stopped")

    async def _sleep(self, seconds: float) -> bool:
        """Wait for `seconds` or the stop signal; True if stopping."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _poll_loop(self, interval: float) -> None:
        while not self._stop.is_set():
            if await self._guarded(self._poll_step):
                continue
            if await self._sleep(interval):
                break

    async def _head_loop(self) -> None:
        while not self._stop.is_set():
            if await self._sleep(self._settings.head_poll_interval_seconds):
                break
            await self._guarded(self.check_head)

    async def _guarded(self, step: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await step()
        except ChannelClosedError:
            logger.info(f"[chain {self.chain_id}] Channel closed, stopping listener")
            self._stop.set()
        except (TransientSourceError, DatabaseError, RepositoryException) as e:
            self._last_error = str(e)
            logger.error(f"[chain {self.chain_id}] Poll failed: {e}")
        except Exception as e:
            self._last_error = f"{type(e).__name__}: {e}"
            logger.exception(f"[chain {self.chain_id}] Unexpected error in listener step: {e}")
        return None

    async def _poll_step(self) -> bool:
        """Run one poll; True when confirmed blocks remain past the new cursor."""
        if self._stop.is_set():
            return False
        outcome = await self.poll_once()
        if outcome is None:
            return False
        block_range, committed, head = outcome
        return committed and block_range.to_block < head - self._settings.confirmation_buffer

    # =========================================================
    # POLLING
    # =========================================================

    async def poll_once(self) -> Optional[tuple[BlockRange, bool, int]]:
        """
        Index the next confirmed range after the cursor.

        Returns:
            (range, committed, head), or None when a batch was already
            in flight or nothing is confirmed yet
        """
        if self._in_flight:
            self._batches_dropped += 1
            logger.debug(f"[chain {self.chain_id}] Poll skipped, batch in flight")
            return None

        self._in_flight = True
        try:
            self._last_poll_at = datetime.now(timezone.utc)
            cursor = await read_cursor(self._database, self._chain)
            head = await self._source.get_block_number()
            block_range = compute_next_range(
                cursor,
                head,
                self._settings.confirmation_buffer,
                self._chain.batch_size,
            )
            if block_range is None:
                logger.debug(f"[chain {self.chain_id}] Nothing to index (cursor {cursor}, head {head})")
                return None

            committed = await self._index_range(block_range)
            return block_range, committed, head
        finally:
            self._in_flight = False

    async def check_head(self) -> Optional[BatchResult]:
        """Eagerly index the head block when it is far past the last tip."""
        if self._in_flight:
            return None

        self._in_flight = True
        try:
            head = await self._source.get_block_number()
            tip = self._last_tip
            if tip is None:
                tip = await read_cursor(self._database, self._chain)
            if head <= tip + self._settings.eager_block_threshold:
                return None
            if head == self._last_eager_block:
                return None

            logger.info(f"[chain {self.chain_id}] Head {head} is {head - tip} blocks past tip, indexing eagerly")
            collection = await self._collector.collect(BlockRange(head, head))
            batch = EventBatch(
                chain_id=self.chain_id,
                block_range=collection.block_range,
                events=collection.events,
                source=BatchSource.HEAD,
            )
            result = await self._channel.publish(batch)
            if collection.complete and result.succeeded:
                self._last_eager_block = head
            return result
        finally:
            self._in_flight = False

    async def _index_range(self, block_range: BlockRange) -> bool:
        collection = await self._collector.collect(block_range)
        batch = EventBatch(
            chain_id=self.chain_id,
            block_range=block_range,
            events=collection.events,
            source=BatchSource.POLL,
        )
        result = await self._channel.publish(batch)

        if not collection.complete:
            failed = ", ".join(category.value for category in collection.failed_categories)
            self._last_error = f"fetch failed for {failed}"
            logger.warning(
                f"[chain {self.chain_id}] {block_range} incomplete ({failed}); cursor not moved"
            )
            return False
        if not result.succeeded:
            self._last_error = f"{result.failed} events failed"
            logger.warning(
                f"[chain {self.chain_id}] {block_range} had {result.failed} failed events; "
                f"cursor not moved"
            )
            return False

        await advance_cursor(self._database, self.chain_id, block_range.to_block)
        self._batches_committed += 1
        self._last_tip = block_range.to_block
        self._last_error = None
        return True

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "in_flight": self._in_flight,
            "last_tip": self._last_tip,
            "last_eager_block": self._last_eager_block,
            "last_poll_at": self._last_poll_at.isoformat() if self._last_poll_at else None,
            "last_error": self._last_error,
            "batches_committed": self._batches_committed,
            "batches_dropped": self._batches_dropped,
        }
