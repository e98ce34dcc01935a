"""
Historical Backfill - Catch up a chain over past blocks.

============================================================
RESPONSIBILITY
============================================================
Walks fixed windows in ascending order from the first block
with no observed events up to an end block, publishing each
window on the chain channel like the live listener does.

============================================================
FAILURE MODEL
============================================================
- A window whose fetch fails transiently is split in half and
  each half retried, recursively, down to a minimum window
- A range that still fails at the minimum window is logged,
  recorded in the report and skipped
- The cursor advances with each window only while every window
  so far has succeeded; after the first failure it stays put
- The cursor only moves over windows that continue on from it;
  a run starting past cursor + 1 indexes rows but leaves the
  hole below it to the poll loop
- A channel closed mid-run ends the run; the unprocessed tail
  is reported as a failed range

============================================================
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from core.exceptions import TransientSourceError
from indexer.channel import ChannelClosedError, EventChannel
from indexer.collector import EventCollector
from indexer.config import ChainConfig, ListenerSettings
from indexer.listener import advance_cursor, read_cursor
from indexer.models import BatchSource, BlockRange, EventBatch
from onchain_adapters.base import ChainLogSource
from storage.database import Database
from storage.repositories import BurnEventRepository


logger = logging.getLogger(__name__)


@dataclass
class BackfillReport:
    """Outcome of one backfill run."""
    chain_id: int
    start_block: int
    end_block: int
    windows_completed: int = 0
    events_processed: int = 0
    failed_ranges: list[BlockRange] = field(default_factory=list)
    cursor: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return not self.failed_ranges

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "start_block": self.start_block,
            "end_block": self.end_block,
            "windows_completed": self.windows_completed,
            "events_processed": self.events_processed,
            "failed_ranges": [str(r) for r in self.failed_ranges],
            "cursor": self.cursor,
        }


class HistoricalBackfill:
    """Windowed catch-up for one chain."""

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

    @property
    def chain_id(self) -> int:
        return self._chain.chain_id

    async def resume_block(self) -> int:
        """First block after the highest observed event, not before start_block."""
        async with self._database.session() as session:
            highest = await BurnEventRepository(session).max_block_number(self.chain_id)
        if highest is None:
            return self._chain.start_block
        return max(self._chain.start_block, highest + 1)

    async def run(self, end_block: Optional[int] = None) -> BackfillReport:
        start = await self.resume_block()
        if end_block is None:
            head = await self._source.get_block_number()
            end_block = head - self._settings.confirmation_buffer

        report = BackfillReport(chain_id=self.chain_id, start_block=start, end_block=end_block)
        if start > end_block:
            logger.info(f"[chain {self.chain_id}] Backfill not needed (start {start}, end {end_block})")
            return report

        windows = BlockRange(start, end_block).split(self._settings.backfill_window)
        logger.info(
            f"[chain {self.chain_id}] Backfilling {start}..{end_block} "
            f"in {len(windows)} windows of {self._settings.backfill_window}"
        )

        cursor = await read_cursor(self._database, self._chain)
        if start > cursor + 1:
            logger.warning(
                f"[chain {self.chain_id}] Backfill starts at {start} but cursor is {cursor}; "
                f"blocks {cursor + 1}..{start - 1} are left to the poll loop, cursor not moved"
            )

        all_succeeded = True
        for window in windows:
            try:
                succeeded = await self._process_range(window, report)
            except ChannelClosedError:
                remaining = BlockRange(window.from_block, end_block)
                logger.warning(
                    f"[chain {self.chain_id}] Channel closed during backfill, "
                    f"stopping with {remaining} unprocessed"
                )
                report.failed_ranges.append(remaining)
                break
            if not succeeded:
                all_succeeded = False
            report.windows_completed += 1

            if all_succeeded and window.from_block <= cursor + 1:
                await advance_cursor(self._database, self.chain_id, window.to_block)
                cursor = max(cursor, window.to_block)
                report.cursor = cursor

        if report.failed_ranges:
            logger.warning(
                f"[chain {self.chain_id}] Backfill finished with {len(report.failed_ranges)} "
                f"failed ranges: {', '.join(str(r) for r in report.failed_ranges)}"
            )
        else:
            logger.info(
                f"[chain {self.chain_id}] Backfill complete: {report.events_processed} events"
            )
        return report

    async def _process_range(self, block_range: BlockRange, report: BackfillReport) -> bool:
        """Index a range, halving it on transient fetch failures."""
        collection = await self._collector.collect(block_range)

        if not collection.complete:
            error: Optional[TransientSourceError] = collection.first_error()
            if block_range.size <= self._settings.backfill_min_window:
                logger.error(
                    f"[chain {self.chain_id}] Backfill range {block_range} failed at minimum "
                    f"window, skipping: {error}"
                )
                report.failed_ranges.append(block_range)
                return False

            half = max(self._settings.backfill_min_window, block_range.size // 2)
            logger.warning(
                f"[chain {self.chain_id}] Backfill range {block_range} failed ({error}); "
                f"retrying in windows of {half}"
            )
            succeeded = True
            for part in block_range.split(half):
                if not await self._process_range(part, report):
                    succeeded = False
            return succeeded

        batch = EventBatch(
            chain_id=self.chain_id,
            block_range=block_range,
            events=collection.events,
            source=BatchSource.BACKFILL,
        )
        result = await self._channel.publish(batch)
        report.events_processed += result.processed
        if not result.succeeded:
            logger.error(
                f"[chain {self.chain_id}] Backfill range {block_range}: "
                f"{result.failed} events failed"
            )
            report.failed_ranges.append(block_range)
            return False
        return True
