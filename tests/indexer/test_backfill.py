"""
Historical Backfill Tests.

============================================================
PURPOSE
============================================================
Windowed catch-up with recursive halving on failed fetches.

TEST PRINCIPLES:
- Failing windows are halved down to the minimum window
- A range failing at the minimum window is reported, not hidden
- The cursor stops at the last window before the first failure
- The cursor never jumps over blocks below the resume point

============================================================
"""

import pytest

from indexer.backfill import HistoricalBackfill
from indexer.config import ListenerSettings
from indexer.listener import EventListener, read_cursor
from indexer.models import BlockRange
from onchain_adapters import abi
from storage.repositories import BurnEventRepository
from tests.fakes import ALICE, BOB, chain_config, nft_minted, xen_burned


@pytest.fixture
def settings():
    return ListenerSettings(backfill_window=400, backfill_min_window=100)


@pytest.fixture
def backfill(chain, settings, seeded_database, source, channel):
    return HistoricalBackfill(chain, settings, seeded_database, source, channel)


class TestHistoricalBackfill:

    @pytest.mark.asyncio
    async def test_full_run(self, backfill, source, seeded_database, chain):
        source.add(xen_burned(50, ALICE, 10), xen_burned(700, BOB, 10))

        report = await backfill.run()

        assert report.succeeded
        assert (report.start_block, report.end_block) == (1, 995)
        assert report.windows_completed == 3
        assert report.events_processed == 2
        assert report.cursor == 995
        assert await read_cursor(seeded_database, chain) == 995

    @pytest.mark.asyncio
    async def test_explicit_end_block(self, backfill, source):
        report = await backfill.run(end_block=250)

        assert report.windows_completed == 1
        assert report.cursor == 250

    @pytest.mark.asyncio
    async def test_failing_window_is_halved(self, backfill, source):
        source.failing_ranges.append((450, 460))
        source.add(xen_burned(700, ALICE, 10))

        report = await backfill.run()

        assert report.failed_ranges == [BlockRange(401, 500)]
        assert report.events_processed == 1
        queried = {(start, end) for _, start, end in source.get_logs_calls}
        assert {(401, 800), (401, 600), (401, 500), (501, 600), (601, 800)} <= queried

    @pytest.mark.asyncio
    async def test_cursor_stops_before_failure(self, backfill, source, seeded_database, chain):
        source.failing_ranges.append((450, 460))

        report = await backfill.run()

        assert not report.succeeded
        assert report.windows_completed == 3
        assert report.cursor == 400
        assert await read_cursor(seeded_database, chain) == 400
        assert report.to_dict()["failed_ranges"] == ["[401,500]"]

    @pytest.mark.asyncio
    async def test_resumes_after_highest_event(self, backfill, source):
        source.add(xen_burned(300, ALICE, 10))
        await backfill.run(end_block=400)

        assert await backfill.resume_block() == 301

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, backfill, source):
        source.head = 3

        report = await backfill.run()

        assert report.windows_completed == 0
        assert report.cursor is None

    @pytest.mark.asyncio
    async def test_cursor_not_moved_over_unindexed_blocks(self, settings, seeded_database, source, channel):
        chain = chain_config(batch_size=1000)
        source.add(nft_minted(200, ALICE, 1, 1000, 30), xen_burned(500, BOB, 10))
        listener = EventListener(chain, ListenerSettings(), seeded_database, source, channel)

        source.failing_topics.add(abi.BURN_NFT_MINTED.topic)
        _, committed, _ = await listener.poll_once()
        assert not committed
        source.failing_topics.clear()

        report = await HistoricalBackfill(chain, settings, seeded_database, source, channel).run()

        assert report.start_block == 501
        assert report.succeeded
        assert report.cursor is None
        assert await read_cursor(seeded_database, chain) == 0

        block_range, committed, _ = await listener.poll_once()

        assert block_range == BlockRange(1, 995)
        assert committed
        async with seeded_database.session() as session:
            rows = await BurnEventRepository(session).list_for_chain(chain.chain_id)
        assert (200, "BurnNFTMinted") in {(row.block_number, row.event_type) for row in rows}

    @pytest.mark.asyncio
    async def test_channel_closed_mid_run(self, backfill, source, seeded_database, chain, channel):
        fetch = source.get_logs

        async def close_at_second_window(log_filter, from_block, to_block):
            if from_block == 401 and not channel.closed:
                await channel.close()
            return await fetch(log_filter, from_block, to_block)

        source.get_logs = close_at_second_window

        report = await backfill.run()

        assert report.windows_completed == 1
        assert report.cursor == 400
        assert report.failed_ranges == [BlockRange(401, 995)]
        assert await read_cursor(seeded_database, chain) == 400
