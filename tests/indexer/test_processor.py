"""
Event Processor Tests.

============================================================
PURPOSE
============================================================
Drive decoded batches through EventProcessor and check the
audit log and burn position table.

TEST PRINCIPLES:
- Replaying a batch converges to the same rows
- Close-out attribution only uses same-transaction evidence
- A stored status is never replaced by a less specific one

============================================================
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import inspect

from indexer.channel import EventChannel
from indexer.collector import decode_event
from indexer.models import BatchSource, BlockRange, EventBatch
from onchain_adapters import abi
from onchain_adapters.exceptions import RpcError
from storage.repositories import (
    BurnEventRepository,
    BurnPositionRepository,
    DiagnosticsRepository,
)
from tests.fakes import (
    ALICE,
    BOB,
    CHAIN_ID,
    MINTER,
    NFT,
    address_result,
    emergency_end,
    lock_burned,
    lock_claimed,
    new_tx,
    nft_minted,
    transfer_burn,
    uint_result,
    xburn_burned,
    xburn_claimed,
    xen_burned,
)


async def run_batch(processor, source, *logs, batch_source=BatchSource.POLL):
    source.add(*logs)
    events = [decode_event(CHAIN_ID, log) for log in logs]
    blocks = [log.block_number for log in logs]
    batch = EventBatch(CHAIN_ID, BlockRange(min(blocks), max(blocks)), events, batch_source)
    return await processor.process_batch(batch)


async def get_position(database, nft_id):
    async with database.session() as session:
        return await BurnPositionRepository(session).get(CHAIN_ID, nft_id)


def row_values(row):
    """Every mapped column of a row, timestamps included."""
    return {attr.key: getattr(row, attr.key) for attr in inspect(type(row)).column_attrs}


async def get_event(database, tx, event_type):
    async with database.session() as session:
        return await BurnEventRepository(session).get(tx, event_type)


def mint_logs(block, user, token_id, amount=10**24, term_days=30):
    tx = new_tx()
    return tx, (
        xen_burned(block, user, amount, tx=tx, log_index=0),
        nft_minted(block, user, token_id, amount, term_days, tx=tx, log_index=1),
    )


def snapshot_calls(source, amplifier=2950, reward=5 * 10**20):
    source.set_call(MINTER, abi.GET_CURRENT_AMP, uint_result(amplifier))
    source.set_call(MINTER, abi.CALCULATE_REWARD, uint_result(reward))


class TestBurnEvents:
    """Audit rows for the burn categories."""

    @pytest.mark.asyncio
    async def test_explicit_burn_is_split(self, processor, source, seeded_database):
        tx = new_tx()

        result = await run_batch(processor, source, xen_burned(10, ALICE, 1000 * 10**18, tx=tx))

        row = await get_event(seeded_database, tx, "XENBurned")
        assert result.processed == 1
        assert row.xen_amount_direct == 800 * 10**18
        assert row.xen_amount_accumulated == 200 * 10**18
        assert row.user_address == ALICE
        assert row.raw_log["amount"] == str(1000 * 10**18)

    @pytest.mark.asyncio
    async def test_direct_burn_is_not_split(self, processor, source, seeded_database):
        tx = new_tx()

        await run_batch(processor, source, transfer_burn(10, BOB, 777, tx=tx))

        row = await get_event(seeded_database, tx, "Transfer")
        assert row.xen_amount_direct == 777
        assert row.xen_amount_accumulated is None
        assert row.user_address == BOB

    @pytest.mark.asyncio
    async def test_xburn_burned_amount(self, processor, source, seeded_database):
        tx = new_tx()

        await run_batch(processor, source, xburn_burned(10, ALICE, 55, tx=tx))

        row = await get_event(seeded_database, tx, "XBURNBurned")
        assert row.xen_amount_direct == 55

    @pytest.mark.asyncio
    async def test_replay_counts_duplicates(self, processor, source):
        log = xen_burned(10, ALICE, 100)
        await run_batch(processor, source, log)

        result = await processor.process_batch(
            EventBatch(CHAIN_ID, BlockRange(10, 10), [decode_event(CHAIN_ID, log)])
        )

        assert result.processed == 0
        assert result.duplicates == 1

    @pytest.mark.asyncio
    async def test_block_timestamp_is_stored(self, processor, source, seeded_database, block_service):
        tx = new_tx()

        await run_batch(processor, source, xen_burned(12, ALICE, 1, tx=tx))

        row = await get_event(seeded_database, tx, "XENBurned")
        assert row.block_timestamp == await block_service.get_block_timestamp(CHAIN_ID, 12)

    @pytest.mark.asyncio
    async def test_missing_block_fails_event(self, processor, source):
        source.missing_blocks.add(15)

        result = await run_batch(processor, source, xen_burned(15, ALICE, 1))

        assert result.failed == 1
        assert not result.succeeded


class TestPositionMint:
    """BurnNFTMinted creates the position and links the burn row."""

    @pytest.mark.asyncio
    async def test_mint_creates_locked_position(self, processor, source, seeded_database):
        snapshot_calls(source)
        tx, logs = mint_logs(20, ALICE, token_id=1, term_days=30)

        await run_batch(processor, source, *logs)

        position = await get_position(seeded_database, 1)
        assert position.status == "locked"
        assert position.user_address == ALICE
        assert position.xen_burned_total == 10**24
        assert position.lock_period_days == 30
        assert position.amplifier_at_burn == 2950
        assert position.xburn_reward_potential == 5 * 10**20
        assert position.maturity_timestamp == position.mint_block_timestamp + timedelta(days=30)
        assert position.mint_transaction_hash == tx

    @pytest.mark.asyncio
    async def test_snapshot_calls_use_mint_block(self, processor, source):
        snapshot_calls(source)
        _, logs = mint_logs(20, ALICE, token_id=1)

        await run_batch(processor, source, *logs)

        assert {block for _, _, block in source.call_log} == {20}

    @pytest.mark.asyncio
    async def test_burn_row_is_linked_to_nft(self, processor, source, seeded_database):
        snapshot_calls(source)
        tx, logs = mint_logs(20, ALICE, token_id=7)

        await run_batch(processor, source, *logs)

        assert (await get_event(seeded_database, tx, "XENBurned")).nft_id == 7
        assert (await get_event(seeded_database, tx, "BurnNFTMinted")).nft_id == 7

    @pytest.mark.asyncio
    async def test_failed_snapshot_stores_placeholders(self, processor, source, seeded_database):
        _, logs = mint_logs(20, ALICE, token_id=2)

        result = await run_batch(processor, source, *logs)

        position = await get_position(seeded_database, 2)
        assert result.succeeded
        assert position.amplifier_at_burn == 0
        assert position.xburn_reward_potential == 0

    @pytest.mark.asyncio
    async def test_replay_leaves_row_identical(self, processor, source, seeded_database):
        snapshot_calls(source)
        _, logs = mint_logs(20, ALICE, token_id=3)
        await run_batch(processor, source, *logs)
        before = row_values(await get_position(seeded_database, 3))
        source.call_results.clear()

        result = await processor.process_batch(
            EventBatch(CHAIN_ID, BlockRange(20, 20), [decode_event(CHAIN_ID, log) for log in logs])
        )

        after = row_values(await get_position(seeded_database, 3))
        assert result.duplicates == 2
        assert after == before
        assert after["amplifier_at_burn"] == 2950
        assert after["status"] == "locked"


class TestCloseOut:
    """LockClaimed attribution from same-transaction evidence."""

    async def _minted(self, processor, source, token_id=1, user=ALICE):
        snapshot_calls(source)
        _, logs = mint_logs(10, user, token_id=token_id)
        await run_batch(processor, source, *logs)

    @pytest.mark.asyncio
    async def test_regular_claim(self, processor, source, seeded_database):
        await self._minted(processor, source)
        tx = new_tx()

        result = await run_batch(
            processor, source,
            xburn_claimed(50, ALICE, 300, 50, tx=tx, log_index=0),
            lock_claimed(50, 1, tx=tx, log_index=1),
        )

        position = await get_position(seeded_database, 1)
        assert result.processed == 2
        assert position.status == "claimed"
        assert position.claimed_xburn_amount == 350
        assert position.claimed_transaction_hash == tx

    @pytest.mark.asyncio
    async def test_claim_picks_matching_user(self, processor, source, seeded_database):
        await self._minted(processor, source)
        tx = new_tx()

        await run_batch(
            processor, source,
            xburn_claimed(50, BOB, 1, 1, tx=tx, log_index=0),
            xburn_claimed(50, ALICE, 10, 5, tx=tx, log_index=1),
            lock_claimed(50, 1, tx=tx, log_index=2),
        )

        assert (await get_position(seeded_database, 1)).claimed_xburn_amount == 15

    @pytest.mark.asyncio
    async def test_emergency_by_owner(self, processor, source, seeded_database):
        await self._minted(processor, source)
        source.set_call(NFT, abi.OWNER_OF, address_result(ALICE))
        tx = new_tx()

        await run_batch(
            processor, source,
            emergency_end(50, ALICE, 400, tx=tx, log_index=0),
            lock_claimed(50, 1, tx=tx, log_index=1),
        )

        position = await get_position(seeded_database, 1)
        assert position.status == "emergency_withdrawn"
        assert position.claimed_xburn_amount == 400
        owner_calls = [c for c in source.call_log if c[0] == NFT]
        assert owner_calls[0][2] == 49

    @pytest.mark.asyncio
    async def test_emergency_by_other_user(self, processor, source, seeded_database):
        await self._minted(processor, source)
        source.set_call(NFT, abi.OWNER_OF, address_result(ALICE))
        tx = new_tx()

        await run_batch(
            processor, source,
            emergency_end(50, BOB, 400, tx=tx, log_index=0),
            lock_claimed(50, 1, tx=tx, log_index=1),
        )

        position = await get_position(seeded_database, 1)
        assert position.status == "claimed_unknown_type"
        assert position.claimed_xburn_amount == 0

    @pytest.mark.asyncio
    async def test_owner_lookup_failure(self, processor, source, seeded_database):
        await self._minted(processor, source)
        source.set_call(NFT, abi.OWNER_OF, RpcError("timeout", source_name="fake"))
        tx = new_tx()

        result = await run_batch(
            processor, source,
            emergency_end(50, ALICE, 400, tx=tx, log_index=0),
            lock_claimed(50, 1, tx=tx, log_index=1),
        )

        position = await get_position(seeded_database, 1)
        assert result.succeeded
        assert position.status == "emergency_withdrawn_owner_unverified"
        assert position.claimed_xburn_amount == 400

    @pytest.mark.asyncio
    async def test_unverified_upgraded_on_replay(self, processor, source, seeded_database):
        await self._minted(processor, source)
        tx = new_tx()
        logs = (
            emergency_end(50, ALICE, 400, tx=tx, log_index=0),
            lock_claimed(50, 1, tx=tx, log_index=1),
        )
        await run_batch(processor, source, *logs)
        source.set_call(NFT, abi.OWNER_OF, address_result(ALICE))

        await processor.process_batch(
            EventBatch(CHAIN_ID, BlockRange(50, 50), [decode_event(CHAIN_ID, log) for log in logs])
        )

        assert (await get_position(seeded_database, 1)).status == "emergency_withdrawn"

    @pytest.mark.asyncio
    async def test_no_evidence(self, processor, source, seeded_database):
        await self._minted(processor, source)

        await run_batch(processor, source, lock_claimed(50, 1))

        position = await get_position(seeded_database, 1)
        assert position.status == "claimed_unknown_type"
        assert position.claimed_xburn_amount == 0

    @pytest.mark.asyncio
    async def test_claimed_is_not_downgraded(self, processor, source, seeded_database):
        await self._minted(processor, source)
        tx = new_tx()
        await run_batch(
            processor, source,
            xburn_claimed(50, ALICE, 300, 50, tx=tx, log_index=0),
            lock_claimed(50, 1, tx=tx, log_index=1),
        )

        await run_batch(processor, source, lock_claimed(60, 1))

        position = await get_position(seeded_database, 1)
        assert position.status == "claimed"
        assert position.claimed_transaction_hash == tx

    @pytest.mark.asyncio
    async def test_unknown_position_is_referential_gap(self, processor, source, seeded_database):
        tx = new_tx()

        result = await run_batch(processor, source, lock_claimed(50, 99, tx=tx))

        assert result.referential_gaps == 1
        assert result.succeeded
        row = await get_event(seeded_database, tx, "LockClaimed")
        assert row.user_address == NFT
        async with seeded_database.session() as session:
            runs = await DiagnosticsRepository(session).list_validations(CHAIN_ID, "referential_gap")
        assert runs[0].status == "failure"
        assert runs[0].details["nft_id"] == "99"
        assert runs[0].details["transaction_hash"] == tx

    @pytest.mark.asyncio
    async def test_lock_burned_is_audited(self, processor, source, seeded_database):
        await self._minted(processor, source)
        tx = new_tx()

        await run_batch(processor, source, lock_burned(70, 1, tx=tx))

        row = await get_event(seeded_database, tx, "LockBurned")
        assert row.nft_id == 1
        assert row.user_address == ALICE
        assert (await get_position(seeded_database, 1)).status == "locked"


class TestProcessorLoop:

    @pytest.mark.asyncio
    async def test_run_acknowledges_batches(self, processor, source):
        channel = EventChannel(CHAIN_ID)
        task = asyncio.create_task(processor.run(channel))
        log = xen_burned(10, ALICE, 100)
        source.add(log)

        result = await channel.publish(
            EventBatch(CHAIN_ID, BlockRange(10, 10), [decode_event(CHAIN_ID, log)])
        )
        await channel.close()
        await task

        assert result.processed == 1
        assert processor.get_status()["batches_processed"] == 1
