"""
Event Collector Tests.

============================================================
PURPOSE
============================================================
Verify the per-category queries, decoding and failure reporting
of EventCollector over the in-memory source.

============================================================
"""

import pytest

from core.exceptions import DecodeError
from indexer.collector import EventCollector, category_filters, decode_event
from indexer.models import (
    BlockRange,
    DirectBurnEvent,
    EventCategory,
    ExplicitBurnEvent,
    MinterClaimEvent,
    PositionClaimedEvent,
    PositionMintedEvent,
    XburnBurnedEvent,
)
from onchain_adapters import abi
from onchain_adapters.models import RawLog
from tests.fakes import (
    ALICE,
    BOB,
    CHAIN_ID,
    MINTER,
    XEN,
    lock_claimed,
    make_log,
    new_tx,
    nft_minted,
    transfer_burn,
    xburn_burned,
    xburn_claimed,
    xen_burned,
)


class TestDecodeEvent:

    def test_direct_burn(self):
        event = decode_event(CHAIN_ID, transfer_burn(5, ALICE, 100))

        assert isinstance(event, DirectBurnEvent)
        assert event.sender == ALICE
        assert event.amount == 100
        assert event.contract_address == XEN

    def test_minted(self):
        event = decode_event(CHAIN_ID, nft_minted(5, BOB, 9, 10**24, 45))

        assert isinstance(event, PositionMintedEvent)
        assert (event.user, event.token_id, event.xen_amount, event.term_days) == (BOB, 9, 10**24, 45)

    def test_claim_total(self):
        event = decode_event(CHAIN_ID, xburn_claimed(5, ALICE, 30, 12))

        assert isinstance(event, MinterClaimEvent)
        assert event.total_amount == 42

    def test_unknown_topic(self):
        log = RawLog(
            address=MINTER,
            topics=("0x" + "99" * 32,),
            data="0x",
            block_number=1,
            transaction_hash=new_tx(),
            log_index=0,
        )

        with pytest.raises(DecodeError):
            decode_event(CHAIN_ID, log)


class TestCategoryFilters:

    def test_direct_burns_filter_on_zero_recipient(self, chain):
        direct = category_filters(chain)[EventCategory.DIRECT_BURN]

        assert direct.addresses == (XEN,)
        assert direct.topics == (abi.TRANSFER.topic, None, abi.ZERO_ADDRESS_TOPIC)

    def test_claims_cover_minter_and_nft(self, chain):
        claims = category_filters(chain)[EventCategory.CLAIM]

        assert claims.addresses == (chain.minter_contract_address, chain.nft_contract_address)
        assert set(claims.topics[0]) == {
            abi.XBURN_CLAIMED.topic,
            abi.EMERGENCY_END.topic,
            abi.LOCK_CLAIMED.topic,
            abi.LOCK_BURNED.topic,
        }


class TestEventCollector:

    @pytest.mark.asyncio
    async def test_collects_all_categories_in_order(self, chain, source):
        tx = new_tx()
        source.add(
            lock_claimed(30, 1),
            xen_burned(10, ALICE, 1000, tx=tx, log_index=0),
            nft_minted(10, ALICE, 1, 1000, 30, tx=tx, log_index=1),
            transfer_burn(5, BOB, 50),
            xburn_burned(20, BOB, 7),
        )

        result = await EventCollector(chain, source).collect(BlockRange(1, 100))

        assert result.complete
        assert [type(e) for e in result.events] == [
            DirectBurnEvent,
            ExplicitBurnEvent,
            PositionMintedEvent,
            XburnBurnedEvent,
            PositionClaimedEvent,
        ]
        assert len(source.get_logs_calls) == 4

    @pytest.mark.asyncio
    async def test_ordinary_transfers_are_not_burns(self, chain, source):
        source.add(make_log(abi.TRANSFER, XEN, 5, {"from": ALICE, "to": BOB, "value": 1}))

        result = await EventCollector(chain, source).collect(BlockRange(1, 10))

        assert result.events == []

    @pytest.mark.asyncio
    async def test_range_bounds_are_inclusive(self, chain, source):
        source.add(transfer_burn(10, ALICE, 1), transfer_burn(11, ALICE, 1), transfer_burn(20, ALICE, 1))

        result = await EventCollector(chain, source).collect(BlockRange(11, 20))

        assert [e.block_number for e in result.events] == [11, 20]

    @pytest.mark.asyncio
    async def test_failed_category_is_reported(self, chain, source):
        source.add(transfer_burn(5, ALICE, 1), nft_minted(6, ALICE, 1, 1, 1))
        source.failing_topics.add(abi.BURN_NFT_MINTED.topic)

        result = await EventCollector(chain, source).collect(BlockRange(1, 10))

        assert not result.complete
        assert set(result.failed_categories) == {EventCategory.POSITION_MINT}
        assert result.first_error() is not None
        assert [type(e) for e in result.events] == [DirectBurnEvent]

    @pytest.mark.asyncio
    async def test_malformed_log_is_skipped(self, chain, source):
        good = xen_burned(5, ALICE, 10)
        bad = RawLog(
            address=MINTER,
            topics=good.topics,
            data="0x1234",
            block_number=6,
            transaction_hash=new_tx(),
            log_index=0,
        )
        source.add(good, bad)

        result = await EventCollector(chain, source).collect(BlockRange(1, 10))

        assert result.complete
        assert result.skipped_logs == 1
        assert len(result.events) == 1

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self, chain, source):
        async def broken(*args):
            raise RuntimeError("bug")

        source.get_logs = broken

        with pytest.raises(RuntimeError):
            await EventCollector(chain, source).collect(BlockRange(1, 10))
