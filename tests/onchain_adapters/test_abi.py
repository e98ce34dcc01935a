"""
ABI Codec Tests.

============================================================
PURPOSE
============================================================
Verify topic hashes, log decoding and eth_call encoding for
every event and view function the indexer uses.

============================================================
"""

import pytest
from eth_abi import encode

from core.exceptions import DecodeError
from onchain_adapters import abi
from onchain_adapters.models import RawLog
from tests.fakes import ALICE, MINTER, NFT, make_log, nft_minted, transfer_burn


class TestEventDefinitions:

    def test_transfer_topic_is_erc20_transfer(self):
        assert abi.TRANSFER.topic == (
            "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
        )

    def test_signatures(self):
        assert abi.BURN_NFT_MINTED.signature == "BurnNFTMinted(address,uint256,uint256,uint256)"
        assert abi.LOCK_CLAIMED.signature == "LockClaimed(uint256)"

    def test_topic_lookup_covers_all_events(self):
        assert len(abi.EVENTS_BY_TOPIC) == len(abi.ALL_EVENTS) == 8

    def test_zero_address_topic(self):
        assert abi.ZERO_ADDRESS_TOPIC == "0x" + "0" * 64

    def test_address_topic_pads_and_lowercases(self):
        topic = abi.address_topic("0x" + "AB" * 20)

        assert topic == "0x" + "0" * 24 + "ab" * 20


class TestLogDecoding:

    def test_decode_transfer(self):
        log = transfer_burn(10, ALICE, 5 * 10**18)

        values = abi.TRANSFER.decode(log)

        assert values == {"from": ALICE, "to": abi.ZERO_ADDRESS, "value": 5 * 10**18}

    def test_decode_mint_with_two_indexed_params(self):
        log = nft_minted(10, ALICE, token_id=42, xen_amount=10**24, term_days=30)

        values = abi.BURN_NFT_MINTED.decode(log)

        assert values["user"] == ALICE
        assert values["tokenId"] == 42
        assert values["xenAmount"] == 10**24
        assert values["termDays"] == 30

    def test_decode_large_uint(self):
        log = make_log(abi.XEN_BURNED, MINTER, 1, {"user": ALICE, "amount": 2**256 - 1})

        assert abi.XEN_BURNED.decode(log)["amount"] == 2**256 - 1

    def test_wrong_topic_raises(self):
        log = transfer_burn(10, ALICE, 1)

        with pytest.raises(DecodeError):
            abi.XEN_BURNED.decode(log)

    def test_missing_indexed_topic_raises(self):
        log = make_log(abi.LOCK_CLAIMED, NFT, 1, {"tokenId": 7})
        truncated = RawLog(
            address=log.address,
            topics=log.topics[:1],
            data=log.data,
            block_number=1,
            transaction_hash=log.transaction_hash,
            log_index=0,
        )

        with pytest.raises(DecodeError) as exc_info:
            abi.LOCK_CLAIMED.decode(truncated)

        assert "indexed topics" in exc_info.value.message

    def test_short_payload_raises(self):
        log = make_log(abi.XBURN_CLAIMED, MINTER, 1, {"user": ALICE, "baseAmount": 1, "bonusAmount": 2})
        broken = RawLog(
            address=log.address,
            topics=log.topics,
            data=log.data[:66],
            block_number=1,
            transaction_hash=log.transaction_hash,
            log_index=0,
        )

        with pytest.raises(DecodeError):
            abi.XBURN_CLAIMED.decode(broken)


class TestFunctionDefinitions:

    def test_owner_of_selector(self):
        assert abi.OWNER_OF.selector.hex() == "6352211e"

    def test_encode_call(self):
        data = abi.CALCULATE_REWARD.encode_call(10**24, 30)

        assert data.startswith("0x" + abi.CALCULATE_REWARD.selector.hex())
        assert data[10:] == encode(["uint256", "uint256"], [10**24, 30]).hex()

    def test_encode_call_without_args(self):
        assert abi.GET_CURRENT_AMP.encode_call() == "0x" + abi.GET_CURRENT_AMP.selector.hex()

    def test_encode_call_rejects_bad_args(self):
        with pytest.raises(ValueError):
            abi.OWNER_OF.encode_call(-1)

    def test_decode_address_result(self):
        data = "0x" + encode(["address"], ["0x" + "AB" * 20]).hex()

        assert abi.OWNER_OF.decode_result(data) == ("0x" + "ab" * 20,)

    def test_decode_empty_result_raises(self):
        with pytest.raises(DecodeError):
            abi.GET_CURRENT_AMP.decode_result("0x")
