"""
Event Collector - Fetches and decodes one block range.

============================================================
RESPONSIBILITY
============================================================
Runs the four category queries for a range concurrently and
turns raw logs into typed domain events.

- DIRECT_BURN:   XEN Transfer(from, 0x0, value)
- EXPLICIT_BURN: minter XENBurned / XBURNBurned
- POSITION_MINT: minter BurnNFTMinted
- CLAIM:         minter XBURNClaimed / EmergencyEnd and
                 NFT LockClaimed / LockBurned

Shared by the live listener and the historical backfill.

============================================================
FAILURE MODEL
============================================================
- A failed category fetch is reported, never hidden; callers
  must not advance the cursor over an incomplete range
- A log that fails to decode is logged and skipped

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from core.exceptions import DecodeError, TransientSourceError
from indexer.config import ChainConfig
from indexer.models import (
    BlockRange,
    ChainEvent,
    DirectBurnEvent,
    EmergencyEndEvent,
    EventCategory,
    ExplicitBurnEvent,
    MinterClaimEvent,
    PositionBurnedEvent,
    PositionClaimedEvent,
    PositionMintedEvent,
    XburnBurnedEvent,
)
from onchain_adapters import abi
from onchain_adapters.base import ChainLogSource
from onchain_adapters.models import LogFilter, RawLog


logger = logging.getLogger(__name__)


# ============================================================
# DECODING
# ============================================================

def _common(chain_id: int, log: RawLog, args: dict) -> dict:
    return dict(
        chain_id=chain_id,
        transaction_hash=log.transaction_hash,
        block_number=log.block_number,
        log_index=log.log_index,
        contract_address=log.address,
        args=args,
    )


def _direct_burn(chain_id: int, log: RawLog, args: dict) -> ChainEvent:
    return DirectBurnEvent(**_common(chain_id, log, args), sender=args["from"], amount=args["value"])


def _xen_burned(chain_id: int, log: RawLog, args: dict) -> ChainEvent:
    return ExplicitBurnEvent(**_common(chain_id, log, args), user=args["user"], amount=args["amount"])


def _xburn_burned(chain_id: int, log: RawLog, args: dict) -> ChainEvent:
    return XburnBurnedEvent(**_common(chain_id, log, args), user=args["user"], amount=args["amount"])


def _minted(chain_id: int, log: RawLog, args: dict) -> ChainEvent:
    return PositionMintedEvent(
        **_common(chain_id, log, args),
        user=args["user"],
        token_id=args["tokenId"],
        xen_amount=args["xenAmount"],
        term_days=args["termDays"],
    )


def _xburn_claimed(chain_id: int, log: RawLog, args: dict) -> ChainEvent:
    return MinterClaimEvent(
        **_common(chain_id, log, args),
        user=args["user"],
        base_amount=args["baseAmount"],
        bonus_amount=args["bonusAmount"],
    )


def _emergency_end(chain_id: int, log: RawLog, args: dict) -> ChainEvent:
    return EmergencyEndEvent(
        **_common(chain_id, log, args),
        user=args["user"],
        base_amount=args["baseAmount"],
    )


def _lock_claimed(chain_id: int, log: RawLog, args: dict) -> ChainEvent:
    return PositionClaimedEvent(**_common(chain_id, log, args), token_id=args["tokenId"])


def _lock_burned(chain_id: int, log: RawLog, args: dict) -> ChainEvent:
    return PositionBurnedEvent(**_common(chain_id, log, args), token_id=args["tokenId"])


_BUILDERS: dict[str, tuple[abi.EventDefinition, Callable[[int, RawLog, dict], ChainEvent]]] = {
    abi.TRANSFER.topic: (abi.TRANSFER, _direct_burn),
    abi.XEN_BURNED.topic: (abi.XEN_BURNED, _xen_burned),
    abi.XBURN_BURNED.topic: (abi.XBURN_BURNED, _xburn_burned),
    abi.BURN_NFT_MINTED.topic: (abi.BURN_NFT_MINTED, _minted),
    abi.XBURN_CLAIMED.topic: (abi.XBURN_CLAIMED, _xburn_claimed),
    abi.EMERGENCY_END.topic: (abi.EMERGENCY_END, _emergency_end),
    abi.LOCK_CLAIMED.topic: (abi.LOCK_CLAIMED, _lock_claimed),
    abi.LOCK_BURNED.topic: (abi.LOCK_BURNED, _lock_burned),
}


def decode_event(chain_id: int, log: RawLog) -> ChainEvent:
    """
    Decode one raw log into its domain event.

    Raises:
        DecodeError: unknown topic0 or malformed payload
    """
    entry = _BUILDERS.get(log.topic0 or "")
    if entry is None:
        raise DecodeError(
            f"Unrecognised event topic {log.topic0}",
            transaction_hash=log.transaction_hash,
            log_index=log.log_index,
        )
    definition, build = entry
    return build(chain_id, log, definition.decode(log))


# ============================================================
# COLLECTION
# ============================================================

@dataclass
class CollectionResult:
    """Decoded events of one range plus per-category fetch outcome."""
    block_range: BlockRange
    events: list[ChainEvent] = field(default_factory=list)
    failed_categories: dict[EventCategory, TransientSourceError] = field(default_factory=dict)
    skipped_logs: int = 0

    @property
    def complete(self) -> bool:
        return not self.failed_categories

    def first_error(self) -> Optional[TransientSourceError]:
        return next(iter(self.failed_categories.values()), None)


def category_filters(chain: ChainConfig) -> dict[EventCategory, LogFilter]:
    """The eth_getLogs filter for each category of a chain."""
    minter = chain.minter_contract_address
    return {
        EventCategory.DIRECT_BURN: LogFilter(
            addresses=(chain.xen_contract_address,),
            topics=(abi.TRANSFER.topic, None, abi.ZERO_ADDRESS_TOPIC),
        ),
        EventCategory.EXPLICIT_BURN: LogFilter(
            addresses=(minter,),
            topics=(abi.topics_for([abi.XEN_BURNED, abi.XBURN_BURNED]),),
        ),
        EventCategory.POSITION_MINT: LogFilter(
            addresses=(minter,),
            topics=(abi.BURN_NFT_MINTED.topic,),
        ),
        EventCategory.CLAIM: LogFilter(
            addresses=(minter, chain.nft_contract_address),
            topics=(abi.topics_for([
                abi.XBURN_CLAIMED,
                abi.EMERGENCY_END,
                abi.LOCK_CLAIMED,
                abi.LOCK_BURNED,
            ]),),
        ),
    }


class EventCollector:
    """Concurrent category fetch and decode for one chain."""

    def __init__(self, chain: ChainConfig, source: ChainLogSource) -> None:
        self._chain = chain
        self._source = source
        self._filters = category_filters(chain)

    @property
    def chain_id(self) -> int:
        return self._chain.chain_id

    async def collect(self, block_range: BlockRange) -> CollectionResult:
        categories = list(self._filters)
        outcomes = await asyncio.gather(
            *(self._fetch(category, block_range) for category in categories),
            return_exceptions=True,
        )

        result = CollectionResult(block_range=block_range)
        for category, outcome in zip(categories, outcomes):
            if isinstance(outcome, TransientSourceError):
                logger.error(
                    f"[chain {self.chain_id}] {category.value} fetch failed for "
                    f"{block_range}: {outcome}"
                )
                result.failed_categories[category] = outcome
                continue
            if isinstance(outcome, BaseException):
                raise outcome

            for log in outcome:
                try:
                    result.events.append(decode_event(self.chain_id, log))
                except DecodeError as e:
                    result.skipped_logs += 1
                    logger.warning(f"[chain {self.chain_id}] Skipping log: {e.to_log_format()}")

        result.events.sort(key=lambda event: event.sort_key)
        return result

    async def _fetch(self, category: EventCategory, block_range: BlockRange) -> list[RawLog]:
        return await self._source.get_logs(
            self._filters[category],
            block_range.from_block,
            block_range.to_block,
        )
