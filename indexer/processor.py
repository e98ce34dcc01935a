"""
Event Processor - Persists decoded events and drives position state.

============================================================
RESPONSIBILITY
============================================================
Consumes EventBatch objects from a chain channel, in order, and
writes the audit log and the burn position table.

- Transfer (to 0x0)  -> audit row, amount in the direct column
- XENBurned          -> audit row, 80/20 direct/accumulated split
- BurnNFTMinted      -> position upsert + audit row + nft link
- XBURNClaimed       -> audit row
- XBURNBurned        -> audit row, amount in the direct column
- EmergencyEnd       -> audit row
- LockClaimed        -> audit row + position close-out
- LockBurned         -> audit row

============================================================
TRANSACTION MODEL
============================================================
- One database transaction per event
- Network reads (block timestamps, eth_call, receipts) happen
  before the transaction opens
- A failed event is counted in the BatchResult; the producer
  will not move the cursor and the range is replayed later
- Every write is conflict-tolerant, so replays converge

============================================================
CLOSE-OUT ATTRIBUTION
============================================================
A LockClaimed is resolved from the logs of its own transaction:
1. XBURNClaimed present -> claimed, base + bonus
2. EmergencyEnd present -> ownerOf(tokenId) at block - 1
   - owner is the emergency user -> emergency_withdrawn
   - owner differs               -> claimed_unknown_type, 0
   - call failed                 -> emergency_withdrawn_owner_unverified
3. neither                       -> claimed_unknown_type, 0

A resolution never overwrites a more specific one already stored.

============================================================
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from core.exceptions import (
    DecodeError,
    IndexerException,
    ReferentialGapError,
    TransientSourceError,
)
from indexer.block_service import BlockService
from indexer.channel import EventChannel
from indexer.config import ChainConfig
from indexer.models import (
    BatchResult,
    ChainEvent,
    DirectBurnEvent,
    EmergencyEndEvent,
    EventBatch,
    EventType,
    ExplicitBurnEvent,
    MinterClaimEvent,
    PositionBurnedEvent,
    PositionClaimedEvent,
    PositionMintedEvent,
    PositionStatus,
    XburnBurnedEvent,
    maturity_timestamp,
    split_burn_amount,
)
from onchain_adapters import abi
from onchain_adapters.base import ChainLogSource
from onchain_adapters.exceptions import ExecutionRevertedError
from storage.database import Database, DatabaseError
from storage.repositories import (
    BurnEventRepository,
    BurnPositionRepository,
    DiagnosticsRepository,
    RepositoryException,
)


logger = logging.getLogger(__name__)

# eth_call failures that degrade to a placeholder instead of failing the event
_CALL_ERRORS = (TransientSourceError, ExecutionRevertedError, DecodeError)

_EVENT_ERRORS = (IndexerException, DatabaseError, RepositoryException)


class EventProcessor:
    """Writes one chain's events to storage."""

    def __init__(
        self,
        chain: ChainConfig,
        database: Database,
        block_service: BlockService,
        source: ChainLogSource,
    ) -> None:
        self._chain = chain
        self._database = database
        self._block_service = block_service
        self._source = source

        self._handlers = {
            EventType.TRANSFER: self._handle_direct_burn,
            EventType.XEN_BURNED: self._handle_explicit_burn,
            EventType.XBURN_BURNED: self._handle_xburn_burned,
            EventType.BURN_NFT_MINTED: self._handle_position_minted,
            EventType.XBURN_CLAIMED: self._handle_minter_claim,
            EventType.EMERGENCY_END: self._handle_emergency_end,
            EventType.LOCK_CLAIMED: self._handle_position_claimed,
            EventType.LOCK_BURNED: self._handle_position_burned,
        }

        self._batches_processed = 0
        self._events_failed = 0

    @property
    def chain_id(self) -> int:
        return self._chain.chain_id

    # =========================================================
    # CONSUMER LOOP
    # =========================================================

    async def run(self, channel: EventChannel) -> None:
        """Consume batches until the channel is closed."""
        logger.info(f"[chain {self.chain_id}] Event processor started")
        while True:
            batch = await channel.receive()
            if batch is None:
                break
            try:
                result = await self.process_batch(batch)
            except Exception as e:
                logger.exception(
                    f"[chain {self.chain_id}] Batch {batch.block_range} aborted: {e}"
                )
                if not batch.done.done():
                    batch.done.set_exception(e)
                continue
            if not batch.done.done():
                batch.done.set_result(result)
        logger.info(f"[chain {self.chain_id}] Event processor stopped")

    async def process_batch(self, batch: EventBatch) -> BatchResult:
        result = BatchResult()
        for event in batch.events:
            try:
                written = await self.process_event(event)
            except ReferentialGapError as e:
                result.referential_gaps += 1
                await self._record_referential_gap(e)
            except _EVENT_ERRORS as e:
                result.failed += 1
                result.errors.append(f"{event.event_type.value} {event.transaction_hash}: {e}")
                logger.error(
                    f"[chain {self.chain_id}] Failed {event.event_type.value} "
                    f"tx={event.transaction_hash} block={event.block_number}: {e}"
                )
            else:
                if written:
                    result.processed += 1
                else:
                    result.duplicates += 1

        self._batches_processed += 1
        self._events_failed += result.failed
        logger.info(
            f"[chain {self.chain_id}] Batch {batch.block_range} ({batch.source.value}): "
            f"{result.processed} new, {result.duplicates} duplicate, {result.failed} failed"
        )
        return result

    async def process_event(self, event: ChainEvent) -> bool:
        """
        Persist one event.

        Returns:
            True if a new audit row was written, False on replay
        """
        handler = self._handlers[event.event_type]
        block_timestamp = await self._block_service.get_block_timestamp(
            self.chain_id, event.block_number
        )
        return await handler(event, block_timestamp)

    def get_status(self) -> dict:
        return {
            "batches_processed": self._batches_processed,
            "events_failed": self._events_failed,
        }

    # =========================================================
    # BURN HANDLERS
    # =========================================================

    async def _insert_audit(
        self,
        events: BurnEventRepository,
        event: ChainEvent,
        block_timestamp: datetime,
        user_address: Optional[str] = None,
        direct: Optional[int] = None,
        accumulated: Optional[int] = None,
        nft_id: Optional[int] = None,
    ) -> bool:
        return await events.insert_event(
            chain_id=self.chain_id,
            transaction_hash=event.transaction_hash,
            block_number=event.block_number,
            log_index=event.log_index,
            block_timestamp=block_timestamp,
            user_address=user_address or event.user_address,
            contract_address=event.contract_address,
            event_type=event.event_type.value,
            xen_amount_direct=direct,
            xen_amount_accumulated=accumulated,
            nft_id=nft_id,
            raw_log=event.raw_payload(),
        )

    async def _handle_direct_burn(self, event: DirectBurnEvent, block_timestamp: datetime) -> bool:
        async with self._database.transaction() as session:
            return await self._insert_audit(
                BurnEventRepository(session), event, block_timestamp, direct=event.amount,
            )

    async def _handle_explicit_burn(self, event: ExplicitBurnEvent, block_timestamp: datetime) -> bool:
        direct, accumulated = split_burn_amount(event.amount)
        async with self._database.transaction() as session:
            return await self._insert_audit(
                BurnEventRepository(session),
                event,
                block_timestamp,
                direct=direct,
                accumulated=accumulated,
            )

    async def _handle_xburn_burned(self, event: XburnBurnedEvent, block_timestamp: datetime) -> bool:
        async with self._database.transaction() as session:
            return await self._insert_audit(
                BurnEventRepository(session), event, block_timestamp, direct=event.amount,
            )

    async def _handle_minter_claim(self, event: MinterClaimEvent, block_timestamp: datetime) -> bool:
        async with self._database.transaction() as session:
            return await self._insert_audit(BurnEventRepository(session), event, block_timestamp)

    async def _handle_emergency_end(self, event: EmergencyEndEvent, block_timestamp: datetime) -> bool:
        async with self._database.transaction() as session:
            return await self._insert_audit(BurnEventRepository(session), event, block_timestamp)

    # =========================================================
    # POSITION HANDLERS
    # =========================================================

    async def _handle_position_minted(
        self,
        event: PositionMintedEvent,
        block_timestamp: datetime,
    ) -> bool:
        amplifier, reward = await self._snapshot_rewards(event)
        maturity = datetime.fromtimestamp(
            maturity_timestamp(int(block_timestamp.timestamp()), event.term_days),
            tz=timezone.utc,
        )

        async with self._database.transaction() as session:
            positions = BurnPositionRepository(session)
            events = BurnEventRepository(session)

            existing = await positions.get(self.chain_id, event.token_id)
            if existing is not None:
                if amplifier == 0 and existing.amplifier_at_burn:
                    amplifier = int(existing.amplifier_at_burn)
                if reward == 0 and existing.xburn_reward_potential:
                    reward = int(existing.xburn_reward_potential)

            await positions.upsert_minted(
                chain_id=self.chain_id,
                nft_id=event.token_id,
                user_address=event.user,
                xen_burned_total=event.xen_amount,
                lock_period_days=event.term_days,
                maturity_timestamp=maturity,
                mint_transaction_hash=event.transaction_hash,
                mint_block_timestamp=block_timestamp,
                amplifier_at_burn=amplifier,
                xburn_reward_potential=reward,
                initial_status=PositionStatus.LOCKED.value,
            )
            written = await self._insert_audit(
                events, event, block_timestamp, nft_id=event.token_id,
            )
            await events.link_position(
                self.chain_id,
                event.transaction_hash,
                EventType.XEN_BURNED.value,
                event.token_id,
            )
        return written

    async def _snapshot_rewards(self, event: PositionMintedEvent) -> tuple[int, int]:
        """Amplifier and reward potential at the mint block; zeros if unavailable."""
        minter = self._chain.minter_contract_address
        try:
            (amplifier,) = abi.GET_CURRENT_AMP.decode_result(
                await self._source.call(minter, abi.GET_CURRENT_AMP.encode_call(), event.block_number)
            )
            (reward,) = abi.CALCULATE_REWARD.decode_result(
                await self._source.call(
                    minter,
                    abi.CALCULATE_REWARD.encode_call(event.xen_amount, event.term_days),
                    event.block_number,
                )
            )
        except _CALL_ERRORS as e:
            logger.warning(
                f"[chain {self.chain_id}] Reward snapshot unavailable for NFT {event.token_id} "
                f"at block {event.block_number}, storing placeholders: {e}"
            )
            return 0, 0
        return int(amplifier), int(reward)

    async def _handle_position_claimed(
        self,
        event: PositionClaimedEvent,
        block_timestamp: datetime,
    ) -> bool:
        async with self._database.transaction() as session:
            position = await BurnPositionRepository(session).get(self.chain_id, event.token_id)
            written = await self._insert_audit(
                BurnEventRepository(session),
                event,
                block_timestamp,
                user_address=position.user_address if position is not None else None,
                nft_id=event.token_id,
            )
            position_user = position.user_address if position is not None else None

        if position_user is None:
            raise ReferentialGapError(
                self.chain_id,
                event.token_id,
                event.transaction_hash,
                block_number=event.block_number,
            )

        status, amount = await self._resolve_close_out(event, position_user)

        async with self._database.transaction() as session:
            positions = BurnPositionRepository(session)
            current = await positions.get(self.chain_id, event.token_id)
            current_status = PositionStatus.parse(current.status)

            if current_status == status and current.claimed_transaction_hash == event.transaction_hash:
                return written
            if not current_status.may_be_replaced_by(status):
                logger.info(
                    f"[chain {self.chain_id}] NFT {event.token_id} keeps status "
                    f"{current_status.value}; ignoring less specific {status.value} "
                    f"from {event.transaction_hash}"
                )
                return written

            await positions.close(
                chain_id=self.chain_id,
                nft_id=event.token_id,
                status=status.value,
                claimed_transaction_hash=event.transaction_hash,
                claimed_block_timestamp=block_timestamp,
                claimed_xburn_amount=amount,
            )
        logger.info(
            f"[chain {self.chain_id}] NFT {event.token_id} closed as {status.value} "
            f"({amount}) in {event.transaction_hash}"
        )
        return written

    async def _resolve_close_out(
        self,
        event: PositionClaimedEvent,
        position_user: str,
    ) -> tuple[PositionStatus, int]:
        """Attribute a LockClaimed from the logs of its transaction."""
        claims: list[dict] = []
        emergencies: list[dict] = []

        for log in await self._source.get_transaction_logs(event.transaction_hash):
            if log.address != self._chain.minter_contract_address:
                continue
            try:
                if log.topic0 == abi.XBURN_CLAIMED.topic:
                    claims.append(abi.XBURN_CLAIMED.decode(log))
                elif log.topic0 == abi.EMERGENCY_END.topic:
                    emergencies.append(abi.EMERGENCY_END.decode(log))
            except DecodeError as e:
                logger.warning(f"[chain {self.chain_id}] Ignoring receipt log: {e.to_log_format()}")

        if claims:
            claim = _pick_for_user(claims, position_user)
            return PositionStatus.CLAIMED, claim["baseAmount"] + claim["bonusAmount"]

        if emergencies:
            emergency = _pick_for_user(emergencies, position_user)
            try:
                owner = await self._owner_of(event.token_id, event.block_number - 1)
            except _CALL_ERRORS as e:
                logger.warning(
                    f"[chain {self.chain_id}] ownerOf({event.token_id}) failed, "
                    f"emergency withdrawal unverified: {e}"
                )
                return PositionStatus.EMERGENCY_WITHDRAWN_OWNER_UNVERIFIED, emergency["baseAmount"]

            if owner == emergency["user"]:
                return PositionStatus.EMERGENCY_WITHDRAWN, emergency["baseAmount"]

            logger.warning(
                f"[chain {self.chain_id}] EmergencyEnd user {emergency['user']} does not own "
                f"NFT {event.token_id} (owner {owner}) in {event.transaction_hash}"
            )
            return PositionStatus.CLAIMED_UNKNOWN_TYPE, 0

        logger.warning(
            f"[chain {self.chain_id}] No claim event next to LockClaimed for NFT "
            f"{event.token_id} in {event.transaction_hash}"
        )
        return PositionStatus.CLAIMED_UNKNOWN_TYPE, 0

    async def _owner_of(self, token_id: int, block_number: int) -> str:
        data = await self._source.call(
            self._chain.nft_contract_address,
            abi.OWNER_OF.encode_call(token_id),
            block_number,
        )
        (owner,) = abi.OWNER_OF.decode_result(data)
        return owner

    async def _handle_position_burned(
        self,
        event: PositionBurnedEvent,
        block_timestamp: datetime,
    ) -> bool:
        async with self._database.transaction() as session:
            position = await BurnPositionRepository(session).get(self.chain_id, event.token_id)
            written = await self._insert_audit(
                BurnEventRepository(session),
                event,
                block_timestamp,
                user_address=position.user_address if position is not None else None,
                nft_id=event.token_id,
            )

        if position is None:
            logger.warning(f"[chain {self.chain_id}] LockBurned for unknown NFT {event.token_id}")
        elif not PositionStatus.parse(position.status).is_terminal:
            logger.warning(
                f"[chain {self.chain_id}] NFT {event.token_id} burned while still "
                f"{position.status}"
            )
        return written

    # =========================================================
    # DIAGNOSTICS
    # =========================================================

    async def _record_referential_gap(self, error: ReferentialGapError) -> None:
        logger.warning(f"[chain {self.chain_id}] {error.to_log_format()}")
        try:
            async with self._database.transaction() as session:
                await DiagnosticsRepository(session).record_validation(
                    chain_id=self.chain_id,
                    validation_type="referential_gap",
                    status="failure",
                    details={
                        "nft_id": str(error.nft_id),
                        "transaction_hash": error.transaction_hash,
                        "block_number": error.block_number,
                    },
                )
        except (DatabaseError, RepositoryException) as e:
            logger.error(f"[chain {self.chain_id}] Could not record referential gap: {e}")


def _pick_for_user(entries: list[dict], user: str) -> dict:
    for entry in entries:
        if entry["user"] == user:
            return entry
    return entries[0]
