"""
Burn Event Repository.

============================================================
PURPOSE
============================================================
Append-only audit log of decoded burn-related logs.

============================================================
DATA LIFECYCLE
============================================================
- Mutability: IMMUTABLE except the nft_id link
- Inserts are ON CONFLICT DO NOTHING on
  (transaction_hash, event_type), so replays are no-ops

============================================================
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import distinct, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storage.models.burn import BurnEvent
from storage.repositories.base import BaseRepository


class BurnEventRepository(BaseRepository[BurnEvent]):
    """Repository for burn_events."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, BurnEvent, "BurnEventRepository")

    async def insert_event(
        self,
        chain_id: int,
        transaction_hash: str,
        block_number: int,
        log_index: int,
        block_timestamp: datetime,
        user_address: str,
        contract_address: str,
        event_type: str,
        xen_amount_direct: Optional[int] = None,
        xen_amount_accumulated: Optional[int] = None,
        nft_id: Optional[int] = None,
        raw_log: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Insert one audit row.

        Returns:
            True if a row was written, False if it already existed
        """
        stmt = self._insert().values(
            chain_id=chain_id,
            transaction_hash=transaction_hash,
            block_number=block_number,
            log_index=log_index,
            block_timestamp=block_timestamp,
            user_address=user_address,
            xen_amount_direct=xen_amount_direct,
            xen_amount_accumulated=xen_amount_accumulated,
            contract_address=contract_address,
            event_type=event_type,
            nft_id=nft_id,
            raw_log=raw_log,
        ).on_conflict_do_nothing(
            index_elements=[BurnEvent.transaction_hash, BurnEvent.event_type]
        )
        result = await self._execute(
            stmt,
            "insert_event",
            {"tx": transaction_hash, "event_type": event_type},
        )
        return result.rowcount > 0

    async def link_position(
        self,
        chain_id: int,
        transaction_hash: str,
        event_type: str,
        nft_id: int,
    ) -> int:
        """Stamp nft_id onto the antecedent row of the same transaction."""
        stmt = (
            update(BurnEvent)
            .where(BurnEvent.chain_id == chain_id)
            .where(BurnEvent.transaction_hash == transaction_hash)
            .where(BurnEvent.event_type == event_type)
            .values(nft_id=nft_id)
        )
        result = await self._execute(stmt, "link_position", {"tx": transaction_hash})
        return result.rowcount

    async def get(self, transaction_hash: str, event_type: str) -> Optional[BurnEvent]:
        stmt = (
            select(BurnEvent)
            .where(BurnEvent.transaction_hash == transaction_hash)
            .where(BurnEvent.event_type == event_type)
        )
        return await self._execute_scalar(stmt, "get")

    async def list_for_chain(self, chain_id: int) -> List[BurnEvent]:
        stmt = (
            select(BurnEvent)
            .where(BurnEvent.chain_id == chain_id)
            .order_by(BurnEvent.block_number, BurnEvent.log_index, BurnEvent.event_type)
        )
        return await self._execute_query(stmt, "list_for_chain")

    async def max_block_number(self, chain_id: int) -> Optional[int]:
        stmt = select(func.max(BurnEvent.block_number)).where(BurnEvent.chain_id == chain_id)
        return await self._execute_scalar(stmt, "max_block_number")

    async def distinct_block_numbers(self, chain_id: int) -> List[int]:
        stmt = (
            select(distinct(BurnEvent.block_number))
            .where(BurnEvent.chain_id == chain_id)
            .order_by(BurnEvent.block_number)
        )
        result = await self._execute(stmt, "distinct_block_numbers")
        return [row[0] for row in result.all()]

    async def digest_rows(
        self,
        chain_id: int,
    ) -> List[Tuple[str, int, str, Optional[int], Optional[int]]]:
        """Key fields of every row in a deterministic order."""
        stmt = (
            select(
                BurnEvent.transaction_hash,
                BurnEvent.block_number,
                BurnEvent.user_address,
                BurnEvent.xen_amount_direct,
                BurnEvent.xen_amount_accumulated,
            )
            .where(BurnEvent.chain_id == chain_id)
            .order_by(
                BurnEvent.block_number,
                BurnEvent.transaction_hash,
                BurnEvent.event_type,
            )
        )
        result = await self._execute(stmt, "digest_rows")
        return [tuple(row) for row in result.all()]
