"""
Burn Position Repository.

============================================================
PURPOSE
============================================================
Persistence for the burn position state machine.

- upsert_minted(): creates the row, or refreshes the mint
  fields on replay without touching status or claim fields
- close(): overwrites the terminal fields

The decision whether a close-out may overwrite an existing
terminal status belongs to the processor.

============================================================
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storage.models.burn import BurnPosition
from storage.repositories.base import BaseRepository


class BurnPositionRepository(BaseRepository[BurnPosition]):
    """Repository for burn_positions."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, BurnPosition, "BurnPositionRepository")

    async def get(self, chain_id: int, nft_id: int) -> Optional[BurnPosition]:
        stmt = (
            select(BurnPosition)
            .where(BurnPosition.chain_id == chain_id)
            .where(BurnPosition.nft_id == nft_id)
        )
        return await self._execute_scalar(stmt, "get")

    async def list_for_user(self, chain_id: int, user_address: str) -> List[BurnPosition]:
        stmt = (
            select(BurnPosition)
            .where(BurnPosition.chain_id == chain_id)
            .where(BurnPosition.user_address == user_address)
            .order_by(BurnPosition.maturity_timestamp)
        )
        return await self._execute_query(stmt, "list_for_user")

    async def upsert_minted(
        self,
        chain_id: int,
        nft_id: int,
        user_address: str,
        xen_burned_total: int,
        lock_period_days: int,
        maturity_timestamp: datetime,
        mint_transaction_hash: str,
        mint_block_timestamp: datetime,
        amplifier_at_burn: int,
        xburn_reward_potential: int,
        initial_status: str,
    ) -> None:
        """
        Create a position from its mint event.

        On conflict only the mint-derived columns are rewritten with
        the same values, so a replay leaves the row unchanged.
        """
        mint_values = dict(
            user_address=user_address,
            xen_burned_total=xen_burned_total,
            lock_period_days=lock_period_days,
            maturity_timestamp=maturity_timestamp,
            mint_transaction_hash=mint_transaction_hash,
            mint_block_timestamp=mint_block_timestamp,
            amplifier_at_burn=amplifier_at_burn,
            xburn_reward_potential=xburn_reward_potential,
        )
        stmt = self._insert().values(
            chain_id=chain_id,
            nft_id=nft_id,
            status=initial_status,
            **mint_values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[BurnPosition.chain_id, BurnPosition.nft_id],
            set_={key: stmt.excluded[key] for key in mint_values},
        )
        await self._execute(
            stmt, "upsert_minted", {"chain_id": chain_id, "nft_id": nft_id}
        )

    async def close(
        self,
        chain_id: int,
        nft_id: int,
        status: str,
        claimed_transaction_hash: str,
        claimed_block_timestamp: datetime,
        claimed_xburn_amount: int,
    ) -> bool:
        stmt = (
            update(BurnPosition)
            .where(BurnPosition.chain_id == chain_id)
            .where(BurnPosition.nft_id == nft_id)
            .values(
                status=status,
                claimed_transaction_hash=claimed_transaction_hash,
                claimed_block_timestamp=claimed_block_timestamp,
                claimed_xburn_amount=claimed_xburn_amount,
                updated_at=func.now(),
            )
        )
        result = await self._execute(
            stmt, "close", {"chain_id": chain_id, "nft_id": nft_id, "status": status}
        )
        return result.rowcount > 0
