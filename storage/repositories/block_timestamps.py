"""
Block Timestamp Repository.

Durable tier of the block -> timestamp lookup. Rows are immutable
facts, so writes are ON CONFLICT DO NOTHING.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storage.models.burn import BlockTimestamp
from storage.repositories.base import BaseRepository


class BlockTimestampRepository(BaseRepository[BlockTimestamp]):
    """Repository for block_timestamps."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, BlockTimestamp, "BlockTimestampRepository")

    async def get(self, chain_id: int, block_number: int) -> Optional[datetime]:
        stmt = (
            select(BlockTimestamp.block_timestamp)
            .where(BlockTimestamp.chain_id == chain_id)
            .where(BlockTimestamp.block_number == block_number)
        )
        return await self._execute_scalar(stmt, "get")

    async def save(self, chain_id: int, block_number: int, block_timestamp: datetime) -> None:
        stmt = self._insert().values(
            chain_id=chain_id,
            block_number=block_number,
            block_timestamp=block_timestamp,
        ).on_conflict_do_nothing(
            index_elements=[BlockTimestamp.chain_id, BlockTimestamp.block_number]
        )
        await self._execute(stmt, "save", {"chain_id": chain_id, "block": block_number})
