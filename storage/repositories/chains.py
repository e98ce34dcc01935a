"""
Chain Repository.

============================================================
PURPOSE
============================================================
Persists chain configuration and the indexed-block cursor.

============================================================
CURSOR RULES
============================================================
- Configuration upserts never touch the cursor
- advance_cursor() only moves forward

============================================================
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storage.models.chain import Chain
from storage.repositories.base import BaseRepository


CONFIG_COLUMNS = (
    "chain_name",
    "rpc_url",
    "xen_contract_address",
    "minter_contract_address",
    "nft_contract_address",
    "start_block",
    "batch_size",
    "enabled",
)


class ChainRepository(BaseRepository[Chain]):
    """Repository for the chains table."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, Chain, "ChainRepository")

    async def get(self, chain_id: int) -> Optional[Chain]:
        stmt = select(Chain).where(Chain.chain_id == chain_id)
        return await self._execute_scalar(stmt, "get")

    async def list_all(self) -> List[Chain]:
        stmt = select(Chain).order_by(Chain.chain_id)
        return await self._execute_query(stmt, "list_all")

    async def list_enabled(self) -> List[Chain]:
        stmt = select(Chain).where(Chain.enabled.is_(True)).order_by(Chain.chain_id)
        return await self._execute_query(stmt, "list_enabled")

    async def count(self) -> int:
        stmt = select(func.count()).select_from(Chain)
        return await self._execute_scalar(stmt, "count") or 0

    async def upsert(self, chain_id: int, values: Dict[str, Any]) -> None:
        """Insert or update the configuration columns of a chain."""
        config = {key: values[key] for key in CONFIG_COLUMNS if key in values}
        stmt = self._insert().values(chain_id=chain_id, **config)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Chain.chain_id],
            set_={
                **{key: stmt.excluded[key] for key in config},
                "updated_at": func.now(),
            },
        )
        await self._execute(stmt, "upsert", {"chain_id": chain_id})
        self._logger.info(f"Upserted chain {chain_id} ({config.get('chain_name')})")

    async def set_enabled(self, chain_id: int, enabled: bool) -> bool:
        stmt = (
            update(Chain)
            .where(Chain.chain_id == chain_id)
            .values(enabled=enabled)
        )
        result = await self._execute(stmt, "set_enabled", {"chain_id": chain_id})
        return result.rowcount > 0

    async def get_cursor(self, chain_id: int) -> Optional[int]:
        stmt = select(Chain.last_indexed_block).where(Chain.chain_id == chain_id)
        return await self._execute_scalar(stmt, "get_cursor")

    async def advance_cursor(self, chain_id: int, block_number: int) -> bool:
        """
        Move the cursor forward to block_number.

        Returns:
            False when the cursor is already at or beyond the block
        """
        stmt = (
            update(Chain)
            .where(Chain.chain_id == chain_id)
            .where(Chain.last_indexed_block < block_number)
            .values(last_indexed_block=block_number)
        )
        result = await self._execute(
            stmt, "advance_cursor", {"chain_id": chain_id, "block": block_number}
        )
        return result.rowcount > 0
