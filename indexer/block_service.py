"""
Block Service - Block timestamps through three tiers.

============================================================
LOOKUP ORDER
============================================================
1. In-process dict (never evicted)
2. block_timestamps table
3. eth_getBlockByNumber on the chain source

Values found in a lower tier are written through to the tiers
above it. A failure in the database tier is logged and the
lookup falls through to the source.

============================================================
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from core.exceptions import BlockNotFoundError
from indexer.registry import ChainRegistry
from storage.database import Database, DatabaseError
from storage.repositories import BlockTimestampRepository, RepositoryException


logger = logging.getLogger(__name__)

_DURABLE_ERRORS = (RepositoryException, DatabaseError, SQLAlchemyError)


class BlockService:
    """Cached block timestamp lookups for all chains."""

    def __init__(self, database: Database, registry: ChainRegistry) -> None:
        self._database = database
        self._registry = registry
        self._cache: dict[tuple[int, int], datetime] = {}

    def cached(self, chain_id: int, block_number: int) -> Optional[datetime]:
        return self._cache.get((chain_id, block_number))

    async def get_block_timestamp(self, chain_id: int, block_number: int) -> datetime:
        """
        UTC timestamp of a block.

        Raises:
            BlockNotFoundError: the source has no such block
            TransientSourceError: the source could not be reached
        """
        key = (chain_id, block_number)
        if key in self._cache:
            return self._cache[key]

        stored = await self._load(chain_id, block_number)
        if stored is not None:
            self._cache[key] = stored
            return stored

        source = self._registry.get_source(chain_id)
        header = await source.get_block(block_number)
        if header is None:
            raise BlockNotFoundError(chain_id, block_number)

        timestamp = header.timestamp_utc
        self._cache[key] = timestamp
        await self._store(chain_id, block_number, timestamp)
        return timestamp

    async def _load(self, chain_id: int, block_number: int) -> Optional[datetime]:
        try:
            async with self._database.session() as session:
                return await BlockTimestampRepository(session).get(chain_id, block_number)
        except _DURABLE_ERRORS as e:
            logger.warning(
                f"[chain {chain_id}] Block timestamp lookup for {block_number} failed, "
                f"falling back to RPC: {e}"
            )
            return None

    async def _store(self, chain_id: int, block_number: int, timestamp: datetime) -> None:
        try:
            async with self._database.transaction() as session:
                await BlockTimestampRepository(session).save(chain_id, block_number, timestamp)
        except _DURABLE_ERRORS as e:
            logger.warning(
                f"[chain {chain_id}] Could not persist timestamp of block {block_number}: {e}"
            )
