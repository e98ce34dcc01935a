"""
Diagnostics Repository.

============================================================
PURPOSE
============================================================
Append-only records written by the data validator and by the
processor when it meets data it cannot reconcile.

- block_gaps: gaps queued for reprocessing
- validation_stats: one row per validation outcome
- data_integrity: digests for before/after comparison

============================================================
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storage.models.diagnostics import BlockGap, IntegrityDigest, ValidationRun
from storage.repositories.base import BaseRepository


class DiagnosticsRepository(BaseRepository[ValidationRun]):
    """Repository for the validator's diagnostic tables."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, ValidationRun, "DiagnosticsRepository")

    # =========================================================
    # BLOCK GAPS
    # =========================================================

    async def record_gap(
        self,
        chain_id: int,
        start_block: int,
        end_block: int,
        gap_size: int,
    ) -> bool:
        """Returns False when the gap was already recorded."""
        stmt = self._insert(BlockGap).values(
            chain_id=chain_id,
            start_block=start_block,
            end_block=end_block,
            gap_size=gap_size,
        ).on_conflict_do_nothing(
            index_elements=[BlockGap.chain_id, BlockGap.start_block]
        )
        result = await self._execute(
            stmt, "record_gap", {"chain_id": chain_id, "start_block": start_block}
        )
        return result.rowcount > 0

    async def list_gaps(self, chain_id: int, unprocessed_only: bool = False) -> List[BlockGap]:
        stmt = select(BlockGap).where(BlockGap.chain_id == chain_id)
        if unprocessed_only:
            stmt = stmt.where(BlockGap.processed.is_(False))
        return await self._execute_query(stmt.order_by(BlockGap.start_block), "list_gaps")

    # =========================================================
    # VALIDATION RUNS
    # =========================================================

    async def record_validation(
        self,
        chain_id: Optional[int],
        validation_type: str,
        status: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> ValidationRun:
        run = ValidationRun(
            chain_id=chain_id,
            validation_type=validation_type,
            status=status,
            details=details,
        )
        self._session.add(run)
        try:
            await self._session.flush()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "record_validation", {"type": validation_type})
            raise
        return run

    async def list_validations(
        self,
        chain_id: Optional[int] = None,
        validation_type: Optional[str] = None,
    ) -> List[ValidationRun]:
        stmt = select(ValidationRun)
        if chain_id is not None:
            stmt = stmt.where(ValidationRun.chain_id == chain_id)
        if validation_type is not None:
            stmt = stmt.where(ValidationRun.validation_type == validation_type)
        return await self._execute_query(stmt.order_by(ValidationRun.id), "list_validations")

    # =========================================================
    # INTEGRITY DIGESTS
    # =========================================================

    async def record_digest(
        self,
        chain_id: int,
        hash_value: str,
        row_count: int,
        created_at: Optional[datetime] = None,
    ) -> IntegrityDigest:
        digest = IntegrityDigest(
            chain_id=chain_id,
            hash_value=hash_value,
            row_count=row_count,
        )
        if created_at is not None:
            digest.created_at = created_at
        self._session.add(digest)
        try:
            await self._session.flush()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "record_digest", {"chain_id": chain_id})
            raise
        return digest

    async def latest_digest(self, chain_id: int) -> Optional[IntegrityDigest]:
        stmt = (
            select(IntegrityDigest)
            .where(IntegrityDigest.chain_id == chain_id)
            .order_by(desc(IntegrityDigest.id))
            .limit(1)
        )
        return await self._execute_scalar(stmt, "latest_digest")
