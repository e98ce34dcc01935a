"""
Data Validator - Gap detection and audit-log reconciliation.

============================================================
RESPONSIBILITY
============================================================
- Daily: look for holes in the observed block sequence
- Weekly: fingerprint the audit log and compare it with the
  previous fingerprint

Every run is recorded in validation_stats. Validation never
raises into the caller: a failure becomes a failed run.

============================================================
GAP RULE
============================================================
Consecutive observed blocks a < b form a gap when
1 < b - a < max_gap_size. Larger jumps are treated as periods
without activity, not missing data.

============================================================
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Sequence

from core.exceptions import IndexerException, IntegrityError
from indexer.config import ValidationSettings
from storage.database import Database, DatabaseError
from storage.repositories import (
    BurnEventRepository,
    DiagnosticsRepository,
    RepositoryException,
)


logger = logging.getLogger(__name__)

_VALIDATION_ERRORS = (IndexerException, DatabaseError, RepositoryException)


@dataclass(frozen=True)
class Gap:
    start_block: int
    end_block: int

    @property
    def size(self) -> int:
        return self.end_block - self.start_block


def find_block_gaps(blocks: Iterable[int], max_gap_size: int = 1000) -> list[Gap]:
    """Gaps between consecutive distinct block numbers."""
    ordered = sorted(set(blocks))
    gaps = []
    for previous, current in zip(ordered, ordered[1:]):
        delta = current - previous
        if 1 < delta < max_gap_size:
            gaps.append(Gap(previous, current))
    return gaps


def _field(value: Any) -> str:
    return "" if value is None else str(value)


def digest_rows(rows: Sequence[Sequence[Any]]) -> str:
    """SHA-256 over tx|block|user|direct|accumulated rows joined by ','."""
    payload = ",".join("|".join(_field(value) for value in row) for row in rows)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class DataValidator:
    """Runs and records integrity checks."""

    def __init__(self, database: Database, settings: Optional[ValidationSettings] = None) -> None:
        self._database = database
        self._settings = settings or ValidationSettings()
        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    # =========================================================
    # CHECKS
    # =========================================================

    async def detect_block_gaps(self, chain_id: int) -> list[Gap]:
        """Record gaps in the observed block sequence; returns what was found."""
        try:
            async with self._database.transaction() as session:
                blocks = await BurnEventRepository(session).distinct_block_numbers(chain_id)
                gaps = find_block_gaps(blocks, self._settings.max_gap_size)

                diagnostics = DiagnosticsRepository(session)
                new_gaps = 0
                for gap in gaps:
                    if await diagnostics.record_gap(chain_id, gap.start_block, gap.end_block, gap.size):
                        new_gaps += 1

                await diagnostics.record_validation(
                    chain_id=chain_id,
                    validation_type="block_gaps",
                    status="success" if not gaps else "gaps_found",
                    details={
                        "blocks_observed": len(blocks),
                        "gaps": len(gaps),
                        "new_gaps": new_gaps,
                    },
                )
        except _VALIDATION_ERRORS as e:
            logger.error(f"[chain {chain_id}] Gap detection failed: {e}")
            await self._record_failure(chain_id, "block_gaps", "failure", str(e))
            return []

        if gaps:
            logger.warning(
                f"[chain {chain_id}] {len(gaps)} block gaps ({new_gaps} new): "
                + ", ".join(f"{g.start_block}->{g.end_block}" for g in gaps[:10])
            )
        else:
            logger.info(f"[chain {chain_id}] No block gaps across {len(blocks)} blocks")
        return gaps

    async def validate_daily(self, chain_id: int) -> None:
        await self.detect_block_gaps(chain_id)

    async def run_weekly_reconciliation(self, chain_id: int) -> Optional[str]:
        """
        Fingerprint the audit log of a chain.

        Returns:
            The new digest, or None if reconciliation failed
        """
        try:
            async with self._database.transaction() as session:
                rows = await BurnEventRepository(session).digest_rows(chain_id)
                hash_value = digest_rows(rows)

                diagnostics = DiagnosticsRepository(session)
                previous = await diagnostics.latest_digest(chain_id)
                await diagnostics.record_digest(chain_id, hash_value, len(rows))

                if (
                    previous is not None
                    and previous.row_count == len(rows)
                    and previous.hash_value != hash_value
                ):
                    mismatch = IntegrityError(
                        f"Audit log changed without new rows ({len(rows)} rows)",
                        chain_id=chain_id,
                        context={
                            "previous_hash": previous.hash_value,
                            "current_hash": hash_value,
                        },
                    )
                    await diagnostics.record_validation(
                        chain_id=chain_id,
                        validation_type="weekly_reconciliation",
                        status="integrity_mismatch",
                        details=mismatch.to_dict(),
                    )
                    logger.error(mismatch.to_log_format())
                else:
                    await diagnostics.record_validation(
                        chain_id=chain_id,
                        validation_type="weekly_reconciliation",
                        status="success",
                        details={"row_count": len(rows), "hash": hash_value},
                    )
        except _VALIDATION_ERRORS as e:
            logger.error(f"[chain {chain_id}] Weekly reconciliation failed: {e}")
            await self._record_failure(chain_id, "weekly_reconciliation", "failure", str(e))
            return None

        logger.info(f"[chain {chain_id}] Reconciled {len(rows)} rows: {hash_value[:16]}")
        return hash_value

    async def _record_failure(
        self,
        chain_id: int,
        validation_type: str,
        status: str,
        error: str,
    ) -> None:
        try:
            async with self._database.transaction() as session:
                await DiagnosticsRepository(session).record_validation(
                    chain_id=chain_id,
                    validation_type=validation_type,
                    status=status,
                    details={"error": error},
                )
        except (DatabaseError, RepositoryException) as e:
            logger.error(f"[chain {chain_id}] Could not record {validation_type} failure: {e}")

    # =========================================================
    # SCHEDULE
    # =========================================================

    def start_schedule(self, chain_ids: Callable[[], Sequence[int]]) -> None:
        """Daily gap detection and weekly reconciliation for the chains active at each run."""
        self._stop.clear()
        self._tasks = [
            asyncio.create_task(
                self._every(self._settings.daily_interval_seconds, self.validate_daily, chain_ids),
                name="validation-daily",
            ),
            asyncio.create_task(
                self._every(
                    self._settings.weekly_interval_seconds,
                    self.run_weekly_reconciliation,
                    chain_ids,
                ),
                name="validation-weekly",
            ),
        ]

    async def stop_schedule(self) -> None:
        self._stop.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _every(self, interval: float, check, chain_ids: Callable[[], Sequence[int]]) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
                return
            except asyncio.TimeoutError:
                pass
            for chain_id in chain_ids():
                await check(chain_id)
