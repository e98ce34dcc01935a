"""
Analytics Repository.

============================================================
PURPOSE
============================================================
Aggregate queries over burn_events / burn_positions and the
name -> value metric cache they feed.

============================================================
NOTES
============================================================
- SQLite has no exact wide integer type, so uint256 sums are
  folded in Python there and in SQL on PostgreSQL
- replace_metrics() upserts a whole generation; the caller's
  transaction makes it all-or-nothing

============================================================
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storage.models.burn import BurnEvent, BurnPosition
from storage.models.chain import Chain
from storage.models.diagnostics import AnalyticsMetric
from storage.repositories.base import BaseRepository


def _as_decimal(value) -> Decimal:
    if value is None:
        return Decimal(0)
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(str(value))


class AnalyticsRepository(BaseRepository[AnalyticsMetric]):
    """Metric cache plus the aggregate queries behind it."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, AnalyticsMetric, "AnalyticsRepository")

    # =========================================================
    # METRIC CACHE
    # =========================================================

    async def replace_metrics(self, metrics: Dict[str, Decimal], updated_at: datetime) -> int:
        for name, value in metrics.items():
            stmt = self._insert().values(
                metric_name=name,
                metric_value=value,
                last_updated=updated_at,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[AnalyticsMetric.metric_name],
                set_={
                    "metric_value": stmt.excluded.metric_value,
                    "last_updated": stmt.excluded.last_updated,
                },
            )
            await self._execute(stmt, "replace_metrics", {"metric": name})
        return len(metrics)

    async def get_metric(self, name: str) -> Optional[Decimal]:
        stmt = select(AnalyticsMetric.metric_value).where(AnalyticsMetric.metric_name == name)
        return await self._execute_scalar(stmt, "get_metric")

    async def list_metrics(self) -> Dict[str, Decimal]:
        result = await self._execute(
            select(AnalyticsMetric.metric_name, AnalyticsMetric.metric_value),
            "list_metrics",
        )
        return {name: value for name, value in result.all()}

    # =========================================================
    # BURN EVENT AGGREGATES
    # =========================================================

    def _event_filters(
        self,
        stmt,
        chain_id: Optional[int],
        event_types: Optional[Sequence[str]],
        since: Optional[datetime],
        until: Optional[datetime],
    ):
        if chain_id is not None:
            stmt = stmt.where(BurnEvent.chain_id == chain_id)
        if event_types:
            stmt = stmt.where(BurnEvent.event_type.in_(list(event_types)))
        if since is not None:
            stmt = stmt.where(BurnEvent.block_timestamp >= since)
        if until is not None:
            stmt = stmt.where(BurnEvent.block_timestamp < until)
        return stmt

    async def sum_event_amounts(
        self,
        chain_id: Optional[int] = None,
        event_types: Optional[Sequence[str]] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        include_accumulated: bool = True,
    ) -> Decimal:
        columns = [BurnEvent.xen_amount_direct]
        if include_accumulated:
            columns.append(BurnEvent.xen_amount_accumulated)

        total = Decimal(0)
        for column in columns:
            stmt = self._event_filters(select(column), chain_id, event_types, since, until)
            total += await self._sum_column(stmt, column, "sum_event_amounts")
        return total

    async def count_events(
        self,
        chain_id: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> int:
        stmt = select(func.count()).select_from(BurnEvent)
        stmt = self._event_filters(stmt, chain_id, None, since, None)
        return await self._execute_scalar(stmt, "count_events") or 0

    async def count_event_users(self, chain_id: Optional[int] = None) -> int:
        stmt = select(func.count(distinct(BurnEvent.user_address)))
        stmt = self._event_filters(stmt, chain_id, None, None, None)
        return await self._execute_scalar(stmt, "count_event_users") or 0

    # =========================================================
    # POSITION AGGREGATES
    # =========================================================

    async def count_positions(
        self,
        chain_id: Optional[int] = None,
        statuses: Optional[Sequence[str]] = None,
        matured_before: Optional[datetime] = None,
    ) -> int:
        stmt = select(func.count()).select_from(BurnPosition)
        if chain_id is not None:
            stmt = stmt.where(BurnPosition.chain_id == chain_id)
        if statuses:
            stmt = stmt.where(BurnPosition.status.in_(list(statuses)))
        if matured_before is not None:
            stmt = stmt.where(BurnPosition.maturity_timestamp <= matured_before)
        return await self._execute_scalar(stmt, "count_positions") or 0

    async def sum_claimed_xburn(self, statuses: Sequence[str]) -> Decimal:
        stmt = select(BurnPosition.claimed_xburn_amount).where(
            BurnPosition.status.in_(list(statuses))
        )
        return await self._sum_column(
            stmt, BurnPosition.claimed_xburn_amount, "sum_claimed_xburn"
        )

    async def average_lock_period(self) -> Decimal:
        stmt = select(func.avg(BurnPosition.lock_period_days))
        return _as_decimal(await self._execute_scalar(stmt, "average_lock_period"))

    async def count_position_users(self, minted_since: Optional[datetime] = None) -> int:
        stmt = select(func.count(distinct(BurnPosition.user_address)))
        if minted_since is not None:
            stmt = stmt.where(BurnPosition.mint_block_timestamp > minted_since)
        return await self._execute_scalar(stmt, "count_position_users") or 0

    async def chain_ids(self) -> List[int]:
        result = await self._execute(
            select(Chain.chain_id).order_by(Chain.chain_id), "chain_ids"
        )
        return [row[0] for row in result.all()]

    async def _sum_column(self, stmt, column, operation: str) -> Decimal:
        """
        SUM over a single-column select.

        PostgreSQL aggregates NUMERIC exactly; SQLite would fall back
        to floating point for text values, so rows are folded here.
        """
        if self.dialect_name == "postgresql":
            subquery = stmt.subquery()
            total = await self._execute_scalar(
                select(func.sum(subquery.c[column.key])), operation
            )
            return _as_decimal(total)

        result = await self._execute(stmt, operation)
        return sum((_as_decimal(value) for value in result.scalars()), Decimal(0))
