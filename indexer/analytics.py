"""
Analytics Engine - Precomputed burn metrics.

============================================================
CADENCES
============================================================
- Startup: every metric
- Hourly:  rolling one-hour per-chain totals plus global metrics
- Daily:   per-chain totals at local midnight

Each cadence computes its whole metric set inside one database
transaction and upserts it into the analytics table, so readers
see either the previous generation or the new one.

============================================================
METRIC NAMES
============================================================
Per chain (suffix _<chain_id>):
    hourly_burn_total, hourly_tx_count, daily_burn_total,
    total_burn, unique_burners, active_positions,
    claimable_positions, amplifier_value, days_active
Global:
    total_xen_burned, total_burn_positions, total_xburn_claimed,
    total_xburn_burned, claim_rate_percentage,
    emergency_withdrawal_rate, avg_lock_period_days,
    daily_xen_burn_volume, unique_users, weekly_active_users
Refresh markers (epoch seconds):
    hourly_stats_refresh, daily_stats_refresh

============================================================
"""

import asyncio
import logging
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from core.clock import ClockProtocol, get_clock
from indexer.config import AnalyticsSettings
from indexer.models import EventType, PositionStatus
from storage.database import Database, DatabaseError
from storage.repositories import (
    AnalyticsRepository,
    ChainRepository,
    RepositoryException,
)


logger = logging.getLogger(__name__)

Metrics = dict[str, Decimal]

_CENT = Decimal("0.01")

CLAIMED_STATUSES = (
    PositionStatus.CLAIMED.value,
    PositionStatus.EMERGENCY_WITHDRAWN.value,
    PositionStatus.EMERGENCY_WITHDRAWN_OWNER_UNVERIFIED.value,
)

EMERGENCY_STATUSES = (
    PositionStatus.EMERGENCY_WITHDRAWN.value,
    PositionStatus.EMERGENCY_WITHDRAWN_OWNER_UNVERIFIED.value,
)

TERMINAL_STATUSES = tuple(status.value for status in PositionStatus if status.is_terminal)


def percentage(part: int, whole: int) -> Decimal:
    if not whole:
        return Decimal(0)
    return (Decimal(part) * 100 / Decimal(whole)).quantize(_CENT, rounding=ROUND_HALF_UP)


def amplifier_value(days_active: int, settings: AnalyticsSettings) -> int:
    """Linear decay from amplifier_start to the floor over amplifier_decay_days."""
    if days_active >= settings.amplifier_decay_days:
        return settings.amplifier_floor
    return max(settings.amplifier_floor, settings.amplifier_start - days_active)


def _epoch(moment: datetime) -> Decimal:
    return Decimal(int(moment.timestamp()))


class AnalyticsEngine:
    """Computes and stores the analytics metric cache."""

    def __init__(
        self,
        database: Database,
        settings: Optional[AnalyticsSettings] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._database = database
        self._settings = settings or AnalyticsSettings()
        self._clock = clock or get_clock()
        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._last_refresh: dict[str, datetime] = {}

    # =========================================================
    # REFRESH
    # =========================================================

    async def refresh_startup(self) -> Metrics:
        return await self._refresh("startup", hourly=True, daily=True)

    async def refresh_hourly(self) -> Metrics:
        return await self._refresh("hourly", hourly=True, daily=False)

    async def refresh_daily(self) -> Metrics:
        return await self._refresh("daily", hourly=False, daily=True)

    async def _refresh(self, cadence: str, hourly: bool, daily: bool) -> Metrics:
        now = self._clock.now()
        metrics: Metrics = {}
        async with self._database.transaction() as session:
            analytics = AnalyticsRepository(session)
            if hourly:
                metrics.update(await self.compute_hourly_metrics(analytics, now))
            if daily:
                chains = await ChainRepository(session).list_all()
                metrics.update(await self.compute_daily_metrics(analytics, chains, now))
            await analytics.replace_metrics(metrics, now)

        self._last_refresh[cadence] = now
        logger.info(f"Analytics {cadence} refresh stored {len(metrics)} metrics")
        return metrics

    # =========================================================
    # HOURLY
    # =========================================================

    async def compute_hourly_metrics(self, analytics: AnalyticsRepository, now: datetime) -> Metrics:
        hour_ago = now - timedelta(hours=1)
        metrics: Metrics = {}

        for chain_id in await analytics.chain_ids():
            metrics[f"hourly_burn_total_{chain_id}"] = await analytics.sum_event_amounts(
                chain_id=chain_id,
                event_types=self._settings.burn_event_types,
                since=hour_ago,
            )
            metrics[f"hourly_tx_count_{chain_id}"] = Decimal(
                await analytics.count_events(chain_id=chain_id, since=hour_ago)
            )

        metrics.update(await self.compute_global_metrics(analytics, now))
        metrics["hourly_stats_refresh"] = _epoch(now)
        return metrics

    async def compute_global_metrics(self, analytics: AnalyticsRepository, now: datetime) -> Metrics:
        xen_burned = (EventType.XEN_BURNED.value,)

        matured = await analytics.count_positions(matured_before=now)
        matured_claimed = await analytics.count_positions(
            statuses=CLAIMED_STATUSES, matured_before=now
        )
        terminal = await analytics.count_positions(statuses=TERMINAL_STATUSES)
        emergency = await analytics.count_positions(statuses=EMERGENCY_STATUSES)

        return {
            "total_xen_burned": await analytics.sum_event_amounts(event_types=xen_burned),
            "total_burn_positions": Decimal(await analytics.count_positions()),
            "total_xburn_claimed": await analytics.sum_claimed_xburn(
                (PositionStatus.CLAIMED.value,)
            ),
            "total_xburn_burned": await analytics.sum_event_amounts(
                event_types=(EventType.XBURN_BURNED.value,),
                include_accumulated=False,
            ),
            "claim_rate_percentage": percentage(matured_claimed, matured),
            "emergency_withdrawal_rate": percentage(emergency, terminal),
            "avg_lock_period_days": (await analytics.average_lock_period()).quantize(
                _CENT, rounding=ROUND_HALF_UP
            ),
            "daily_xen_burn_volume": await analytics.sum_event_amounts(
                event_types=xen_burned,
                since=now - timedelta(hours=24),
            ),
            "unique_users": Decimal(await analytics.count_position_users()),
            "weekly_active_users": Decimal(
                await analytics.count_position_users(minted_since=now - timedelta(days=7))
            ),
        }

    # =========================================================
    # DAILY
    # =========================================================

    async def compute_daily_metrics(
        self,
        analytics: AnalyticsRepository,
        chains,
        now: datetime,
    ) -> Metrics:
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        day_end = day_start + timedelta(days=1)
        burn_types = self._settings.burn_event_types
        locked = (PositionStatus.LOCKED.value,)
        metrics: Metrics = {}

        for chain in chains:
            chain_id = chain.chain_id
            days_active = max(0, (now - chain.created_at).days) if chain.created_at else 0

            metrics[f"daily_burn_total_{chain_id}"] = await analytics.sum_event_amounts(
                chain_id=chain_id, event_types=burn_types, since=day_start, until=day_end,
            )
            metrics[f"total_burn_{chain_id}"] = await analytics.sum_event_amounts(
                chain_id=chain_id, event_types=burn_types,
            )
            metrics[f"unique_burners_{chain_id}"] = Decimal(
                await analytics.count_event_users(chain_id=chain_id)
            )
            metrics[f"active_positions_{chain_id}"] = Decimal(
                await analytics.count_positions(chain_id=chain_id, statuses=locked)
            )
            metrics[f"claimable_positions_{chain_id}"] = Decimal(
                await analytics.count_positions(
                    chain_id=chain_id, statuses=locked, matured_before=now,
                )
            )
            metrics[f"amplifier_value_{chain_id}"] = Decimal(
                amplifier_value(days_active, self._settings)
            )
            metrics[f"days_active_{chain_id}"] = Decimal(days_active)

        metrics["daily_stats_refresh"] = _epoch(now)
        return metrics

    # =========================================================
    # SCHEDULE
    # =========================================================

    def start_schedule(self) -> None:
        self._stop.clear()
        self._tasks = [
            asyncio.create_task(self._hourly_loop(), name="analytics-hourly"),
            asyncio.create_task(self._daily_loop(), name="analytics-daily"),
        ]
        logger.info("Analytics schedule started")

    async def stop_schedule(self) -> None:
        self._stop.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _wait(self, seconds: float) -> bool:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _hourly_loop(self) -> None:
        while not await self._wait(self._settings.hourly_interval_seconds):
            await self._safe_refresh(self.refresh_hourly)

    async def _daily_loop(self) -> None:
        while not await self._wait(self._clock.time_until_local_midnight().total_seconds()):
            await self._safe_refresh(self.refresh_daily)

    async def _safe_refresh(self, refresh) -> None:
        try:
            await refresh()
        except (DatabaseError, RepositoryException) as e:
            logger.error(f"Analytics refresh failed, previous metrics kept: {e}")

    def get_status(self) -> dict:
        return {cadence: moment.isoformat() for cadence, moment in self._last_refresh.items()}
