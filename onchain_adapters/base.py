"""
Base Chain-Log Source - Abstract interface for on-chain log providers.

All sources MUST:
- Raise TransientSourceError subclasses for network/RPC failures
- Return logs and blocks in the shapes defined in models.py
- Track their own health so operators can see a failing endpoint
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from core.exceptions import IndexerException
from onchain_adapters.exceptions import RateLimitError
from onchain_adapters.models import (
    AdapterHealth,
    AdapterIncident,
    AdapterStatus,
    BlockHeader,
    LogFilter,
    RawLog,
)


logger = logging.getLogger(__name__)


class ChainLogSource(ABC):
    """
    Abstract capability the indexer needs from a chain.

    - logs for a set of addresses/topics in a block range
    - block by number
    - current head number
    - logs of one transaction (receipt)
    - read-only contract calls at a block height
    """

    DEGRADED_THRESHOLD = 3
    UNAVAILABLE_THRESHOLD = 5

    def __init__(self, chain_id: int) -> None:
        self.chain_id = chain_id
        self._health = AdapterHealth(
            status=AdapterStatus.UNKNOWN,
            last_check=datetime.now(timezone.utc),
        )
        self._incidents: list[AdapterIncident] = []
        self._max_incidents = 100

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this source."""
        pass

    @abstractmethod
    async def get_logs(
        self,
        log_filter: LogFilter,
        from_block: int,
        to_block: int,
    ) -> list[RawLog]:
        pass

    @abstractmethod
    async def get_block(self, block_number: int) -> Optional[BlockHeader]:
        """Returns None when the origin has no such block."""
        pass

    @abstractmethod
    async def get_block_number(self) -> int:
        pass

    @abstractmethod
    async def get_transaction_logs(self, transaction_hash: str) -> list[RawLog]:
        pass

    @abstractmethod
    async def call(self, to_address: str, data: str, block_number: Optional[int] = None) -> str:
        """eth_call; returns the raw hex result."""
        pass

    async def close(self) -> None:
        """Release transport resources."""
        return None

    # ─────────────────────────────────────────────────────────────
    # Health & Error Tracking
    # ─────────────────────────────────────────────────────────────

    def get_health(self) -> AdapterHealth:
        return self._health

    def get_incidents(self, limit: int = 20) -> list[AdapterIncident]:
        return self._incidents[-limit:]

    def _on_success(self, latency_ms: Optional[float] = None) -> None:
        self._health.consecutive_failures = 0
        self._health.requests_total += 1
        self._health.last_check = datetime.now(timezone.utc)
        if latency_ms is not None:
            self._health.latency_ms = latency_ms

        if self._health.status != AdapterStatus.HEALTHY:
            self._health.status = AdapterStatus.HEALTHY
            logger.info(f"[{self.name}] Recovered to HEALTHY status")

    def _on_error(
        self,
        error: IndexerException,
        method: Optional[str] = None,
        params: Optional[Sequence[Any]] = None,
    ) -> None:
        now = datetime.now(timezone.utc)
        self._health.requests_total += 1
        self._health.error_count += 1
        self._health.consecutive_failures += 1
        self._health.last_error = str(error)
        self._health.last_error_time = now
        self._health.last_check = now

        if isinstance(error, RateLimitError):
            self._health.status = AdapterStatus.RATE_LIMITED
        elif self._health.consecutive_failures >= self.UNAVAILABLE_THRESHOLD:
            if self._health.status != AdapterStatus.UNAVAILABLE:
                self._health.status = AdapterStatus.UNAVAILABLE
                logger.error(f"[{self.name}] Marked UNAVAILABLE")
        elif self._health.consecutive_failures >= self.DEGRADED_THRESHOLD:
            if self._health.status != AdapterStatus.DEGRADED:
                self._health.status = AdapterStatus.DEGRADED
                logger.warning(f"[{self.name}] Marked DEGRADED")

        self._incidents.append(AdapterIncident(
            source_name=self.name,
            incident_type=error.__class__.__name__,
            timestamp=now,
            error_message=str(error),
            method=method,
            params=list(params) if params is not None else None,
        ))
        if len(self._incidents) > self._max_incidents:
            self._incidents = self._incidents[-self._max_incidents:]
