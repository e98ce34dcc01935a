"""
On-chain Adapter Models - Raw chain data and source health.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class AdapterStatus(Enum):
    """Status of a chain-log source."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


def _hex_to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16)


@dataclass(frozen=True)
class RawLog:
    """A log entry exactly as returned by eth_getLogs / receipts."""
    address: str
    topics: tuple[str, ...]
    data: str
    block_number: int
    transaction_hash: str
    log_index: int
    block_hash: Optional[str] = None
    removed: bool = False

    @property
    def topic0(self) -> Optional[str]:
        return self.topics[0] if self.topics else None

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)

    @classmethod
    def from_rpc(cls, payload: dict[str, Any]) -> "RawLog":
        """Build from a JSON-RPC log object (hex quantities)."""
        return cls(
            address=payload["address"].lower(),
            topics=tuple(topic.lower() for topic in payload.get("topics", [])),
            data=payload.get("data") or "0x",
            block_number=_hex_to_int(payload["blockNumber"]),
            transaction_hash=payload["transactionHash"].lower(),
            log_index=_hex_to_int(payload["logIndex"]),
            block_hash=payload.get("blockHash"),
            removed=bool(payload.get("removed", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "topics": list(self.topics),
            "data": self.data,
            "block_number": self.block_number,
            "transaction_hash": self.transaction_hash,
            "log_index": self.log_index,
        }


@dataclass(frozen=True)
class BlockHeader:
    """The subset of a block the indexer needs."""
    number: int
    timestamp: int
    hash: Optional[str] = None

    @property
    def timestamp_utc(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)

    @classmethod
    def from_rpc(cls, payload: dict[str, Any]) -> "BlockHeader":
        return cls(
            number=_hex_to_int(payload["number"]),
            timestamp=_hex_to_int(payload["timestamp"]),
            hash=payload.get("hash"),
        )


@dataclass(frozen=True)
class LogFilter:
    """
    eth_getLogs filter.

    topics follows the JSON-RPC positional convention: each slot is
    None (wildcard), a topic, or a tuple of alternatives.
    """
    addresses: tuple[str, ...]
    topics: tuple[Any, ...] = ()

    def to_params(self, from_block: int, to_block: int) -> dict[str, Any]:
        topics = [list(slot) if isinstance(slot, tuple) else slot for slot in self.topics]
        params: dict[str, Any] = {
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
            "address": list(self.addresses) if len(self.addresses) > 1 else self.addresses[0],
        }
        if topics:
            params["topics"] = topics
        return params


@dataclass
class AdapterHealth:
    """Health status of a chain-log source."""
    status: AdapterStatus
    last_check: datetime
    latency_ms: Optional[float] = None
    error_count: int = 0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None
    consecutive_failures: int = 0
    requests_total: int = 0

    def is_healthy(self) -> bool:
        return self.status == AdapterStatus.HEALTHY

    def is_usable(self) -> bool:
        return self.status in (AdapterStatus.HEALTHY, AdapterStatus.DEGRADED, AdapterStatus.UNKNOWN)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "last_check": self.last_check.isoformat(),
            "latency_ms": self.latency_ms,
            "error_count": self.error_count,
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
            "consecutive_failures": self.consecutive_failures,
            "requests_total": self.requests_total,
        }


@dataclass
class AdapterIncident:
    """Record of a failed source request."""
    source_name: str
    incident_type: str
    timestamp: datetime
    error_message: str
    method: Optional[str] = None
    params: Optional[Any] = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_name": self.source_name,
            "incident_type": self.incident_type,
            "timestamp": self.timestamp.isoformat(),
            "error_message": self.error_message,
            "method": self.method,
            "params": self.params,
        }
