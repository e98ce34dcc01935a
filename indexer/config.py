"""
Indexer Configuration - Chains, polling cadence and rollup settings.

Chain endpoints and start blocks are read from environment variables
so deployments can point at a private RPC without code changes.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Optional

from core.exceptions import ConfigurationError


REQUIRED_CHAIN_FIELDS = (
    "chain_id",
    "name",
    "rpc_url",
    "xen_contract_address",
    "minter_contract_address",
    "nft_contract_address",
)


@dataclass
class ChainConfig:
    """Configuration for one indexed chain."""
    chain_id: Optional[int]
    name: str
    rpc_url: str
    xen_contract_address: str
    minter_contract_address: str
    nft_contract_address: str
    start_block: int = 0
    batch_size: int = 2000
    enabled: bool = True

    def __post_init__(self) -> None:
        for attr in ("xen_contract_address", "minter_contract_address", "nft_contract_address"):
            value = getattr(self, attr)
            if value:
                setattr(self, attr, value.lower())

    def missing_fields(self) -> list[str]:
        return [
            name for name in REQUIRED_CHAIN_FIELDS
            if getattr(self, name) in (None, "")
        ]

    def validate(self) -> None:
        """
        Raises:
            ConfigurationError: a required field is missing or a
                numeric setting is out of range
        """
        missing = self.missing_fields()
        if missing:
            raise ConfigurationError(
                f"Chain configuration is missing required fields: {', '.join(missing)}",
                missing_fields=missing,
                chain_id=self.chain_id,
            )
        if self.batch_size < 1:
            raise ConfigurationError(
                f"batch_size must be positive, got {self.batch_size}",
                chain_id=self.chain_id,
            )
        if self.start_block < 0:
            raise ConfigurationError(
                f"start_block cannot be negative, got {self.start_block}",
                chain_id=self.chain_id,
            )

    @property
    def contract_addresses(self) -> tuple[str, str, str]:
        return (
            self.xen_contract_address,
            self.minter_contract_address,
            self.nft_contract_address,
        )

    def to_record(self) -> dict[str, Any]:
        """Column values for the chains table."""
        return {
            "chain_name": self.name,
            "rpc_url": self.rpc_url,
            "xen_contract_address": self.xen_contract_address,
            "minter_contract_address": self.minter_contract_address,
            "nft_contract_address": self.nft_contract_address,
            "start_block": self.start_block,
            "batch_size": self.batch_size,
            "enabled": self.enabled,
        }

    @classmethod
    def from_record(cls, record: Any) -> "ChainConfig":
        """Build from a storage.models.Chain row."""
        return cls(
            chain_id=record.chain_id,
            name=record.chain_name,
            rpc_url=record.rpc_url,
            xen_contract_address=record.xen_contract_address,
            minter_contract_address=record.minter_contract_address,
            nft_contract_address=record.nft_contract_address,
            start_block=record.start_block,
            batch_size=record.batch_size,
            enabled=record.enabled,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"chain_id": self.chain_id, **self.to_record()}


@dataclass
class ListenerSettings:
    """Polling, reorg buffer and backfill windows."""

    poll_interval_seconds: float = 300.0  # 5 minutes
    confirmation_buffer: int = 5

    # Eager single-block processing when the head runs ahead
    head_poll_interval_seconds: float = 15.0
    eager_block_threshold: int = 5

    backfill_window: int = 2000
    backfill_min_window: int = 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "poll_interval_seconds": self.poll_interval_seconds,
            "confirmation_buffer": self.confirmation_buffer,
            "head_poll_interval_seconds": self.head_poll_interval_seconds,
            "eager_block_threshold": self.eager_block_threshold,
            "backfill_window": self.backfill_window,
            "backfill_min_window": self.backfill_min_window,
        }


@dataclass
class AnalyticsSettings:
    """Rollup cadence and the amplifier decay curve."""

    hourly_interval_seconds: float = 3600.0
    amplifier_start: int = 3000
    amplifier_floor: int = 1
    amplifier_decay_days: int = 3000

    # XEN burn rows counted in volume metrics
    burn_event_types: tuple[str, ...] = ("Transfer", "XENBurned")

    def to_dict(self) -> dict[str, Any]:
        return {
            "hourly_interval_seconds": self.hourly_interval_seconds,
            "amplifier_start": self.amplifier_start,
            "amplifier_floor": self.amplifier_floor,
            "amplifier_decay_days": self.amplifier_decay_days,
        }


@dataclass
class ValidationSettings:
    """Gap detection bounds and schedule."""

    max_gap_size: int = 1000  # larger jumps are cold starts, not gaps
    daily_interval_seconds: float = 86400.0
    weekly_interval_seconds: float = 7 * 86400.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_gap_size": self.max_gap_size,
            "daily_interval_seconds": self.daily_interval_seconds,
            "weekly_interval_seconds": self.weekly_interval_seconds,
        }


@dataclass
class IndexerConfig:
    """Main indexer configuration."""

    chains: list[ChainConfig] = field(default_factory=list)
    listener: ListenerSettings = field(default_factory=ListenerSettings)
    analytics: AnalyticsSettings = field(default_factory=AnalyticsSettings)
    validation: ValidationSettings = field(default_factory=ValidationSettings)

    backfill_on_start: bool = False
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Initialize default chain configs if not provided."""
        if not self.chains:
            self.chains = default_chain_configs()

    def get_chain_config(self, chain_id: int) -> Optional[ChainConfig]:
        for chain in self.chains:
            if chain.chain_id == chain_id:
                return chain
        return None

    @classmethod
    def from_env(cls) -> "IndexerConfig":
        """Build configuration from environment variables."""
        listener = ListenerSettings(
            poll_interval_seconds=float(os.environ.get("POLL_INTERVAL_SECONDS", "300")),
            confirmation_buffer=int(os.environ.get("CONFIRMATION_BUFFER", "5")),
            head_poll_interval_seconds=float(os.environ.get("HEAD_POLL_INTERVAL_SECONDS", "15")),
            backfill_window=int(os.environ.get("BACKFILL_WINDOW", "2000")),
        )
        return cls(
            listener=listener,
            backfill_on_start=os.environ.get("BACKFILL_ON_START", "false").lower() == "true",
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "chains": [chain.to_dict() for chain in self.chains],
            "listener": self.listener.to_dict(),
            "analytics": self.analytics.to_dict(),
            "validation": self.validation.to_dict(),
            "backfill_on_start": self.backfill_on_start,
            "log_level": self.log_level,
        }


def default_chain_configs() -> list[ChainConfig]:
    """Built-in chains, seeded into the database when it has none."""
    return [
        ChainConfig(
            chain_id=8453,
            name="Base",
            rpc_url=os.environ.get("BASE_RPC_URL", "https://base.llamarpc.com"),
            xen_contract_address="0xffcbF84650cE02DaFE96926B37a0ac5E34932fa5",
            minter_contract_address="0xe89AFDeFeBDba033f6e750615f0A0f1A37C78c4A",
            nft_contract_address="0x305C60D2fEf49FADfEe67EC530DE98f67bac861D",
            start_block=int(os.environ.get("START_BLOCK_BASE", "7300000")),
            batch_size=2000,
            enabled=True,
        ),
    ]


# Default configuration instance
_default_config: Optional[IndexerConfig] = None


def get_config() -> IndexerConfig:
    """Get the default configuration."""
    global _default_config
    if _default_config is None:
        _default_config = IndexerConfig.from_env()
    return _default_config


def set_config(config: IndexerConfig) -> None:
    """Set the default configuration."""
    global _default_config
    _default_config = config
