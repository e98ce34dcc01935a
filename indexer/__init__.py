"""
Indexer - Burn event ingestion, position tracking and rollups.

This module provides:
- ChainManager: per-chain lifecycle and the ChainRegistry
- EventListener / HistoricalBackfill: live and historical ingestion
- EventProcessor: audit log and burn position persistence
- BlockService: cached block timestamps
- DataValidator: gap detection and reconciliation
- AnalyticsEngine: precomputed metrics

Usage:
    from indexer import ChainManager, IndexerConfig

    manager = ChainManager(database, IndexerConfig.from_env())
    await manager.initialize()
    ...
    await manager.shutdown()
"""

from indexer.analytics import AnalyticsEngine, amplifier_value
from indexer.backfill import BackfillReport, HistoricalBackfill
from indexer.block_service import BlockService
from indexer.channel import ChannelClosedError, EventChannel
from indexer.collector import CollectionResult, EventCollector, decode_event
from indexer.config import (
    AnalyticsSettings,
    ChainConfig,
    IndexerConfig,
    ListenerSettings,
    ValidationSettings,
    default_chain_configs,
    get_config,
    set_config,
)
from indexer.listener import EventListener
from indexer.manager import ChainManager
from indexer.models import (
    BatchResult,
    BlockRange,
    ChainState,
    EventBatch,
    EventCategory,
    EventType,
    PositionStatus,
    compute_next_range,
    split_burn_amount,
)
from indexer.processor import EventProcessor
from indexer.registry import ChainContext, ChainRegistry
from indexer.validator import DataValidator, find_block_gaps


__all__ = [
    "ChainManager",
    "ChainRegistry",
    "ChainContext",
    "EventListener",
    "HistoricalBackfill",
    "BackfillReport",
    "EventCollector",
    "CollectionResult",
    "decode_event",
    "EventChannel",
    "ChannelClosedError",
    "EventProcessor",
    "BlockService",
    "DataValidator",
    "find_block_gaps",
    "AnalyticsEngine",
    "amplifier_value",
    "ChainConfig",
    "IndexerConfig",
    "ListenerSettings",
    "AnalyticsSettings",
    "ValidationSettings",
    "default_chain_configs",
    "get_config",
    "set_config",
    "BatchResult",
    "BlockRange",
    "ChainState",
    "EventBatch",
    "EventCategory",
    "EventType",
    "PositionStatus",
    "compute_next_range",
    "split_burn_amount",
]
