"""
Storage Models Package.

This package contains all ORM models for the indexer database.

============================================================
MODEL ORGANIZATION
============================================================

Chains (chain.py)
- Chain

Burns (burn.py)
- BurnEvent
- BurnPosition
- BlockTimestamp

Diagnostics (diagnostics.py)
- BlockGap
- ValidationRun
- IntegrityDigest
- AnalyticsMetric

============================================================
"""

from storage.models.base import Base, ExactNumeric, TimestampMixin, Uint256, UTCDateTime
from storage.models.burn import BlockTimestamp, BurnEvent, BurnPosition
from storage.models.chain import Chain
from storage.models.diagnostics import (
    AnalyticsMetric,
    BlockGap,
    IntegrityDigest,
    ValidationRun,
)


__all__ = [
    "Base",
    "TimestampMixin",
    "ExactNumeric",
    "Uint256",
    "UTCDateTime",
    "Chain",
    "BurnEvent",
    "BurnPosition",
    "BlockTimestamp",
    "BlockGap",
    "ValidationRun",
    "IntegrityDigest",
    "AnalyticsMetric",
]
