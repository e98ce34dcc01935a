"""
Repository Layer Package.

============================================================
PURPOSE
============================================================
The Repository Layer is the ONLY gateway to persistent storage.
All database access MUST go through repository classes.

============================================================
ARCHITECTURE PRINCIPLES
============================================================
1. One repository per table group
2. Session Injection: the caller owns the transaction
3. Idempotency: writes are upserts on the natural keys
4. Exception Handling: All DB errors wrapped in repository exceptions

============================================================
"""

from storage.repositories.analytics import AnalyticsRepository
from storage.repositories.base import BaseRepository
from storage.repositories.block_timestamps import BlockTimestampRepository
from storage.repositories.burn_events import BurnEventRepository
from storage.repositories.burn_positions import BurnPositionRepository
from storage.repositories.chains import ChainRepository
from storage.repositories.diagnostics import DiagnosticsRepository
from storage.repositories.exceptions import (
    ConnectionError,
    IntegrityError,
    QueryError,
    RepositoryException,
    UnsupportedDialectError,
)


__all__ = [
    "BaseRepository",
    "ChainRepository",
    "BurnEventRepository",
    "BurnPositionRepository",
    "BlockTimestampRepository",
    "AnalyticsRepository",
    "DiagnosticsRepository",
    "RepositoryException",
    "IntegrityError",
    "ConnectionError",
    "QueryError",
    "UnsupportedDialectError",
]
