"""
Core Module Package.

Shared infrastructure every indexer package depends on.

Components:
- clock: Testable time abstraction
- exceptions: Indexer error taxonomy
"""

from .clock import ClockProtocol, MockClock, SystemClock, get_clock, set_clock
from .exceptions import (
    BlockNotFoundError,
    ConfigurationError,
    DecodeError,
    ErrorClassification,
    IndexerException,
    IntegrityError,
    ReferentialGapError,
    Severity,
    TransientSourceError,
)


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "get_clock",
    "set_clock",
    "IndexerException",
    "Severity",
    "ErrorClassification",
    "ConfigurationError",
    "TransientSourceError",
    "BlockNotFoundError",
    "DecodeError",
    "ReferentialGapError",
    "IntegrityError",
]
