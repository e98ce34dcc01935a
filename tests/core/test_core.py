"""
Tests for the core error taxonomy and clock.
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.clock import MockClock, SystemClock, get_clock, set_clock
from core.exceptions import (
    BlockNotFoundError,
    ConfigurationError,
    DecodeError,
    ErrorClassification,
    IndexerException,
    ReferentialGapError,
    Severity,
    TransientSourceError,
)


class TestExceptions:
    """Severity, classification and serialisation."""

    def test_transient_source_error_is_transient(self):
        error = TransientSourceError("timeout", chain_id=8453, from_block=1, to_block=10)

        assert error.is_transient
        assert error.context == {"chain_id": 8453, "from_block": 1, "to_block": 10}

    def test_configuration_error_lists_missing_fields(self):
        error = ConfigurationError("missing", missing_fields=["rpc_url"], chain_id=1)

        assert error.missing_fields == ["rpc_url"]
        assert error.severity == Severity.HIGH
        assert error.classification == ErrorClassification.NON_RECOVERABLE
        assert not error.is_transient

    def test_to_dict_is_serialisable(self):
        error = ReferentialGapError(8453, 42, "0xabc", block_number=7)
        data = error.to_dict()

        assert data["type"] == "ReferentialGapError"
        assert data["context"]["nft_id"] == 42
        assert data["severity"] == "medium"

    def test_cause_is_recorded_in_context(self):
        cause = ValueError("bad bytes")
        error = DecodeError("cannot decode", transaction_hash="0x1", log_index=3, cause=cause)

        assert error.context["cause_type"] == "ValueError"
        assert "log_index=3" in error.to_log_format()

    def test_block_not_found_message(self):
        error = BlockNotFoundError(8453, 99)

        assert isinstance(error, IndexerException)
        assert "99" in str(error)


class TestClock:
    """MockClock and the process-wide clock."""

    def test_mock_clock_advances(self):
        clock = MockClock(datetime(2026, 1, 1, tzinfo=timezone.utc))
        clock.advance(hours=2)

        assert clock.now() == datetime(2026, 1, 1, 2, tzinfo=timezone.utc)

    def test_naive_time_is_treated_as_utc(self):
        clock = MockClock(datetime(2026, 1, 1))

        assert clock.now().tzinfo == timezone.utc

    def test_time_until_next_hour(self):
        clock = MockClock(datetime(2026, 1, 1, 10, 45, tzinfo=timezone.utc))

        assert clock.time_until_next_hour() == timedelta(minutes=15)

    def test_time_until_local_midnight_is_within_a_day(self):
        clock = MockClock(datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc))
        remaining = clock.time_until_local_midnight()

        assert timedelta(0) < remaining <= timedelta(days=1)

    def test_set_clock_replaces_global(self):
        original = get_clock()
        mock = MockClock()
        try:
            set_clock(mock)
            assert get_clock() is mock
        finally:
            set_clock(original)

    def test_system_clock_is_utc(self):
        assert SystemClock().now().tzinfo == timezone.utc
