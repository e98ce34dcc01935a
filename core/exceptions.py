"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines the error taxonomy shared by every indexer component.

- Provides clear exception hierarchy
- Separates transient source failures from data problems
- Carries replay context (chain id, block range, tx hash)

============================================================
EXCEPTION HIERARCHY
============================================================
IndexerException (base)
├── ConfigurationError
├── TransientSourceError
├── DecodeError
├── ReferentialGapError
├── IntegrityError
└── BlockNotFoundError

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for alerting."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Error is absorbed locally; processing continues."""

    TRANSIENT = "transient"
    """Temporary error, the next tick or a smaller window may succeed."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, requires intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class IndexerException(Exception):
    """
    Base exception for all indexer errors.

    All exceptions carry:
    - severity: for alerting
    - context: enough to replay the failed unit of work
    - classification: for retry decisions
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    @property
    def is_transient(self) -> bool:
        return self.classification == ErrorClassification.TRANSIENT

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }

    def to_log_format(self) -> str:
        """Format exception for structured logging."""
        ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        text = f"[{self.severity.value.upper()}] {type(self).__name__}: {self.message}"
        if ctx_str:
            text += f" | {ctx_str}"
        return text


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(IndexerException):
    """Chain configuration is incomplete or invalid."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        missing_fields: Optional[Sequence[str]] = None,
        chain_id: Optional[int] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        self.missing_fields = list(missing_fields or [])
        if self.missing_fields:
            context["missing_fields"] = self.missing_fields
        if chain_id is not None:
            context["chain_id"] = chain_id

        super().__init__(message, context=context, **kwargs)


# ============================================================
# SOURCE ERRORS
# ============================================================

class TransientSourceError(IndexerException):
    """Network or RPC failure; the unit of work is retried later."""

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.TRANSIENT

    def __init__(
        self,
        message: str,
        chain_id: Optional[int] = None,
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if chain_id is not None:
            context["chain_id"] = chain_id
        if from_block is not None:
            context["from_block"] = from_block
        if to_block is not None:
            context["to_block"] = to_block

        super().__init__(message, context=context, **kwargs)


class BlockNotFoundError(IndexerException):
    """The origin returned no block for the requested number."""

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.TRANSIENT

    def __init__(self, chain_id: int, block_number: int):
        self.chain_id = chain_id
        self.block_number = block_number
        super().__init__(
            message=f"Block {block_number} not found on chain {chain_id}",
            context={"chain_id": chain_id, "block_number": block_number},
        )


# ============================================================
# DATA ERRORS
# ============================================================

class DecodeError(IndexerException):
    """A log could not be decoded; it is skipped."""

    default_severity = Severity.LOW
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        transaction_hash: Optional[str] = None,
        log_index: Optional[int] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if transaction_hash:
            context["transaction_hash"] = transaction_hash
        if log_index is not None:
            context["log_index"] = log_index

        super().__init__(message, context=context, **kwargs)


class ReferentialGapError(IndexerException):
    """A claim references a position that has not been indexed."""

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        chain_id: int,
        nft_id: int,
        transaction_hash: str,
        block_number: Optional[int] = None,
    ):
        self.chain_id = chain_id
        self.nft_id = nft_id
        self.transaction_hash = transaction_hash
        self.block_number = block_number
        super().__init__(
            message=f"Claim for unknown position {nft_id} on chain {chain_id}",
            context={
                "chain_id": chain_id,
                "nft_id": nft_id,
                "transaction_hash": transaction_hash,
                "block_number": block_number,
            },
        )


class IntegrityError(IndexerException):
    """Validator detected a gap or digest mismatch."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(self, message: str, chain_id: int, **kwargs):
        context = kwargs.pop("context", {})
        context["chain_id"] = chain_id
        self.chain_id = chain_id
        super().__init__(message, context=context, **kwargs)
