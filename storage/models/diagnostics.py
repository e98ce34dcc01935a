"""
Diagnostics and Analytics ORM Models.

============================================================
PURPOSE
============================================================
Append-only records produced by the data validator, and the
name -> value cache written by the analytics engine.

============================================================
MODELS
============================================================
- BlockGap: Suspicious hole between observed blocks
- ValidationRun: Outcome of one validation routine
- IntegrityDigest: Deterministic digest of a chain's burn log
- AnalyticsMetric: Materialized aggregate (overwritten per cycle)

============================================================
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base, BigIntPK, ExactNumeric, JSONDocument, UTCDateTime


class BlockGap(Base):
    """Gap between two consecutive observed blocks, queued for reprocessing."""

    __tablename__ = "block_gaps"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    chain_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    start_block: Mapped[int] = mapped_column(BigInteger, nullable=False)

    end_block: Mapped[int] = mapped_column(BigInteger, nullable=False)

    gap_size: Mapped[int] = mapped_column(Integer, nullable=False)

    processed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )

    detected_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("chain_id", "start_block", name="uq_block_gaps_chain_start"),
    )

    def __repr__(self) -> str:
        return (
            f"<BlockGap(chain_id={self.chain_id}, "
            f"{self.start_block}->{self.end_block}, size={self.gap_size})>"
        )


class ValidationRun(Base):
    """One execution of a validation routine (or a recorded anomaly)."""

    __tablename__ = "validation_stats"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    chain_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    validation_type: Mapped[str] = mapped_column(String(50), nullable=False)

    status: Mapped[str] = mapped_column(String(30), nullable=False)

    details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONDocument, nullable=True)

    validated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("idx_validation_stats_chain_type", "chain_id", "validation_type"),
    )

    __mapper_args__ = {"eager_defaults": True}


class IntegrityDigest(Base):
    """Digest over the key fields of every burn event for a chain."""

    __tablename__ = "data_integrity"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    chain_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    hash_value: Mapped[str] = mapped_column(String(64), nullable=False)

    row_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("idx_data_integrity_chain_created", "chain_id", "created_at"),
    )

    __mapper_args__ = {"eager_defaults": True}


class AnalyticsMetric(Base):
    """Cached aggregate read by the external API."""

    __tablename__ = "analytics"

    metric_name: Mapped[str] = mapped_column(String(100), primary_key=True)

    metric_value: Mapped[Decimal] = mapped_column(
        ExactNumeric(precision=78, scale=6),
        nullable=False,
    )

    last_updated: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=func.now(),
    )
