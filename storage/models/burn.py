"""
Burn Domain ORM Models.

============================================================
PURPOSE
============================================================
Models for the burn audit log, the burn position state
machine and the block timestamp cache.

============================================================
MODELS
============================================================
- BurnEvent: One row per observed log (append-only audit)
- BurnPosition: One row per (chain, NFT id), lifecycle state
- BlockTimestamp: Durable tier of block -> timestamp lookups

============================================================
NATURAL KEYS
============================================================
- burn_events: (transaction_hash, event_type)
- burn_positions: (chain_id, nft_id)
- block_timestamps: (chain_id, block_number)

Every writer relies on these keys for idempotent upserts.

============================================================
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    BigInteger,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import (
    Base,
    BigIntPK,
    JSONDocument,
    TimestampMixin,
    Uint256,
    UTCDateTime,
)


class BurnEvent(Base):
    """
    Audit row for a single decoded log.

    ============================================================
    MUTABILITY
    ============================================================
    Immutable once written, except `nft_id` which the mint
    handler stamps onto the same-transaction XENBurned row.

    ============================================================
    """

    __tablename__ = "burn_events"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    chain_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("chains.chain_id"),
        nullable=False,
    )

    transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False)

    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)

    log_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    block_timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    user_address: Mapped[str] = mapped_column(String(42), nullable=False)

    xen_amount_direct: Mapped[Optional[int]] = mapped_column(Uint256(), nullable=True)

    xen_amount_accumulated: Mapped[Optional[int]] = mapped_column(Uint256(), nullable=True)

    contract_address: Mapped[str] = mapped_column(String(42), nullable=False)

    event_type: Mapped[str] = mapped_column(String(50), nullable=False)

    nft_id: Mapped[Optional[int]] = mapped_column(Uint256(), nullable=True)

    raw_log: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONDocument, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("transaction_hash", "event_type", name="uq_burn_events_tx_type"),
        Index("idx_burn_events_chain_block", "chain_id", "block_number"),
        Index("idx_burn_events_user", "user_address"),
        Index("idx_burn_events_timestamp", "block_timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<BurnEvent(tx={self.transaction_hash}, type={self.event_type}, "
            f"block={self.block_number})>"
        )


class BurnPosition(Base, TimestampMixin):
    """
    Locked burn position represented by an XBurn NFT.

    Status moves one way: locked -> one terminal status.
    """

    __tablename__ = "burn_positions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    chain_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("chains.chain_id"),
        nullable=False,
    )

    nft_id: Mapped[int] = mapped_column(Uint256(), nullable=False)

    user_address: Mapped[str] = mapped_column(String(42), nullable=False)

    xen_burned_total: Mapped[int] = mapped_column(Uint256(), nullable=False)

    lock_period_days: Mapped[int] = mapped_column(Integer, nullable=False)

    maturity_timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    mint_transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False)

    mint_block_timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(String(40), nullable=False, default="locked")

    amplifier_at_burn: Mapped[Optional[int]] = mapped_column(Uint256(), nullable=True)

    xburn_reward_potential: Mapped[Optional[int]] = mapped_column(Uint256(), nullable=True)

    claimed_transaction_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)

    claimed_block_timestamp: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    claimed_xburn_amount: Mapped[Optional[int]] = mapped_column(Uint256(), nullable=True)

    __table_args__ = (
        UniqueConstraint("chain_id", "nft_id", name="uq_burn_positions_chain_nft"),
        Index("idx_burn_positions_user", "user_address"),
        Index("idx_burn_positions_status", "status"),
        Index("idx_burn_positions_maturity", "maturity_timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<BurnPosition(chain_id={self.chain_id}, nft_id={self.nft_id}, "
            f"status={self.status})>"
        )


class BlockTimestamp(Base):
    """Block timestamps are immutable facts; rows are never updated."""

    __tablename__ = "block_timestamps"

    chain_id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer(), "sqlite"),
        primary_key=True,
        autoincrement=False,
    )

    block_number: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer(), "sqlite"),
        primary_key=True,
        autoincrement=False,
    )

    block_timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )
