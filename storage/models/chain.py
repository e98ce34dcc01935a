"""
Chain Registry ORM Model.

============================================================
PURPOSE
============================================================
One row per indexed chain: its RPC endpoint, the three tracked
contract addresses and the indexed-block cursor.

============================================================
DATA LIFECYCLE ROLE
============================================================
- Mutability: configuration columns upserted by ChainManager,
  cursor advanced only after a fully committed batch
- Never deleted; disabling flips `enabled`

============================================================
"""

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import BigInteger, Boolean, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base, TimestampMixin


class Chain(Base, TimestampMixin):
    """Indexed chain and its cursor."""

    __tablename__ = "chains"

    chain_id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer(), "sqlite"),
        primary_key=True,
        autoincrement=False,
        comment="EVM chain id"
    )

    chain_name: Mapped[str] = mapped_column(String(50), nullable=False)

    rpc_url: Mapped[str] = mapped_column(Text, nullable=False)

    xen_contract_address: Mapped[str] = mapped_column(String(42), nullable=False)

    minter_contract_address: Mapped[str] = mapped_column(String(42), nullable=False)

    nft_contract_address: Mapped[str] = mapped_column(String(42), nullable=False)

    start_block: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        server_default=text("0"),
    )

    batch_size: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=2000,
        server_default=text("2000"),
    )

    enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )

    last_indexed_block: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        server_default=text("0"),
        comment="Last block fully and durably indexed"
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "chain_name": self.chain_name,
            "rpc_url": self.rpc_url,
            "xen_contract_address": self.xen_contract_address,
            "minter_contract_address": self.minter_contract_address,
            "nft_contract_address": self.nft_contract_address,
            "start_block": self.start_block,
            "batch_size": self.batch_size,
            "enabled": self.enabled,
            "last_indexed_block": self.last_indexed_block,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:
        return (
            f"<Chain(chain_id={self.chain_id}, name={self.chain_name}, "
            f"cursor={self.last_indexed_block}, enabled={self.enabled})>"
        )


def _iso(value: datetime) -> str:
    return value.isoformat() if value else None
