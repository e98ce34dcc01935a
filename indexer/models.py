"""
Indexer Models - Typed domain events, batches and position states.

Domain events are decoded, chain-agnostic views of raw logs. They
are produced by the collector, carried over the per-chain channel
and consumed by the processor.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Optional


SECONDS_PER_DAY = 86400

DIRECT_SHARE_PERCENT = 80


# ============================================================
# ENUMS
# ============================================================

class EventType(Enum):
    """Stored in burn_events.event_type."""
    TRANSFER = "Transfer"
    XEN_BURNED = "XENBurned"
    BURN_NFT_MINTED = "BurnNFTMinted"
    XBURN_CLAIMED = "XBURNClaimed"
    XBURN_BURNED = "XBURNBurned"
    EMERGENCY_END = "EmergencyEnd"
    LOCK_CLAIMED = "LockClaimed"
    LOCK_BURNED = "LockBurned"


class EventCategory(Enum):
    """The four independent log queries run per batch."""
    DIRECT_BURN = "direct_burn"
    EXPLICIT_BURN = "explicit_burn"
    POSITION_MINT = "position_mint"
    CLAIM = "claim"


class PositionStatus(Enum):
    """Burn position lifecycle. LOCKED is the only non-terminal state."""
    LOCKED = "locked"
    CLAIMED = "claimed"
    EMERGENCY_WITHDRAWN = "emergency_withdrawn"
    EMERGENCY_WITHDRAWN_OWNER_UNVERIFIED = "emergency_withdrawn_owner_unverified"
    CLAIMED_UNKNOWN_TYPE = "claimed_unknown_type"

    @property
    def is_terminal(self) -> bool:
        return self != PositionStatus.LOCKED

    @property
    def specificity(self) -> int:
        """How much evidence backs this status; higher wins on replay."""
        return _STATUS_SPECIFICITY[self]

    def may_be_replaced_by(self, other: "PositionStatus") -> bool:
        """
        A close-out may overwrite this status only with an equally or
        more specific terminal status.
        """
        if not other.is_terminal:
            return False
        return other.specificity >= self.specificity

    @classmethod
    def parse(cls, value: str) -> "PositionStatus":
        return cls(value)


_STATUS_SPECIFICITY = {
    PositionStatus.LOCKED: 0,
    PositionStatus.CLAIMED_UNKNOWN_TYPE: 1,
    PositionStatus.EMERGENCY_WITHDRAWN_OWNER_UNVERIFIED: 2,
    PositionStatus.EMERGENCY_WITHDRAWN: 3,
    PositionStatus.CLAIMED: 3,
}


class ChainState(Enum):
    """Configuration state of a chain as seen by the manager."""
    UNCONFIGURED = "unconfigured"
    ACTIVE = "active"
    DISABLED = "disabled"


# ============================================================
# DOMAIN EVENTS
# ============================================================

@dataclass(frozen=True)
class ChainEvent:
    """Fields common to every decoded log."""
    chain_id: int
    transaction_hash: str
    block_number: int
    log_index: int
    contract_address: str
    args: dict[str, Any] = field(compare=False, repr=False)

    event_type: ClassVar[EventType]
    category: ClassVar[EventCategory]

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)

    @property
    def user_address(self) -> str:
        return getattr(self, "user", None) or self.contract_address

    def raw_payload(self) -> dict[str, Any]:
        """JSON-safe copy of the decoded args for burn_events.raw_log."""
        payload = {
            key: str(value) if isinstance(value, int) else value
            for key, value in self.args.items()
        }
        payload["log_index"] = self.log_index
        return payload


@dataclass(frozen=True)
class DirectBurnEvent(ChainEvent):
    """XEN Transfer to the zero address."""
    sender: str = ""
    amount: int = 0

    event_type: ClassVar[EventType] = EventType.TRANSFER
    category: ClassVar[EventCategory] = EventCategory.DIRECT_BURN

    @property
    def user_address(self) -> str:
        return self.sender


@dataclass(frozen=True)
class ExplicitBurnEvent(ChainEvent):
    """Minter XENBurned(user, amount)."""
    user: str = ""
    amount: int = 0

    event_type: ClassVar[EventType] = EventType.XEN_BURNED
    category: ClassVar[EventCategory] = EventCategory.EXPLICIT_BURN


@dataclass(frozen=True)
class XburnBurnedEvent(ChainEvent):
    """Minter XBURNBurned(user, amount)."""
    user: str = ""
    amount: int = 0

    event_type: ClassVar[EventType] = EventType.XBURN_BURNED
    category: ClassVar[EventCategory] = EventCategory.EXPLICIT_BURN


@dataclass(frozen=True)
class PositionMintedEvent(ChainEvent):
    """Minter BurnNFTMinted(user, tokenId, xenAmount, termDays)."""
    user: str = ""
    token_id: int = 0
    xen_amount: int = 0
    term_days: int = 0

    event_type: ClassVar[EventType] = EventType.BURN_NFT_MINTED
    category: ClassVar[EventCategory] = EventCategory.POSITION_MINT


@dataclass(frozen=True)
class MinterClaimEvent(ChainEvent):
    """Minter XBURNClaimed(user, baseAmount, bonusAmount)."""
    user: str = ""
    base_amount: int = 0
    bonus_amount: int = 0

    event_type: ClassVar[EventType] = EventType.XBURN_CLAIMED
    category: ClassVar[EventCategory] = EventCategory.CLAIM

    @property
    def total_amount(self) -> int:
        return self.base_amount + self.bonus_amount


@dataclass(frozen=True)
class EmergencyEndEvent(ChainEvent):
    """Minter EmergencyEnd(user, baseAmount)."""
    user: str = ""
    base_amount: int = 0

    event_type: ClassVar[EventType] = EventType.EMERGENCY_END
    category: ClassVar[EventCategory] = EventCategory.CLAIM


@dataclass(frozen=True)
class PositionClaimedEvent(ChainEvent):
    """NFT LockClaimed(tokenId); the close-out trigger."""
    token_id: int = 0

    event_type: ClassVar[EventType] = EventType.LOCK_CLAIMED
    category: ClassVar[EventCategory] = EventCategory.CLAIM


@dataclass(frozen=True)
class PositionBurnedEvent(ChainEvent):
    """NFT LockBurned(tokenId)."""
    token_id: int = 0

    event_type: ClassVar[EventType] = EventType.LOCK_BURNED
    category: ClassVar[EventCategory] = EventCategory.CLAIM


# ============================================================
# BATCHES
# ============================================================

@dataclass(frozen=True)
class BlockRange:
    """Inclusive block range."""
    from_block: int
    to_block: int

    def __post_init__(self) -> None:
        if self.from_block > self.to_block:
            raise ValueError(f"Empty block range {self.from_block}..{self.to_block}")

    @property
    def size(self) -> int:
        return self.to_block - self.from_block + 1

    def split(self, window: int) -> list["BlockRange"]:
        """Consecutive sub-ranges of at most `window` blocks."""
        if window < 1:
            raise ValueError("window must be positive")
        ranges = []
        start = self.from_block
        while start <= self.to_block:
            end = min(start + window - 1, self.to_block)
            ranges.append(BlockRange(start, end))
            start = end + 1
        return ranges

    def __str__(self) -> str:
        return f"[{self.from_block},{self.to_block}]"


class BatchSource(Enum):
    POLL = "poll"
    HEAD = "head"
    BACKFILL = "backfill"


@dataclass
class BatchResult:
    """Processor acknowledgement for one batch."""
    processed: int = 0
    duplicates: int = 0
    failed: int = 0
    referential_gaps: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "duplicates": self.duplicates,
            "failed": self.failed,
            "referential_gaps": self.referential_gaps,
            "errors": self.errors[:10],
        }


@dataclass
class EventBatch:
    """
    Ordered events of one block range, published on a chain channel.

    The processor resolves `done` with a BatchResult once every
    event has been handled.
    """
    chain_id: int
    block_range: BlockRange
    events: list[ChainEvent]
    source: BatchSource = BatchSource.POLL
    done: Optional[asyncio.Future] = None

    def __post_init__(self) -> None:
        self.events = sorted(self.events, key=lambda e: e.sort_key)
        if self.done is None:
            self.done = asyncio.get_running_loop().create_future()


# ============================================================
# PURE HELPERS
# ============================================================

def split_burn_amount(amount: int) -> tuple[int, int]:
    """
    Split a burn into (direct, accumulated) shares.

    Integer division; the truncation remainder goes to the
    accumulated share so the parts always sum to `amount`.
    """
    if amount < 0:
        raise ValueError(f"burn amount cannot be negative: {amount}")
    direct = amount * DIRECT_SHARE_PERCENT // 100
    return direct, amount - direct


def maturity_timestamp(block_timestamp: int, term_days: int) -> int:
    return block_timestamp + term_days * SECONDS_PER_DAY


def compute_next_range(
    cursor: int,
    head: int,
    confirmation_buffer: int,
    batch_size: int,
) -> Optional[BlockRange]:
    """
    Next batch after `cursor`, staying `confirmation_buffer` blocks
    behind `head`. Returns None when there is nothing safe to index.
    """
    from_block = cursor + 1
    to_block = min(head - confirmation_buffer, from_block + batch_size - 1)
    if from_block > to_block:
        return None
    return BlockRange(from_block, to_block)
