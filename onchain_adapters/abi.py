"""
ABI Codec - Event topics, log decoding and eth_call encoding.

============================================================
RESPONSIBILITY
============================================================
Knows the on-chain shape of every event and view function the
indexer touches, and nothing about what they mean.

- Computes topic0 hashes from canonical signatures
- Decodes indexed topics and the data payload of a RawLog
- Encodes calldata and decodes return data for eth_call

Malformed input raises DecodeError; callers decide whether to
skip or fail.

============================================================
"""

from dataclasses import dataclass, field
from typing import Any, Sequence

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError, EncodingError
from eth_utils import keccak

from core.exceptions import DecodeError
from onchain_adapters.models import ZERO_ADDRESS, RawLog


def _hex_bytes(value: str) -> bytes:
    if value.startswith("0x"):
        value = value[2:]
    return bytes.fromhex(value)


def _normalize(abi_type: str, value: Any) -> Any:
    if abi_type == "address":
        return value.lower()
    if abi_type.startswith("bytes"):
        return "0x" + value.hex()
    return value


def address_topic(address: str) -> str:
    """Left-pad an address into a 32-byte topic."""
    return "0x" + address.lower().replace("0x", "").rjust(64, "0")


# ============================================================
# EVENTS
# ============================================================

@dataclass(frozen=True)
class EventParam:
    name: str
    abi_type: str
    indexed: bool = False


@dataclass(frozen=True)
class EventDefinition:
    """A Solidity event and its topic0 hash."""
    name: str
    params: tuple[EventParam, ...]
    topic: str = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "topic", "0x" + keccak(text=self.signature).hex())

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(p.abi_type for p in self.params)})"

    @property
    def indexed_params(self) -> list[EventParam]:
        return [p for p in self.params if p.indexed]

    @property
    def data_params(self) -> list[EventParam]:
        return [p for p in self.params if not p.indexed]

    def decode(self, log: RawLog) -> dict[str, Any]:
        """
        Decode a log emitted by this event into {param name: value}.

        Raises:
            DecodeError: wrong topic0, missing topics or bad payload
        """
        if log.topic0 != self.topic:
            raise DecodeError(
                f"Log is not a {self.name} event",
                transaction_hash=log.transaction_hash,
                log_index=log.log_index,
            )

        indexed = self.indexed_params
        if len(log.topics) != len(indexed) + 1:
            raise DecodeError(
                f"{self.name} expects {len(indexed)} indexed topics, got {len(log.topics) - 1}",
                transaction_hash=log.transaction_hash,
                log_index=log.log_index,
            )

        values: dict[str, Any] = {}
        try:
            for param, topic in zip(indexed, log.topics[1:]):
                (value,) = decode([param.abi_type], _hex_bytes(topic))
                values[param.name] = _normalize(param.abi_type, value)

            data_params = self.data_params
            decoded = decode([p.abi_type for p in data_params], _hex_bytes(log.data))
            for param, value in zip(data_params, decoded):
                values[param.name] = _normalize(param.abi_type, value)
        except (DecodingError, ValueError) as e:
            raise DecodeError(
                f"Malformed {self.name} log: {e}",
                transaction_hash=log.transaction_hash,
                log_index=log.log_index,
                cause=e,
            ) from e

        return values


TRANSFER = EventDefinition("Transfer", (
    EventParam("from", "address", indexed=True),
    EventParam("to", "address", indexed=True),
    EventParam("value", "uint256"),
))

XEN_BURNED = EventDefinition("XENBurned", (
    EventParam("user", "address", indexed=True),
    EventParam("amount", "uint256"),
))

BURN_NFT_MINTED = EventDefinition("BurnNFTMinted", (
    EventParam("user", "address", indexed=True),
    EventParam("tokenId", "uint256", indexed=True),
    EventParam("xenAmount", "uint256"),
    EventParam("termDays", "uint256"),
))

XBURN_CLAIMED = EventDefinition("XBURNClaimed", (
    EventParam("user", "address", indexed=True),
    EventParam("baseAmount", "uint256"),
    EventParam("bonusAmount", "uint256"),
))

XBURN_BURNED = EventDefinition("XBURNBurned", (
    EventParam("user", "address", indexed=True),
    EventParam("amount", "uint256"),
))

EMERGENCY_END = EventDefinition("EmergencyEnd", (
    EventParam("user", "address", indexed=True),
    EventParam("baseAmount", "uint256"),
))

LOCK_CLAIMED = EventDefinition("LockClaimed", (
    EventParam("tokenId", "uint256", indexed=True),
))

LOCK_BURNED = EventDefinition("LockBurned", (
    EventParam("tokenId", "uint256", indexed=True),
))

ALL_EVENTS = (
    TRANSFER,
    XEN_BURNED,
    BURN_NFT_MINTED,
    XBURN_CLAIMED,
    XBURN_BURNED,
    EMERGENCY_END,
    LOCK_CLAIMED,
    LOCK_BURNED,
)

EVENTS_BY_TOPIC = {event.topic: event for event in ALL_EVENTS}

ZERO_ADDRESS_TOPIC = address_topic(ZERO_ADDRESS)


# ============================================================
# VIEW FUNCTIONS
# ============================================================

@dataclass(frozen=True)
class FunctionDefinition:
    """A view function called through eth_call."""
    name: str
    input_types: tuple[str, ...]
    output_types: tuple[str, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.input_types)})"

    @property
    def selector(self) -> bytes:
        return keccak(text=self.signature)[:4]

    def encode_call(self, *args: Any) -> str:
        try:
            payload = encode(list(self.input_types), list(args)) if self.input_types else b""
        except EncodingError as e:
            raise ValueError(f"Cannot encode {self.signature} with {args!r}: {e}") from e
        return "0x" + (self.selector + payload).hex()

    def decode_result(self, data: str) -> tuple[Any, ...]:
        try:
            values = decode(list(self.output_types), _hex_bytes(data))
        except (DecodingError, ValueError) as e:
            raise DecodeError(f"Malformed {self.name} result: {e}", cause=e) from e
        return tuple(_normalize(t, v) for t, v in zip(self.output_types, values))


OWNER_OF = FunctionDefinition("ownerOf", ("uint256",), ("address",))

GET_CURRENT_AMP = FunctionDefinition("getCurrentAMP", (), ("uint256",))

CALCULATE_REWARD = FunctionDefinition("calculateReward", ("uint256", "uint256"), ("uint256",))


def topics_for(events: Sequence[EventDefinition]) -> tuple[str, ...]:
    return tuple(event.topic for event in events)
