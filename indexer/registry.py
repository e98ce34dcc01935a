"""
Chain Registry - Per-chain runtime state owned by the ChainManager.

Holds the source, channel, listener and processor task for every
chain that is currently ingesting. Collaborators receive the
registry instead of reaching for process-wide maps.
"""

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterator, Optional

from indexer.channel import EventChannel
from indexer.config import ChainConfig
from onchain_adapters.base import ChainLogSource

if TYPE_CHECKING:
    from indexer.listener import EventListener
    from indexer.processor import EventProcessor


class ChainNotRegisteredError(KeyError):
    """No runtime context exists for the chain."""


@dataclass
class ChainContext:
    """Runtime handles of one ingesting chain."""
    config: ChainConfig
    source: ChainLogSource
    channel: EventChannel
    listener: Optional["EventListener"] = None
    processor: Optional["EventProcessor"] = None
    processor_task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def chain_id(self) -> int:
        return self.config.chain_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "name": self.config.name,
            "source": self.source.get_health().to_dict(),
            "listener": self.listener.get_status() if self.listener else None,
            "pending_batches": self.channel.pending(),
        }


class ChainRegistry:
    """chain_id -> ChainContext."""

    def __init__(self) -> None:
        self._contexts: dict[int, ChainContext] = {}

    def register(self, context: ChainContext) -> None:
        self._contexts[context.chain_id] = context

    def unregister(self, chain_id: int) -> Optional[ChainContext]:
        return self._contexts.pop(chain_id, None)

    def get(self, chain_id: int) -> Optional[ChainContext]:
        return self._contexts.get(chain_id)

    def require(self, chain_id: int) -> ChainContext:
        context = self._contexts.get(chain_id)
        if context is None:
            raise ChainNotRegisteredError(chain_id)
        return context

    def get_source(self, chain_id: int) -> ChainLogSource:
        return self.require(chain_id).source

    def get_config(self, chain_id: int) -> ChainConfig:
        return self.require(chain_id).config

    def chain_ids(self) -> list[int]:
        return sorted(self._contexts)

    def __contains__(self, chain_id: int) -> bool:
        return chain_id in self._contexts

    def __iter__(self) -> Iterator[ChainContext]:
        return iter(list(self._contexts.values()))

    def __len__(self) -> int:
        return len(self._contexts)
