"""
Chain Manager - Lifecycle of every indexed chain.

============================================================
RESPONSIBILITY
============================================================
- Loads chain configuration from storage, seeding the built-in
  defaults into an empty database
- Starts one listener and one processor per enabled chain
- Adds, re-enables and disables chains at runtime
- Runs backfills and the validation schedule
- Shuts everything down without cancelling in-flight work

============================================================
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from core.clock import ClockProtocol, get_clock
from core.exceptions import ConfigurationError
from indexer.backfill import BackfillReport, HistoricalBackfill
from indexer.block_service import BlockService
from indexer.channel import EventChannel
from indexer.config import ChainConfig, IndexerConfig
from indexer.listener import EventListener
from indexer.models import ChainState
from indexer.processor import EventProcessor
from indexer.registry import ChainContext, ChainRegistry
from indexer.validator import DataValidator
from onchain_adapters.base import ChainLogSource
from onchain_adapters.rpc import JsonRpcLogSource
from storage.database import Database
from storage.repositories import ChainRepository


logger = logging.getLogger(__name__)

SourceFactory = Callable[[ChainConfig], ChainLogSource]


def default_source_factory(chain: ChainConfig) -> ChainLogSource:
    return JsonRpcLogSource(chain_id=chain.chain_id, rpc_url=chain.rpc_url)


class ChainManager:
    """Owns the ChainRegistry and every per-chain worker."""

    def __init__(
        self,
        database: Database,
        config: IndexerConfig,
        source_factory: Optional[SourceFactory] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._database = database
        self._config = config
        self._source_factory = source_factory or default_source_factory
        self._clock = clock or get_clock()

        self.registry = ChainRegistry()
        self.block_service = BlockService(database, self.registry)
        self.validator = DataValidator(database, config.validation)

        self._initialized = False

    # =========================================================
    # STARTUP
    # =========================================================

    async def initialize(self, start_listeners: bool = True) -> list[ChainConfig]:
        """
        Load chains and start ingestion for the enabled ones.

        Raises:
            ConfigurationError: a persisted or default chain is invalid
        """
        async with self._database.transaction() as session:
            chains = ChainRepository(session)
            records = await chains.list_all()
            if not records:
                logger.info("No chains configured, seeding defaults")
                for chain in self._config.chains:
                    chain.validate()
                    await chains.upsert(chain.chain_id, chain.to_record())
                records = await chains.list_all()

        configs = [ChainConfig.from_record(record) for record in records]
        for chain in configs:
            if chain.enabled:
                chain.validate()
                await self._start_chain(chain, start_listeners)

        self._initialized = True
        logger.info(
            f"Chain manager initialized: {len(self.registry)} of {len(configs)} chains active"
        )
        return configs

    async def _start_chain(self, chain: ChainConfig, start_listener: bool = True) -> ChainContext:
        source = self._source_factory(chain)
        channel = EventChannel(chain.chain_id)
        processor = EventProcessor(chain, self._database, self.block_service, source)
        context = ChainContext(config=chain, source=source, channel=channel, processor=processor)
        self.registry.register(context)

        context.processor_task = asyncio.create_task(
            processor.run(channel), name=f"processor-{chain.chain_id}"
        )
        if start_listener:
            context.listener = EventListener(
                chain, self._config.listener, self._database, source, channel
            )
            context.listener.start_listening(self._config.listener.poll_interval_seconds)

        logger.info(f"[chain {chain.chain_id}] {chain.name} started")
        return context

    async def _stop_chain(self, chain_id: int) -> None:
        context = self.registry.get(chain_id)
        if context is None:
            return
        if context.listener is not None:
            await context.listener.stop()
        await context.channel.close()
        if context.processor_task is not None:
            await context.processor_task
        await context.source.close()
        self.registry.unregister(chain_id)
        logger.info(f"[chain {chain_id}] stopped")

    # =========================================================
    # RUNTIME CHANGES
    # =========================================================

    async def add_chain(self, chain: ChainConfig, start_listener: bool = True) -> None:
        """
        Persist a chain and (re)start it if enabled.

        Raises:
            ConfigurationError: before any I/O, if a required field is missing
        """
        chain.validate()

        async with self._database.transaction() as session:
            await ChainRepository(session).upsert(chain.chain_id, chain.to_record())

        await self._stop_chain(chain.chain_id)
        if chain.enabled:
            await self._start_chain(chain, start_listener)

    async def disable_chain(self, chain_id: int) -> bool:
        """Flag a chain disabled and detach it once in-flight work is done."""
        async with self._database.transaction() as session:
            found = await ChainRepository(session).set_enabled(chain_id, False)
        if not found:
            logger.warning(f"[chain {chain_id}] disable requested for unknown chain")
        await self._stop_chain(chain_id)
        return found

    async def chain_state(self, chain_id: int) -> ChainState:
        async with self._database.session() as session:
            record = await ChainRepository(session).get(chain_id)
        if record is None:
            return ChainState.UNCONFIGURED
        return ChainState.ACTIVE if record.enabled else ChainState.DISABLED

    # =========================================================
    # BACKFILL & VALIDATION
    # =========================================================

    async def run_backfill(
        self,
        chain_id: int,
        end_block: Optional[int] = None,
    ) -> BackfillReport:
        """
        Raises:
            ConfigurationError: the chain is not active
        """
        context = self.registry.get(chain_id)
        if context is None:
            raise ConfigurationError(f"Chain {chain_id} is not active", chain_id=chain_id)
        backfill = HistoricalBackfill(
            context.config,
            self._config.listener,
            self._database,
            context.source,
            context.channel,
        )
        return await backfill.run(end_block)

    def start_validation_schedule(self) -> None:
        self.validator.start_schedule(self.registry.chain_ids)

    # =========================================================
    # SHUTDOWN & STATUS
    # =========================================================

    async def shutdown(self) -> None:
        """Stop every chain; in-flight batches complete first."""
        await self.validator.stop_schedule()
        for chain_id in self.registry.chain_ids():
            await self._stop_chain(chain_id)
        self._initialized = False
        logger.info("Chain manager shut down")

    def get_status(self) -> dict[str, Any]:
        chains = {}
        for context in self.registry:
            status = context.to_dict()
            if context.processor is not None:
                status["processor"] = context.processor.get_status()
            chains[str(context.chain_id)] = status
        return {
            "initialized": self._initialized,
            "timestamp": self._clock.now().isoformat(),
            "chains": chains,
        }
