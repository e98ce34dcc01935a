"""
Chain Manager Tests.

============================================================
PURPOSE
============================================================
Startup seeding, runtime chain changes and shutdown.

============================================================
"""

import asyncio

import pytest
import pytest_asyncio

from core.exceptions import ConfigurationError
from indexer.config import IndexerConfig, ListenerSettings
from indexer.manager import ChainManager
from indexer.models import ChainState
from storage.repositories import BurnEventRepository, ChainRepository
from tests.fakes import ALICE, CHAIN_ID, FakeLogSource, chain_config, xen_burned


class GatedLogSource(FakeLogSource):
    """Holds every log fetch until the gate opens."""

    def __init__(self, chain_id, head=0):
        super().__init__(chain_id, head=head)
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()

    async def get_logs(self, log_filter, from_block, to_block):
        self.entered.set()
        await self.gate.wait()
        return await super().get_logs(log_filter, from_block, to_block)


class SourceFactory:
    """Hands out fake sources and remembers them."""

    def __init__(self, head=0, source_class=FakeLogSource):
        self.head = head
        self.source_class = source_class
        self.sources = {}

    def __call__(self, chain):
        source = self.source_class(chain.chain_id, head=self.head)
        self.sources[chain.chain_id] = source
        return source


@pytest.fixture
def config():
    return IndexerConfig(
        chains=[chain_config()],
        listener=ListenerSettings(poll_interval_seconds=3600, head_poll_interval_seconds=3600),
    )


@pytest.fixture
def factory():
    return SourceFactory()


@pytest_asyncio.fixture
async def manager(database, config, factory, clock):
    manager = ChainManager(database, config, source_factory=factory, clock=clock)
    yield manager
    await manager.shutdown()


class TestInitialize:

    @pytest.mark.asyncio
    async def test_seeds_empty_database(self, manager, database):
        configs = await manager.initialize(start_listeners=False)

        assert [c.chain_id for c in configs] == [CHAIN_ID]
        assert CHAIN_ID in manager.registry
        assert await manager.chain_state(CHAIN_ID) == ChainState.ACTIVE

    @pytest.mark.asyncio
    async def test_existing_rows_win_over_defaults(self, manager, database):
        async with database.transaction() as session:
            chains = ChainRepository(session)
            await chains.upsert(1, chain_config(chain_id=1, name="Ethereum").to_record())

        configs = await manager.initialize(start_listeners=False)

        assert [c.chain_id for c in configs] == [1]
        assert await manager.chain_state(CHAIN_ID) == ChainState.UNCONFIGURED

    @pytest.mark.asyncio
    async def test_disabled_chains_are_not_started(self, manager, database):
        async with database.transaction() as session:
            await ChainRepository(session).upsert(CHAIN_ID, chain_config(enabled=False).to_record())

        await manager.initialize(start_listeners=False)

        assert len(manager.registry) == 0

    @pytest.mark.asyncio
    async def test_listeners_start(self, manager):
        await manager.initialize()

        context = manager.registry.require(CHAIN_ID)
        assert context.listener.is_running
        assert manager.get_status()["initialized"]


class TestRuntimeChanges:

    @pytest.mark.asyncio
    async def test_add_chain_rejects_incomplete_config(self, manager):
        with pytest.raises(ConfigurationError) as exc_info:
            await manager.add_chain(chain_config(chain_id=10, rpc_url=""))

        assert exc_info.value.missing_fields == ["rpc_url"]
        assert await manager.chain_state(10) == ChainState.UNCONFIGURED

    @pytest.mark.asyncio
    async def test_add_chain(self, manager):
        await manager.initialize(start_listeners=False)

        await manager.add_chain(chain_config(chain_id=10, name="Optimism"), start_listener=False)

        assert manager.registry.chain_ids() == [CHAIN_ID, 10]
        assert await manager.chain_state(10) == ChainState.ACTIVE

    @pytest.mark.asyncio
    async def test_add_chain_restarts_existing(self, manager, factory):
        await manager.initialize(start_listeners=False)
        first = factory.sources[CHAIN_ID]

        await manager.add_chain(chain_config(batch_size=50), start_listener=False)

        assert first.closed
        assert manager.registry.get_config(CHAIN_ID).batch_size == 50

    @pytest.mark.asyncio
    async def test_disable_chain(self, manager, factory):
        await manager.initialize(start_listeners=False)

        assert await manager.disable_chain(CHAIN_ID)

        assert CHAIN_ID not in manager.registry
        assert factory.sources[CHAIN_ID].closed
        assert await manager.chain_state(CHAIN_ID) == ChainState.DISABLED

    @pytest.mark.asyncio
    async def test_disable_chain_waits_for_in_flight_batch(self, database, config, clock):
        factory = SourceFactory(head=105, source_class=GatedLogSource)
        manager = ChainManager(database, config, source_factory=factory, clock=clock)
        await manager.initialize()
        source = factory.sources[CHAIN_ID]
        source.add(xen_burned(50, ALICE, 1000))
        await asyncio.wait_for(source.entered.wait(), timeout=5)

        disabling = asyncio.create_task(manager.disable_chain(CHAIN_ID))
        await asyncio.sleep(0.05)
        assert not disabling.done()

        source.gate.set()
        assert await asyncio.wait_for(disabling, timeout=5)

        async with database.session() as session:
            assert await ChainRepository(session).get_cursor(CHAIN_ID) == 100
            rows = await BurnEventRepository(session).list_for_chain(CHAIN_ID)
        assert [row.block_number for row in rows] == [50]
        assert CHAIN_ID not in manager.registry
        assert source.closed
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_disable_unknown_chain(self, manager):
        await manager.initialize(start_listeners=False)

        assert not await manager.disable_chain(999)


class TestBackfillAndShutdown:

    @pytest.mark.asyncio
    async def test_backfill_requires_active_chain(self, manager):
        with pytest.raises(ConfigurationError):
            await manager.run_backfill(CHAIN_ID)

    @pytest.mark.asyncio
    async def test_backfill_runs_through_processor(self, manager, factory):
        factory.head = 500
        await manager.initialize(start_listeners=False)
        factory.sources[CHAIN_ID].add(xen_burned(100, ALICE, 1000))

        report = await manager.run_backfill(CHAIN_ID)

        assert report.succeeded
        assert report.events_processed == 1
        assert report.cursor == 495

    @pytest.mark.asyncio
    async def test_shutdown_detaches_everything(self, manager, factory):
        await manager.initialize()
        manager.start_validation_schedule()

        await manager.shutdown()

        assert len(manager.registry) == 0
        assert factory.sources[CHAIN_ID].closed
        assert not manager.get_status()["initialized"]
