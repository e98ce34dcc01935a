"""
Shared fixtures: a throwaway SQLite database and a fake chain.
"""

import asyncio
from datetime import datetime, timezone

import pytest
import pytest_asyncio

from core.clock import MockClock
from indexer.block_service import BlockService
from indexer.channel import EventChannel
from indexer.processor import EventProcessor
from indexer.registry import ChainContext, ChainRegistry
from storage.database import Database, DatabaseConfig
from storage.repositories import ChainRepository
from tests.fakes import CHAIN_ID, FakeLogSource, chain_config


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'indexer.db'}"))
    await db.connect()
    await db.create_schema()
    yield db
    await db.disconnect()


@pytest.fixture
def chain():
    return chain_config()


@pytest.fixture
def source():
    return FakeLogSource(CHAIN_ID, head=1000)


@pytest.fixture
def clock():
    return MockClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def seeded_database(database, chain):
    """Database with the test chain row present."""
    async with database.transaction() as session:
        await ChainRepository(session).upsert(chain.chain_id, chain.to_record())
    return database


@pytest.fixture
def registry(chain, source):
    registry = ChainRegistry()
    registry.register(ChainContext(config=chain, source=source, channel=EventChannel(chain.chain_id)))
    return registry


@pytest.fixture
def block_service(seeded_database, registry):
    return BlockService(seeded_database, registry)


@pytest.fixture
def processor(chain, seeded_database, block_service, source):
    return EventProcessor(chain, seeded_database, block_service, source)


@pytest_asyncio.fixture
async def channel(processor):
    """Channel with a running processor behind it."""
    channel = EventChannel(CHAIN_ID)
    task = asyncio.create_task(processor.run(channel))
    yield channel
    await channel.close()
    await task
