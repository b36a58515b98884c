"""
Sync engine test configuration.

Everything runs against in-memory stores and the fakes in fakes.py.
Postgres-backed tests skip themselves when DATABASE_URL is not set.
"""

import pytest

from engine.sync.connectivity import ConnectionState, ConnectivityMonitor
from engine.sync.document_store import MemoryDocumentStore
from engine.sync.manager import SharedStateManager
from engine.sync.operation_log import MemoryOperationLog
from engine.sync.registry import SharedStateRegistry
from engine.sync.tests.fakes import FakeAdapter, FakeHub


@pytest.fixture
def connectivity():
    return ConnectivityMonitor(ConnectionState.OFFLINE)


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def log():
    return MemoryOperationLog()


@pytest.fixture
def hub():
    return FakeHub()


@pytest.fixture
def adapters():
    """Adapters created through adapter_factory, by state id."""
    return {}


@pytest.fixture
def adapter_factory(adapters):
    def factory(state_id):
        adapter = FakeAdapter(state_id)
        adapters[state_id] = adapter
        return adapter

    return factory


@pytest.fixture
async def registry(store, connectivity):
    reg = SharedStateRegistry(store, connectivity)
    yield reg
    reg.shutdown()


@pytest.fixture
async def make_manager(store, connectivity):
    managers = []

    async def factory(state_id="doc", adapter=None):
        manager = SharedStateManager(state_id, adapter or FakeAdapter(state_id), store, connectivity)
        await manager.start()
        managers.append(manager)
        return manager

    yield factory
    for manager in managers:
        manager.destroy()
