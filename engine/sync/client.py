"""
Sync client — composition root for the client side.

Owns the connectivity monitor, local stores, the manager registry, the
operation processor and the WorkspaceFolders service. Nothing here is a
process-wide global; build one SyncClient per application instance.

Usage:
    client = await SyncClient.create()
    await client.start()
    await client.watch_workspace(workspace_id)
    await client.folders.create_folder(workspace_id, "Deploys")
    client.connectivity.set_online()
    ...
    await client.stop()
"""

from __future__ import annotations

import logging

import asyncpg

from engine.sync.adapter import SharedStateAdapter, WebSocketSharedStateAdapter
from engine.sync.config import SyncSettings, settings
from engine.sync.connectivity import ConnectionState, ConnectivityMonitor
from engine.sync.document_store import MemoryDocumentStore, PostgresDocumentStore, SharedStateDocumentStore
from engine.sync.folder_ops import WorkspaceFolders
from engine.sync.hub_client import HubClient
from engine.sync.messages import workspace_state_id
from engine.sync.operation_log import MemoryOperationLog, OperationLog, PostgresOperationLog
from engine.sync.operations import (
    Operation,
    OperationData,
    RunbookDeleted,
    WorkspaceCreated,
    WorkspaceDeleted,
    WorkspaceRenamed,
)
from engine.sync.processor import OperationProcessor
from engine.sync.registry import AdapterFactory, SharedStateRegistry

logger = logging.getLogger(__name__)


class SyncClient:
    def __init__(
        self,
        store: SharedStateDocumentStore,
        log: OperationLog,
        hub: HubClient,
        adapter_factory: AdapterFactory,
        connectivity: ConnectivityMonitor | None = None,
        pool: asyncpg.Pool | None = None,
    ) -> None:
        self.store = store
        self.log = log
        self.hub = hub
        self.adapter_factory = adapter_factory
        self.connectivity = connectivity or ConnectivityMonitor(ConnectionState.OFFLINE)
        self.registry = SharedStateRegistry(store, self.connectivity)
        self.processor = OperationProcessor(log, hub, self.connectivity)
        self.folders = WorkspaceFolders(self.registry, log, adapter_factory, on_saved=self.processor.on_operation_saved)
        self._pool = pool

    @classmethod
    async def create(cls, config: SyncSettings = settings) -> SyncClient:
        """Build from settings: Postgres-backed when a local database is configured."""
        hub = HubClient(config.HUB_URL, config.HUB_TOKEN, timeout=config.HTTP_TIMEOUT_SECONDS)

        def adapter_factory(state_id: str) -> SharedStateAdapter:
            return WebSocketSharedStateAdapter(state_id, config.HUB_WS_URL, config.HUB_TOKEN)

        if not config.DATABASE_URL:
            logger.info("No local database configured; sync state is kept in memory")
            return cls(MemoryDocumentStore(), MemoryOperationLog(), hub, adapter_factory)

        pool = await asyncpg.create_pool(dsn=config.DATABASE_URL, min_size=1, max_size=5)
        store = PostgresDocumentStore(pool)
        log = PostgresOperationLog(pool)
        await store.ensure_schema()
        await log.ensure_schema()
        return cls(store, log, hub, adapter_factory, pool=pool)

    async def start(self) -> None:
        self.processor.start()
        logger.info("Sync client started (%s)", self.connectivity.state.value)

    async def stop(self) -> None:
        self.processor.stop()
        self.registry.shutdown()
        await self.hub.close()
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
        logger.info("Sync client stopped")

    # ------------------------------------------------------------------
    # Workspaces
    # ------------------------------------------------------------------

    async def watch_workspace(self, workspace_id: str) -> None:
        """Keep the workspace's folder document live until unwatch_workspace."""
        await self.registry.start_instance(workspace_state_id(workspace_id), self.adapter_factory)

    def unwatch_workspace(self, workspace_id: str) -> None:
        self.registry.stop_instance(workspace_state_id(workspace_id))

    async def create_workspace(self, workspace_id: str, name: str, org_id: str | None = None) -> Operation:
        return await self._record(WorkspaceCreated(workspace_id=workspace_id, name=name, org_id=org_id))

    async def rename_workspace(self, workspace_id: str, name: str) -> Operation:
        return await self._record(WorkspaceRenamed(workspace_id=workspace_id, name=name))

    async def delete_workspace(self, workspace_id: str) -> Operation:
        self.unwatch_workspace(workspace_id)
        await self.store.delete_document(workspace_state_id(workspace_id))
        return await self._record(WorkspaceDeleted(workspace_id=workspace_id))

    async def delete_runbook(self, runbook_id: str) -> Operation:
        return await self._record(RunbookDeleted(runbook_id=runbook_id))

    async def _record(self, data: OperationData) -> Operation:
        operation = await self.log.create(data)
        self.processor.on_operation_saved()
        return operation
