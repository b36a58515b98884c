"""
Registry of live shared-state managers.

Managers are reference-counted by state id. The first acquire builds and
starts the manager; releasing the last handle destroys it synchronously.
start_instance/stop_instance hold one extra reference owned by the registry
itself, for documents that should stay live without a consumer.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from engine.sync.adapter import SharedStateAdapter
from engine.sync.connectivity import ConnectivityMonitor
from engine.sync.document_store import SharedStateDocumentStore
from engine.sync.manager import SharedStateManager

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[str], SharedStateAdapter]


class ManagerHandle:
    """One counted reference to a manager. Release exactly once."""

    def __init__(self, registry: SharedStateRegistry, manager: SharedStateManager) -> None:
        self.manager = manager
        self._registry = registry
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._registry._release(self.manager)

    async def __aenter__(self) -> SharedStateManager:
        return self.manager

    async def __aexit__(self, *exc) -> None:
        self.release()


class _Entry:
    __slots__ = ("manager", "refcount", "started")

    def __init__(self, manager: SharedStateManager, started: asyncio.Future) -> None:
        self.manager = manager
        self.refcount = 0
        self.started = started


class SharedStateRegistry:
    def __init__(self, store: SharedStateDocumentStore, connectivity: ConnectivityMonitor) -> None:
        self._store = store
        self._connectivity = connectivity
        self._entries: dict[str, _Entry] = {}
        self._kept: dict[str, ManagerHandle] = {}

    def __contains__(self, state_id: object) -> bool:
        return state_id in self._entries

    def get(self, state_id: str) -> SharedStateManager | None:
        entry = self._entries.get(state_id)
        return entry.manager if entry else None

    def refcount(self, state_id: str) -> int:
        entry = self._entries.get(state_id)
        return entry.refcount if entry else 0

    async def acquire(self, state_id: str, adapter_factory: AdapterFactory) -> ManagerHandle:
        """Counted reference to the manager for state_id, started and ready."""
        entry = self._entries.get(state_id)
        if entry is None:
            manager = SharedStateManager(state_id, adapter_factory(state_id), self._store, self._connectivity)
            entry = _Entry(manager, asyncio.ensure_future(manager.start()))
            self._entries[state_id] = entry
            logger.debug("Created manager %s", state_id)

        entry.refcount += 1
        handle = ManagerHandle(self, entry.manager)
        try:
            await asyncio.shield(entry.started)
        except BaseException:
            handle.release()
            raise
        return handle

    async def start_instance(self, state_id: str, adapter_factory: AdapterFactory) -> None:
        if state_id in self._kept:
            return
        self._kept[state_id] = await self.acquire(state_id, adapter_factory)

    def stop_instance(self, state_id: str) -> None:
        handle = self._kept.pop(state_id, None)
        if handle is not None:
            handle.release()

    def shutdown(self) -> None:
        entries, self._entries = self._entries, {}
        self._kept.clear()
        for entry in entries.values():
            if not entry.started.done():
                entry.started.cancel()
            entry.manager.destroy()

    def _release(self, manager: SharedStateManager) -> None:
        entry = self._entries.get(manager.state_id)
        if entry is None or entry.manager is not manager:
            return
        entry.refcount -= 1
        if entry.refcount > 0:
            return
        del self._entries[manager.state_id]
        if not entry.started.done():
            entry.started.cancel()
        manager.destroy()
        logger.debug("Released last reference to %s", manager.state_id)
