"""
Shared state manager.

One manager per shared-state document. It holds the confirmed server state
and version, the ordered list of pending optimistic updates, and publishes
the visible state (confirmed state with every pending delta replayed) to
local listeners.

Inbound traffic (server pushes, reconnects, resyncs) goes through a single
inbox consumer, so it is applied strictly in arrival order. Local
optimistic updates change in-memory state before their first await.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable
from typing import Any

from engine.kernel.delta import diff, patch, replay
from engine.kernel.types import Applied, Cancelled, ChangeRef, MutationResult, new_id
from engine.sync.adapter import SharedStateAdapter
from engine.sync.connectivity import ConnectionState, ConnectivityMonitor
from engine.sync.document_store import OptimisticUpdate, SharedStateDocumentStore
from engine.sync.messages import ServerUpdate

logger = logging.getLogger(__name__)

Listener = Callable[[dict[str, Any]], None]
Mutator = Callable[[dict[str, Any]], MutationResult]

_UPDATE = "update"
_RECONNECT = "reconnect"
_RESYNC = "resync"


class SharedStateManager:
    def __init__(
        self,
        state_id: str,
        adapter: SharedStateAdapter,
        store: SharedStateDocumentStore,
        connectivity: ConnectivityMonitor,
    ) -> None:
        self.state_id = state_id
        self.adapter = adapter
        self._store = store
        self._connectivity = connectivity

        self._confirmed: dict[str, Any] = {}
        self._version = 0
        self._pending: list[OptimisticUpdate] = []
        self._data: dict[str, Any] = {}

        self._listeners: list[Listener] = []
        self._inbox: asyncio.Queue[tuple[str, ServerUpdate | None]] = asyncio.Queue()
        self._consumer: asyncio.Task | None = None
        self._unsubscribers: list[Callable[[], None]] = []
        self._ready = asyncio.Event()
        self._destroyed = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def data(self) -> dict[str, Any]:
        """Visible state. Treat as read-only."""
        return self._data

    @property
    def confirmed(self) -> dict[str, Any]:
        return self._confirmed

    @property
    def version(self) -> int:
        return self._version

    @property
    def pending_change_refs(self) -> list[ChangeRef]:
        return [u.change_ref for u in self._pending]

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Restore the local document, then listen to the adapter and connectivity."""
        doc = await self._store.get_document(self.state_id)
        if self._destroyed:
            return
        self._confirmed = doc.value
        self._version = doc.version
        self._pending = list(doc.optimistic_updates)
        self._recompute()
        if self._pending:
            logger.info("Restored %d pending updates for %s", len(self._pending), self.state_id)

        await self.adapter.init()
        if self._destroyed:
            return
        self._unsubscribers.append(self.adapter.subscribe(self._on_server_update))
        self._consumer = asyncio.ensure_future(self._consume())
        self._unsubscribers.append(self._connectivity.subscribe(self._on_connectivity, fire_immediately=True))
        self._ready.set()
        self._publish()

    def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self.adapter.destroy()
        if self._consumer is not None:
            self._consumer.cancel()
        while not self._inbox.empty():
            self._inbox.get_nowait()
            self._inbox.task_done()
        self._listeners.clear()
        # Wake anyone blocked in get_data_once/update_optimistic.
        self._ready.set()
        logger.debug("Destroyed manager %s", self.state_id)

    async def idle(self) -> None:
        """Wait until every queued push and resync has been processed."""
        await self._inbox.join()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; it is called right away once the manager is ready."""
        self._listeners.append(listener)
        if self._ready.is_set():
            listener(self._data)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def get_data_once(self) -> dict[str, Any]:
        await self._ready.wait()
        return copy.deepcopy(self._data)

    # ------------------------------------------------------------------
    # Optimistic updates
    # ------------------------------------------------------------------

    async def update_optimistic(self, mutator: Mutator) -> ChangeRef | None:
        """
        Apply mutator to a copy of the visible state.

        Returns the change ref of the new pending update, or None when the
        mutator cancels or the manager is destroyed.
        """
        if self._destroyed:
            return None
        await self._ready.wait()
        if self._destroyed:
            return None

        result = mutator(copy.deepcopy(self._data))
        if isinstance(result, Cancelled):
            return None
        if not isinstance(result, Applied):
            raise TypeError(f"mutator must return Applied or Cancelled, got {type(result).__name__}")

        update = OptimisticUpdate(
            change_ref=new_id(),
            delta=diff(self._data, result.state),
            source_version=self._version,
        )
        self._pending.append(update)
        self._recompute()
        self._publish()

        try:
            await self._store.push_optimistic_update(self.state_id, update)
        except Exception:
            logger.exception("Failed to persist optimistic update %s for %s", update.change_ref, self.state_id)
        return update.change_ref

    async def expire_optimistic_updates(self, change_refs: list[ChangeRef]) -> None:
        """Discard pending updates; the visible state reverts accordingly."""
        refs = set(change_refs)
        before = len(self._pending)
        self._pending = [u for u in self._pending if u.change_ref not in refs]
        if len(self._pending) == before:
            return
        logger.info("Expired %d optimistic updates for %s", before - len(self._pending), self.state_id)
        self._recompute()
        self._publish()
        await self._store.remove_optimistic_updates(self.state_id, list(refs))

    # ------------------------------------------------------------------
    # Inbound traffic
    # ------------------------------------------------------------------

    def request_resync(self) -> None:
        self._inbox.put_nowait((_RESYNC, None))

    def _on_server_update(self, update: ServerUpdate) -> None:
        if not self._destroyed:
            self._inbox.put_nowait((_UPDATE, update))

    def _on_connectivity(self, state: ConnectionState) -> None:
        if state == ConnectionState.ONLINE and not self._destroyed:
            self._inbox.put_nowait((_RECONNECT, None))

    async def _consume(self) -> None:
        while True:
            kind, update = await self._inbox.get()
            try:
                if self._destroyed:
                    continue
                if kind == _UPDATE:
                    await self._apply_server_update(update)
                elif kind == _RECONNECT:
                    await self.adapter.ensure_connected()
                    await self._resync()
                else:
                    await self._resync()
            except Exception:
                logger.exception("Failed to process %s for %s", kind, self.state_id)
            finally:
                self._inbox.task_done()

    async def _apply_server_update(self, update: ServerUpdate) -> None:
        if update.version <= self._version:
            logger.debug("Ignoring stale update v%d for %s (at v%d)", update.version, self.state_id, self._version)
            return
        if update.version > self._version + 1:
            logger.info(
                "Version gap for %s: at v%d, received v%d; resyncing",
                self.state_id,
                self._version,
                update.version,
            )
            await self._resync()
            return

        acked: list[ChangeRef] = []
        if update.change_ref is not None and update.change_ref in self.pending_change_refs:
            acked.append(update.change_ref)
            self._pending = [u for u in self._pending if u.change_ref != update.change_ref]

        patch(self._confirmed, update.delta)
        self._version = update.version
        self._recompute()
        self._publish()

        if acked:
            await self._store.remove_optimistic_updates(self.state_id, acked)
        await self._store.update_document(self.state_id, self._confirmed, self._version)

    async def _resync(self) -> None:
        if self._destroyed or not self._connectivity.is_online:
            return
        payload = await self.adapter.resync(self._version)
        if self._destroyed:
            return

        known = set(payload.change_refs)
        acked = [u.change_ref for u in self._pending if u.change_ref in known]
        self._pending = [u for u in self._pending if u.change_ref not in known]
        self._confirmed = payload.data
        self._version = payload.version
        self._recompute()
        self._publish()
        logger.info(
            "Resynced %s to v%d (%d acknowledged, %d pending)",
            self.state_id,
            self._version,
            len(acked),
            len(self._pending),
        )

        if acked:
            await self._store.remove_optimistic_updates(self.state_id, acked)
        await self._store.update_document(self.state_id, self._confirmed, self._version)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _recompute(self) -> None:
        self._data = replay(self._confirmed, [u.delta for u in self._pending])

    def _publish(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._data)
            except Exception:
                logger.exception("Listener failed for %s", self.state_id)
