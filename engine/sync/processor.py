"""
Operation log processor.

Delivers unprocessed operations to the hub in creation order. Sweeps are
single-flight: a sweep requested while one runs joins a single queued sweep.

Delivery policy (the same for every operation kind):
  2xx                    delivered, mark processed
  404 / 410              target gone, nothing left to do, mark processed
  400 / 409 / 422        the hub will never accept it, log and mark processed
  anything else          retry later

Ordering holds per workspace. An operation left for retry holds back the
later operations of its workspace for the rest of the sweep; operations of
other workspaces are still delivered.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import httpx

from engine.sync.connectivity import ConnectionState, ConnectivityMonitor
from engine.sync.hub_client import HttpResponseError, HubClient
from engine.sync.operation_log import OperationLog
from engine.sync.operations import (
    OPERATION_TYPES,
    Operation,
    UnknownOperationError,
)
from engine.sync.single_flight import SingleFlight

logger = logging.getLogger(__name__)

GONE_STATUSES = frozenset({404, 410})
REJECTED_STATUSES = frozenset({400, 409, 422})


class DeliveryOutcome(str, Enum):
    DELIVERED = "delivered"
    ALREADY_SATISFIED = "already_satisfied"
    REJECTED = "rejected"
    RETRY = "retry"


def classify_error(error: Exception) -> DeliveryOutcome:
    """Map a delivery failure to an outcome."""
    if isinstance(error, HttpResponseError):
        if error.status_code in GONE_STATUSES:
            return DeliveryOutcome.ALREADY_SATISFIED
        if error.status_code in REJECTED_STATUSES:
            return DeliveryOutcome.REJECTED
    return DeliveryOutcome.RETRY


def ordering_key(op: Operation) -> str:
    """Operations sharing a key are delivered strictly in creation order."""
    payload = op.operation
    workspace_id = getattr(payload, "workspace_id", None)
    if workspace_id is not None:
        return f"workspace:{workspace_id}"
    return f"runbook:{payload.runbook_id}"


class OperationProcessor:
    def __init__(self, log: OperationLog, hub: HubClient, connectivity: ConnectivityMonitor) -> None:
        self.log = log
        self.hub = hub
        self.connectivity = connectivity
        self._flight: SingleFlight[int] = SingleFlight(self._sweep)
        self._unsubscribe: Callable[[], None] | None = None
        self._background: set[asyncio.Future] = set()

        self._handlers: dict[str, Callable[[Any], Awaitable[Any]]] = {
            "workspace_created": self._workspace_created,
            "workspace_renamed": self._workspace_renamed,
            "workspace_deleted": self._workspace_deleted,
            "runbook_deleted": self._runbook_deleted,
            "workspace_initial_folder_layout": self._initial_folder_layout,
            "workspace_folder_created": self._folder_created,
            "workspace_folder_renamed": self._folder_renamed,
            "workspace_folder_deleted": self._folder_deleted,
            "workspace_items_moved": self._items_moved,
            "workspace_folder_moved": self._items_moved,
            "workspace_runbook_created": self._runbook_created,
            "workspace_runbook_deleted": self._workspace_runbook_deleted,
            "workspace_import_runbooks": self._import_runbooks,
        }
        check_handlers(self._handlers)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Sweep now if online, and again on every transition to online."""
        if self._unsubscribe is None:
            self._unsubscribe = self.connectivity.subscribe(self._on_connectivity, fire_immediately=True)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._flight.cancel()

    async def drain(self) -> None:
        """Wait for the running and queued sweeps to finish."""
        await self._flight.drain()

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def request_sweep(self) -> asyncio.Future[int]:
        future = self._flight.request()
        if future not in self._background:
            self._background.add(future)
            future.add_done_callback(self._on_sweep_done)
        return future

    async def process_unprocessed(self) -> int:
        """Run (or join) a sweep; returns how many operations were marked processed."""
        return await self.request_sweep()

    def on_operation_saved(self) -> None:
        if self.connectivity.is_online:
            self.request_sweep()

    def _on_connectivity(self, state: ConnectionState) -> None:
        if state == ConnectionState.ONLINE:
            self.request_sweep()

    def _on_sweep_done(self, future: asyncio.Future) -> None:
        self._background.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if isinstance(error, UnknownOperationError):
            logger.critical("Operation log holds an operation with no handler: %s", error)
        elif error is not None:
            logger.error("Operation sweep failed: %s", error, exc_info=error)

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def _sweep(self) -> int:
        if not self.connectivity.is_online:
            return 0

        operations = await self.log.get_unprocessed()
        processed = 0
        held: set[str] = set()
        for op in operations:
            if not self.connectivity.is_online:
                logger.info("Went offline mid-sweep; %d operations left", len(operations) - processed)
                break

            key = ordering_key(op)
            if key in held:
                continue

            outcome = await self.deliver(op)
            if outcome == DeliveryOutcome.RETRY:
                held.add(key)
                continue
            await self.log.mark_processed(op.id, datetime.now(UTC))
            processed += 1

        if processed:
            logger.info("Processed %d operations", processed)
        return processed

    async def deliver(self, op: Operation) -> DeliveryOutcome:
        op_type = op.operation.type
        handler = self._handlers.get(op_type)
        if handler is None:
            raise UnknownOperationError(op_type)

        try:
            await handler(op.operation)
        except (HttpResponseError, httpx.HTTPError) as e:
            outcome = classify_error(e)
            if outcome == DeliveryOutcome.RETRY:
                logger.warning("Delivery of %s (%s) failed, will retry: %s", op.id, op_type, e)
            elif outcome == DeliveryOutcome.REJECTED:
                logger.error("Hub refused %s (%s), dropping it: %s", op.id, op_type, e)
            else:
                logger.info("Target of %s (%s) no longer exists: %s", op.id, op_type, e)
            return outcome

        logger.debug("Delivered %s (%s)", op.id, op_type)
        return DeliveryOutcome.DELIVERED

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _workspace_created(self, op) -> None:
        await self.hub.create_workspace(op.workspace_id, op.name, op.org_id)

    async def _workspace_renamed(self, op) -> None:
        await self.hub.rename_workspace(op.workspace_id, op.name)

    async def _workspace_deleted(self, op) -> None:
        await self.hub.delete_workspace(op.workspace_id)

    async def _runbook_deleted(self, op) -> None:
        await self.hub.delete_runbook(op.runbook_id)

    async def _initial_folder_layout(self, op) -> None:
        await self.hub.update_folder(
            op.workspace_id,
            {"type": "initial_layout", "layout": op.layout, "change_ref": op.change_ref},
        )

    async def _folder_created(self, op) -> None:
        await self.hub.update_folder(
            op.workspace_id,
            {
                "type": "folder_created",
                "folder_id": op.folder_id,
                "name": op.name,
                "parent_id": op.parent_id,
                "change_ref": op.change_ref,
            },
        )

    async def _folder_renamed(self, op) -> None:
        await self.hub.update_folder(
            op.workspace_id,
            {"type": "folder_renamed", "folder_id": op.folder_id, "name": op.name, "change_ref": op.change_ref},
        )

    async def _folder_deleted(self, op) -> None:
        await self.hub.update_folder(
            op.workspace_id,
            {"type": "folder_deleted", "folder_id": op.folder_id, "change_ref": op.change_ref},
        )

    async def _items_moved(self, op) -> None:
        await self.hub.update_folder(
            op.workspace_id,
            {
                "type": "items_moved",
                "item_ids": op.item_ids,
                "new_parent_id": op.new_parent_id,
                "index": op.index,
                "change_ref": op.change_ref,
            },
        )

    async def _runbook_created(self, op) -> None:
        await self.hub.update_folder(
            op.workspace_id,
            {
                "type": "runbook_created",
                "runbook_id": op.runbook_id,
                "parent_id": op.parent_id,
                "change_ref": op.change_ref,
            },
        )

    async def _workspace_runbook_deleted(self, op) -> None:
        await self.hub.update_folder(
            op.workspace_id,
            {"type": "runbook_deleted", "runbook_id": op.runbook_id, "change_ref": op.change_ref},
        )

    async def _import_runbooks(self, op) -> None:
        await self.hub.update_folder(
            op.workspace_id,
            {
                "type": "import_runbooks",
                "runbook_ids": op.runbook_ids,
                "parent_id": op.parent_id,
                "change_ref": op.change_ref,
            },
        )


def check_handlers(handlers: dict[str, Any]) -> None:
    """Every operation tag needs exactly one handler, and every handler a tag."""
    missing = OPERATION_TYPES - set(handlers)
    extra = set(handlers) - OPERATION_TYPES
    if missing or extra:
        raise RuntimeError(
            f"Operation handlers out of sync: missing={sorted(missing)} unknown={sorted(extra)}"
        )
