"""
Shared-state hub.

The remote authority for workspace folder documents. Every change to a
document is applied under that document's lock, recorded with the next
version, and broadcast to the document's subscribers as
{version, delta, change_ref}.

Folder operations carry the client's change_ref. The hub records a change for
every ref it sees exactly once, even when the operation is rejected or its
target is gone, so clients always get an acknowledgement and can drop their
optimistic delta.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from fastapi.requests import HTTPConnection

from backend.models.shared_state import SharedStateChange, SharedStateDocument
from backend.models.workspace import FolderUpdateResponse, FolderUpdateStatus, Workspace
from backend.repos.hub_store import HubStore
from engine.kernel.delta import diff
from engine.kernel.folder_reducer import missing_targets, reduce_folder
from engine.kernel.workspace_folder import WorkspaceFolder
from engine.sync.messages import ResyncPayload, ServerUpdate, workspace_id_from_state_id, workspace_state_id

logger = logging.getLogger(__name__)

Subscriber = Callable[[ServerUpdate], None]


class WorkspaceNotFound(Exception):
    """The workspace does not exist or belongs to someone else."""

    pass


class WorkspaceConflict(Exception):
    """A workspace with this id already exists under another owner."""

    pass


class SharedStateHub:
    def __init__(self, store: HubStore) -> None:
        self.store = store
        self._locks: dict[str, asyncio.Lock] = {}
        self._subscribers: dict[str, list[Subscriber]] = {}

    def _get_lock(self, state_id: str) -> asyncio.Lock:
        """Per-document lock; all writes to one document are serialized."""
        if state_id not in self._locks:
            self._locks[state_id] = asyncio.Lock()
        return self._locks[state_id]

    # -------------------------------------------------------------------------
    # Workspaces
    # -------------------------------------------------------------------------

    async def create_workspace(
        self, user_id: str, workspace_id: str, name: str, org_id: str | None = None
    ) -> Workspace:
        """
        Create a workspace with an empty folder document.

        Creating a workspace the caller already owns returns it unchanged so a
        redelivered create is harmless.
        """
        existing = await self.store.get_workspace(workspace_id)
        if existing is not None:
            if existing.owner_id != user_id:
                raise WorkspaceConflict(workspace_id)
            return existing

        now = datetime.now(UTC)
        workspace = Workspace(
            id=workspace_id,
            name=name,
            owner_id=user_id,
            org_id=org_id,
            created_at=now,
            updated_at=now,
        )
        created = await self.store.create_workspace(workspace, workspace_state_id(workspace_id))
        logger.info("hub: created workspace %s", workspace_id)
        return created

    async def get_workspace(self, user_id: str, workspace_id: str) -> Workspace:
        workspace = await self.store.get_workspace(workspace_id)
        if workspace is None or workspace.owner_id != user_id:
            raise WorkspaceNotFound(workspace_id)
        return workspace

    async def rename_workspace(self, user_id: str, workspace_id: str, name: str) -> Workspace:
        await self.get_workspace(user_id, workspace_id)
        workspace = await self.store.rename_workspace(workspace_id, name)
        if workspace is None:
            raise WorkspaceNotFound(workspace_id)
        return workspace

    async def delete_workspace(self, user_id: str, workspace_id: str) -> None:
        await self.get_workspace(user_id, workspace_id)
        state_id = workspace_state_id(workspace_id)
        async with self._get_lock(state_id):
            if not await self.store.delete_workspace(workspace_id, state_id):
                raise WorkspaceNotFound(workspace_id)
        self._subscribers.pop(state_id, None)
        self._locks.pop(state_id, None)
        logger.info("hub: deleted workspace %s", workspace_id)

    # -------------------------------------------------------------------------
    # Runbooks
    # -------------------------------------------------------------------------

    async def delete_runbook(self, user_id: str, runbook_id: str) -> None:
        """
        Delete a runbook resource and remove it from its workspace tree.

        The tree change is hub-originated and carries no change_ref.
        """
        workspace_id = await self.store.get_runbook_workspace(runbook_id)
        if workspace_id is None:
            raise WorkspaceNotFound(runbook_id)
        await self.get_workspace(user_id, workspace_id)

        state_id = workspace_state_id(workspace_id)
        async with self._get_lock(state_id):
            doc = await self._load_document(state_id)
            folder = WorkspaceFolder.from_dict(doc.value)
            folder.delete_runbook(runbook_id)
            await self._record(doc, folder.to_dict(), change_ref=None)
            await self.store.index_runbooks(workspace_id, added=[], removed=[runbook_id])
        logger.info("hub: deleted runbook %s from workspace %s", runbook_id, workspace_id)

    # -------------------------------------------------------------------------
    # Folder documents
    # -------------------------------------------------------------------------

    async def apply_folder_operation(
        self, user_id: str, workspace_id: str, payload: dict[str, Any]
    ) -> FolderUpdateResponse:
        await self.get_workspace(user_id, workspace_id)
        change_ref = payload["change_ref"]
        state_id = workspace_state_id(workspace_id)

        async with self._get_lock(state_id):
            doc = await self._load_document(state_id)

            if await self.store.has_change_ref(state_id, change_ref):
                logger.debug("hub: duplicate change_ref %s on %s", change_ref, state_id)
                return FolderUpdateResponse(version=doc.version, status=FolderUpdateStatus.DUPLICATE)

            missing = missing_targets(doc.value, payload)
            if missing:
                version = await self._record(doc, doc.value, change_ref)
                logger.info("hub: %s on %s targets missing items %s", payload.get("type"), state_id, missing)
                return FolderUpdateResponse(
                    version=version,
                    status=FolderUpdateStatus.TARGET_MISSING,
                    reason=f"missing: {', '.join(str(m) for m in missing)}",
                )

            result = reduce_folder(doc.value, payload)
            if not result.accepted:
                version = await self._record(doc, doc.value, change_ref)
                logger.info("hub: rejected %s on %s: %s", payload.get("type"), state_id, result.reason)
                return FolderUpdateResponse(version=version, status=FolderUpdateStatus.REJECTED, reason=result.reason)

            before = set(WorkspaceFolder.from_dict(doc.value).runbook_ids())
            after = set(WorkspaceFolder.from_dict(result.state).runbook_ids())
            version = await self._record(doc, result.state, change_ref)
            if before != after:
                await self.store.index_runbooks(
                    workspace_id, added=sorted(after - before), removed=sorted(before - after)
                )
            return FolderUpdateResponse(version=version, status=FolderUpdateStatus.APPLIED)

    async def get_document(self, user_id: str, workspace_id: str) -> SharedStateDocument:
        await self.get_workspace(user_id, workspace_id)
        return await self._load_document(workspace_state_id(workspace_id))

    async def resync(self, user_id: str, state_id: str, last_known_version: int) -> ResyncPayload:
        """
        Authoritative state plus the change refs applied after last_known_version.
        """
        await self.authorize_state(user_id, state_id)
        async with self._get_lock(state_id):
            doc = await self._load_document(state_id)
            changes = await self.store.changes_since(state_id, last_known_version)
        return ResyncPayload(
            version=doc.version,
            data=doc.value,
            change_refs=[c.change_ref for c in changes if c.change_ref is not None],
        )

    async def authorize_state(self, user_id: str, state_id: str) -> SharedStateDocument:
        """Raise WorkspaceNotFound unless user_id may read state_id."""
        workspace_id = workspace_id_from_state_id(state_id)
        if workspace_id is None:
            raise WorkspaceNotFound(state_id)
        await self.get_workspace(user_id, workspace_id)
        return await self._load_document(state_id)

    # -------------------------------------------------------------------------
    # Subscribers
    # -------------------------------------------------------------------------

    def subscribe(self, state_id: str, subscriber: Subscriber) -> Callable[[], None]:
        """Register for updates on state_id. Returns an unsubscribe callable."""
        self._subscribers.setdefault(state_id, []).append(subscriber)

        def unsubscribe() -> None:
            subscribers = self._subscribers.get(state_id)
            if subscribers and subscriber in subscribers:
                subscribers.remove(subscriber)
                if not subscribers:
                    del self._subscribers[state_id]

        return unsubscribe

    def subscriber_count(self, state_id: str) -> int:
        return len(self._subscribers.get(state_id, []))

    def _broadcast(self, state_id: str, update: ServerUpdate) -> None:
        for subscriber in list(self._subscribers.get(state_id, [])):
            try:
                subscriber(update)
            except Exception:
                logger.exception("hub: subscriber failed for %s", state_id)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _load_document(self, state_id: str) -> SharedStateDocument:
        doc = await self.store.get_document(state_id)
        if doc is None:
            raise WorkspaceNotFound(state_id)
        return doc

    async def _record(self, doc: SharedStateDocument, value: dict[str, Any], change_ref: str | None) -> int:
        """Store value as the next version of doc and broadcast the change. Caller holds the lock."""
        delta = diff(doc.value, value)
        version = doc.version + 1
        await self.store.record_change(
            SharedStateDocument(state_id=doc.state_id, value=value, version=version),
            SharedStateChange(state_id=doc.state_id, version=version, change_ref=change_ref, delta=delta),
        )
        logger.debug("hub: %s v%d change_ref=%s", doc.state_id, version, change_ref)
        self._broadcast(doc.state_id, ServerUpdate(version=version, delta=delta, change_ref=change_ref))
        return version


def get_hub(conn: HTTPConnection) -> SharedStateHub:
    """FastAPI dependency: the hub attached to the running app."""
    return conn.app.state.hub
