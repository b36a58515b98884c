"""
Hub storage protocol and its in-memory implementation.

The hub keeps workspaces, the runbook → workspace index, one shared-state
document per workspace folder, and the change history of every document.
"""

from __future__ import annotations

import copy

from backend.models.shared_state import SharedStateChange, SharedStateDocument
from backend.models.workspace import Workspace


class VersionConflict(Exception):
    """A change was recorded against a document version that moved on."""

    pass


class HubStore:
    """
    Abstract storage interface.
    Implement with Postgres for production, or in-memory for tests.
    """

    # Workspaces

    async def create_workspace(self, workspace: Workspace, state_id: str) -> Workspace:
        """Insert the workspace and its empty folder document."""
        raise NotImplementedError

    async def get_workspace(self, workspace_id: str) -> Workspace | None:
        raise NotImplementedError

    async def rename_workspace(self, workspace_id: str, name: str) -> Workspace | None:
        raise NotImplementedError

    async def delete_workspace(self, workspace_id: str, state_id: str) -> bool:
        """Remove the workspace, its runbook index entries, document and history."""
        raise NotImplementedError

    # Runbook index

    async def index_runbooks(self, workspace_id: str, added: list[str], removed: list[str]) -> None:
        raise NotImplementedError

    async def get_runbook_workspace(self, runbook_id: str) -> str | None:
        raise NotImplementedError

    # Documents

    async def get_document(self, state_id: str) -> SharedStateDocument | None:
        raise NotImplementedError

    async def record_change(self, document: SharedStateDocument, change: SharedStateChange) -> None:
        """
        Store the new document value together with the change that produced it.

        Raises VersionConflict unless document.version is exactly one past the
        stored version.
        """
        raise NotImplementedError

    async def has_change_ref(self, state_id: str, change_ref: str) -> bool:
        raise NotImplementedError

    async def changes_since(self, state_id: str, version: int) -> list[SharedStateChange]:
        """Changes with a version greater than version, oldest first."""
        raise NotImplementedError


class MemoryHubStore(HubStore):
    def __init__(self) -> None:
        self.workspaces: dict[str, Workspace] = {}
        self.runbooks: dict[str, str] = {}
        self.documents: dict[str, SharedStateDocument] = {}
        self.changes: dict[str, list[SharedStateChange]] = {}

    async def create_workspace(self, workspace: Workspace, state_id: str) -> Workspace:
        self.workspaces[workspace.id] = workspace.model_copy()
        self.documents[state_id] = SharedStateDocument(state_id=state_id)
        self.changes[state_id] = []
        return workspace

    async def get_workspace(self, workspace_id: str) -> Workspace | None:
        ws = self.workspaces.get(workspace_id)
        return ws.model_copy() if ws else None

    async def rename_workspace(self, workspace_id: str, name: str) -> Workspace | None:
        ws = self.workspaces.get(workspace_id)
        if ws is None:
            return None
        ws.name = name
        return ws.model_copy()

    async def delete_workspace(self, workspace_id: str, state_id: str) -> bool:
        if self.workspaces.pop(workspace_id, None) is None:
            return False
        self.runbooks = {r: w for r, w in self.runbooks.items() if w != workspace_id}
        self.documents.pop(state_id, None)
        self.changes.pop(state_id, None)
        return True

    async def index_runbooks(self, workspace_id: str, added: list[str], removed: list[str]) -> None:
        for runbook_id in removed:
            if self.runbooks.get(runbook_id) == workspace_id:
                del self.runbooks[runbook_id]
        for runbook_id in added:
            self.runbooks[runbook_id] = workspace_id

    async def get_runbook_workspace(self, runbook_id: str) -> str | None:
        return self.runbooks.get(runbook_id)

    async def get_document(self, state_id: str) -> SharedStateDocument | None:
        doc = self.documents.get(state_id)
        return doc.model_copy(deep=True) if doc else None

    async def record_change(self, document: SharedStateDocument, change: SharedStateChange) -> None:
        current = self.documents.get(document.state_id)
        if current is None or current.version + 1 != document.version:
            raise VersionConflict(document.state_id)
        self.documents[document.state_id] = document.model_copy(deep=True)
        self.changes.setdefault(document.state_id, []).append(change.model_copy(deep=True))

    async def has_change_ref(self, state_id: str, change_ref: str) -> bool:
        return any(c.change_ref == change_ref for c in self.changes.get(state_id, []))

    async def changes_since(self, state_id: str, version: int) -> list[SharedStateChange]:
        return [copy.deepcopy(c) for c in self.changes.get(state_id, []) if c.version > version]
