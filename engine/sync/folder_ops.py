"""
Optimistic workspace folder operations.

A folder operation runs in four steps:

1. apply the tree mutation to the manager's visible state (optimistically)
2. receive the change ref of the resulting pending update
3. record the matching operation in the operation log
4. if recording fails, expire the change ref so the visible state rolls back

WorkspaceFolders is the consumer-facing surface; callers never touch the
operation log or the managers directly.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from engine.kernel.types import CANCELLED, Applied, ChangeRef, MutationResult, new_id
from engine.kernel.workspace_folder import WorkspaceFolder
from engine.sync.messages import workspace_state_id
from engine.sync.operation_log import OperationLog
from engine.sync.operations import (
    Operation,
    OperationData,
    WorkspaceFolderCreated,
    WorkspaceFolderDeleted,
    WorkspaceFolderRenamed,
    WorkspaceImportRunbooks,
    WorkspaceInitialFolderLayout,
    WorkspaceItemsMoved,
    WorkspaceRunbookCreated,
    WorkspaceRunbookDeleted,
)
from engine.sync.registry import AdapterFactory, SharedStateRegistry

logger = logging.getLogger(__name__)

UpdateOptimistic = Callable[[Callable[[dict[str, Any]], MutationResult]], Awaitable[ChangeRef | None]]


@dataclass
class FolderOpResult:
    success: bool
    change_ref: ChangeRef | None = None
    operation: Operation | None = None


async def do_folder_op(
    update_optimistic: UpdateOptimistic,
    op: Callable[[WorkspaceFolder], bool],
    operation: Callable[[ChangeRef], OperationData],
    save: Callable[[OperationData], Awaitable[Operation]],
) -> FolderOpResult:
    """
    Run one optimistic folder operation.

    Failure with a change ref means the optimistic update was applied but the
    operation could not be recorded; the caller must expire that ref.
    """

    def mutator(state: dict[str, Any]) -> MutationResult:
        folder = WorkspaceFolder.from_dict(state)
        if not op(folder):
            return CANCELLED
        return Applied(folder.to_dict())

    change_ref = await update_optimistic(mutator)
    if change_ref is None:
        return FolderOpResult(success=False)

    try:
        saved = await save(operation(change_ref))
    except Exception:
        logger.exception("Failed to record folder operation for change %s", change_ref)
        return FolderOpResult(success=False, change_ref=change_ref)

    return FolderOpResult(success=True, change_ref=change_ref, operation=saved)


class WorkspaceFolders:
    """Named folder operations for any workspace."""

    def __init__(
        self,
        registry: SharedStateRegistry,
        log: OperationLog,
        adapter_factory: AdapterFactory,
        on_saved: Callable[[], None] | None = None,
    ) -> None:
        self.registry = registry
        self.log = log
        self.adapter_factory = adapter_factory
        self._on_saved = on_saved

    async def get(self, workspace_id: str) -> WorkspaceFolder:
        """Current visible folder tree of a workspace."""
        async with await self.registry.acquire(workspace_state_id(workspace_id), self.adapter_factory) as manager:
            return WorkspaceFolder.from_dict(await manager.get_data_once())

    async def create_folder(
        self, workspace_id: str, name: str, parent_id: str | None = None, folder_id: str | None = None
    ) -> FolderOpResult:
        folder_id = folder_id or new_id()
        return await self._run(
            workspace_id,
            lambda f: f.create_folder(folder_id, name, parent_id),
            lambda ref: WorkspaceFolderCreated(
                workspace_id=workspace_id, parent_id=parent_id, folder_id=folder_id, name=name, change_ref=ref
            ),
        )

    async def create_runbook(
        self, workspace_id: str, runbook_id: str, parent_id: str | None = None
    ) -> FolderOpResult:
        return await self._run(
            workspace_id,
            lambda f: f.create_runbook(runbook_id, parent_id),
            lambda ref: WorkspaceRunbookCreated(
                workspace_id=workspace_id, parent_id=parent_id, runbook_id=runbook_id, change_ref=ref
            ),
        )

    async def import_runbooks(
        self, workspace_id: str, runbook_ids: list[str], parent_id: str | None = None
    ) -> FolderOpResult:
        return await self._run(
            workspace_id,
            lambda f: f.import_runbooks(runbook_ids, parent_id),
            lambda ref: WorkspaceImportRunbooks(
                workspace_id=workspace_id, runbook_ids=list(runbook_ids), parent_id=parent_id, change_ref=ref
            ),
        )

    async def rename_folder(self, workspace_id: str, folder_id: str, new_name: str) -> FolderOpResult:
        return await self._run(
            workspace_id,
            lambda f: f.rename_folder(folder_id, new_name),
            lambda ref: WorkspaceFolderRenamed(
                workspace_id=workspace_id, folder_id=folder_id, name=new_name, change_ref=ref
            ),
        )

    async def delete_folder(self, workspace_id: str, folder_id: str) -> FolderOpResult:
        return await self._run(
            workspace_id,
            lambda f: f.delete_folder(folder_id),
            lambda ref: WorkspaceFolderDeleted(workspace_id=workspace_id, folder_id=folder_id, change_ref=ref),
        )

    async def delete_runbook(self, workspace_id: str, runbook_id: str) -> FolderOpResult:
        return await self._run(
            workspace_id,
            lambda f: f.delete_runbook(runbook_id),
            lambda ref: WorkspaceRunbookDeleted(workspace_id=workspace_id, runbook_id=runbook_id, change_ref=ref),
        )

    async def move_items(
        self, workspace_id: str, item_ids: list[str], new_parent_id: str | None, index: int = 0
    ) -> FolderOpResult:
        return await self._run(
            workspace_id,
            lambda f: f.move_items(item_ids, new_parent_id, index),
            lambda ref: WorkspaceItemsMoved(
                workspace_id=workspace_id,
                item_ids=list(item_ids),
                new_parent_id=new_parent_id,
                index=index,
                change_ref=ref,
            ),
        )

    async def set_initial_layout(self, workspace_id: str, layout: WorkspaceFolder) -> FolderOpResult:
        """Seed an empty workspace with a prepared layout."""
        data = layout.to_dict()

        def seed(folder: WorkspaceFolder) -> bool:
            if len(folder.tree):
                return False
            folder.tree = WorkspaceFolder.from_dict(data).tree
            return True

        return await self._run(
            workspace_id,
            seed,
            lambda ref: WorkspaceInitialFolderLayout(workspace_id=workspace_id, layout=data, change_ref=ref),
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _run(
        self,
        workspace_id: str,
        op: Callable[[WorkspaceFolder], bool],
        operation: Callable[[ChangeRef], OperationData],
    ) -> FolderOpResult:
        async with await self.registry.acquire(workspace_state_id(workspace_id), self.adapter_factory) as manager:
            result = await do_folder_op(manager.update_optimistic, op, operation, self.log.create)
            if not result.success and result.change_ref is not None:
                await manager.expire_optimistic_updates([result.change_ref])

        if result.success and self._on_saved is not None:
            self._on_saved()
        return result
