"""
Runbook Sync Kernel — Workspace Folder

Folder/runbook layout of one workspace, on top of the arena tree.

Every operation is synchronous and returns True/False. A False return means
the tree was left untouched. New items go to the head of their parent, so
siblings render newest first.
"""

from __future__ import annotations

from typing import Any

from engine.kernel.tree import ROOT, DeleteStrategy, Node, TraversalOrder, Tree
from engine.kernel.types import FolderItem, folder_item, runbook_item


class WorkspaceFolder:
    def __init__(self, tree: Tree | None = None) -> None:
        self.tree = tree or Tree()

    @classmethod
    def empty(cls) -> WorkspaceFolder:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> WorkspaceFolder:
        return cls(Tree.from_dict(data or {}))

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return self.tree.to_dict()

    def to_nested(self) -> list[dict[str, Any]]:
        return self.tree.to_nested()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_item(self, item_id: str) -> FolderItem | None:
        node = self.tree.get(item_id)
        return node.data if node and not node.is_root else None

    def contains(self, item_id: str) -> bool:
        return item_id in self.tree

    def get_descendants(self, item_id: str | None = ROOT) -> list[Node]:
        """Breadth-first nodes below item_id (or the whole workspace)."""
        return self.tree.descendants(item_id, TraversalOrder.BREADTH_FIRST)

    def runbook_ids(self) -> list[str]:
        return [n.id for n in self.get_descendants() if n.data and n.data.is_runbook]

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_folder(self, folder_id: str, name: str, parent_id: str | None = ROOT) -> bool:
        if not self._is_container(parent_id):
            return False
        return self.tree.insert(folder_id, folder_item(folder_id, name), parent_id, 0)

    def create_runbook(self, runbook_id: str, parent_id: str | None = ROOT) -> bool:
        if not self._is_container(parent_id):
            return False
        return self.tree.insert(runbook_id, runbook_item(runbook_id), parent_id, 0)

    def import_runbooks(self, runbook_ids: list[str], parent_id: str | None = ROOT) -> bool:
        """
        Insert runbooks at the head of parent_id, keeping their input order.

        An unknown parent falls back to the top level. Ids already in the
        tree are skipped.
        """
        if not self._is_container(parent_id):
            if parent_id in self.tree:
                return False
            parent_id = ROOT
        for runbook_id in reversed(runbook_ids):
            if runbook_id in self.tree:
                continue
            self.tree.insert(runbook_id, runbook_item(runbook_id), parent_id, 0)
        return True

    def rename_folder(self, folder_id: str, new_name: str) -> bool:
        item = self.get_item(folder_id)
        if item is None or not item.is_folder:
            return False
        item.name = new_name
        return True

    def delete_folder(self, folder_id: str) -> bool:
        item = self.get_item(folder_id)
        if item is None or not item.is_folder:
            return False
        return self.tree.remove(folder_id, DeleteStrategy.CASCADE)

    def delete_runbook(self, runbook_id: str) -> bool:
        item = self.get_item(runbook_id)
        if item is None or not item.is_runbook:
            return False
        return self.tree.remove(runbook_id, DeleteStrategy.DECLINE)

    def move_items(self, item_ids: list[str], new_parent_id: str | None, index: int = 0) -> bool:
        """
        Reparent a batch under new_parent_id starting at index.

        Fails with no mutation on an empty batch, an unknown id, a runbook
        target, or a target inside one of the moved subtrees.
        """
        if not item_ids:
            return False
        if not self._is_container(new_parent_id):
            return False
        for item_id in item_ids:
            if item_id not in self.tree:
                return False
            if new_parent_id is not ROOT and (
                new_parent_id == item_id or self.tree.is_descendant(new_parent_id, item_id)
            ):
                return False

        for item_id in reversed(_unique(item_ids)):
            self.tree.move(item_id, new_parent_id, index)
        return True

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _is_container(self, node_id: str | None) -> bool:
        node = self.tree.get(node_id)
        if node is None:
            return False
        return node.is_root or (node.data is not None and node.data.is_folder)


def _unique(ids: list[str]) -> list[str]:
    return list(dict.fromkeys(ids))
