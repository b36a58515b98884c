"""
Runbook Sync Kernel — the pure engine.

Components:
  tree              — ordered arena tree (flat id map, ordered child ids)
  workspace_folder  — folder/runbook operations on top of the tree
  delta             — diff/patch for JSON-like documents
  folder_reducer    — (serialized tree, folder operation) → tree  (pure)
"""

from engine.kernel.delta import diff, patch, patched, replay
from engine.kernel.folder_reducer import ReduceResult, missing_targets, reduce_folder
from engine.kernel.tree import ROOT, DeleteStrategy, TraversalOrder, Tree
from engine.kernel.types import CANCELLED, Applied, Cancelled, FolderItem
from engine.kernel.workspace_folder import WorkspaceFolder

__all__ = [
    "ROOT",
    "Tree",
    "TraversalOrder",
    "DeleteStrategy",
    "FolderItem",
    "WorkspaceFolder",
    "Applied",
    "Cancelled",
    "CANCELLED",
    "diff",
    "patch",
    "patched",
    "replay",
    "reduce_folder",
    "missing_targets",
    "ReduceResult",
]
