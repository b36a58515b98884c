"""
Runbook Sync Kernel — Folder Reducer

Pure function: (serialized tree, folder operation) → ReduceResult

Folder operations are the payloads delivered to the hub, keyed by "type":

    initial_layout    {layout}
    folder_created    {folder_id, name, parent_id}
    folder_renamed    {folder_id, name}
    folder_deleted    {folder_id}
    items_moved       {item_ids, new_parent_id, index}
    runbook_created   {runbook_id, parent_id}
    runbook_deleted   {runbook_id}
    import_runbooks   {runbook_ids, parent_id}

Applying the same sequence through the reducer gives the same tree as calling
the WorkspaceFolder operations directly.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from engine.kernel.workspace_folder import WorkspaceFolder

FOLDER_OPERATION_TYPES: frozenset[str] = frozenset(
    {
        "initial_layout",
        "folder_created",
        "folder_renamed",
        "folder_deleted",
        "items_moved",
        "runbook_created",
        "runbook_deleted",
        "import_runbooks",
    }
)


# ---------------------------------------------------------------------------
# ReduceResult
# ---------------------------------------------------------------------------


class ReduceResult:
    """
    Result of applying one folder operation to a serialized tree.
    Never throws — always returns one of these.
    """

    __slots__ = ("state", "accepted", "reason")

    def __init__(self, state: dict[str, Any], accepted: bool, reason: str | None = None) -> None:
        self.state = state
        self.accepted = accepted
        self.reason = reason

    def __repr__(self) -> str:  # pragma: no cover
        if self.accepted:
            return "ReduceResult(accepted=True)"
        return f"ReduceResult(accepted=False, reason={self.reason!r})"


def _reject(state: dict, reason: str) -> ReduceResult:
    return ReduceResult(state=state, accepted=False, reason=reason)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _initial_layout(folder: WorkspaceFolder, op: dict) -> bool:
    if len(folder.tree):
        return False
    layout = WorkspaceFolder.from_dict(op.get("layout") or {})
    folder.tree = layout.tree
    return True


def _folder_created(folder: WorkspaceFolder, op: dict) -> bool:
    return folder.create_folder(op["folder_id"], op.get("name", ""), op.get("parent_id"))


def _folder_renamed(folder: WorkspaceFolder, op: dict) -> bool:
    return folder.rename_folder(op["folder_id"], op["name"])


def _folder_deleted(folder: WorkspaceFolder, op: dict) -> bool:
    return folder.delete_folder(op["folder_id"])


def _items_moved(folder: WorkspaceFolder, op: dict) -> bool:
    return folder.move_items(list(op.get("item_ids") or []), op.get("new_parent_id"), op.get("index", 0))


def _runbook_created(folder: WorkspaceFolder, op: dict) -> bool:
    return folder.create_runbook(op["runbook_id"], op.get("parent_id"))


def _runbook_deleted(folder: WorkspaceFolder, op: dict) -> bool:
    return folder.delete_runbook(op["runbook_id"])


def _import_runbooks(folder: WorkspaceFolder, op: dict) -> bool:
    return folder.import_runbooks(list(op.get("runbook_ids") or []), op.get("parent_id"))


_HANDLERS: dict[str, Callable[[WorkspaceFolder, dict], bool]] = {
    "initial_layout": _initial_layout,
    "folder_created": _folder_created,
    "folder_renamed": _folder_renamed,
    "folder_deleted": _folder_deleted,
    "items_moved": _items_moved,
    "runbook_created": _runbook_created,
    "runbook_deleted": _runbook_deleted,
    "import_runbooks": _import_runbooks,
}


def check_handlers(handlers: dict[str, Any]) -> None:
    """Every folder operation type needs a handler, and every handler a type."""
    missing = FOLDER_OPERATION_TYPES - set(handlers)
    extra = set(handlers) - FOLDER_OPERATION_TYPES
    if missing or extra:
        raise RuntimeError(f"Folder handlers out of sync: missing={sorted(missing)} unknown={sorted(extra)}")


check_handlers(_HANDLERS)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def reduce_folder(state: dict[str, Any], op: dict[str, Any]) -> ReduceResult:
    """
    Apply one folder operation to a serialized tree.

    Pure function. The input state is never modified.
    """
    op_type = op.get("type")
    handler = _HANDLERS.get(op_type)
    if handler is None:
        return _reject(state, f"UNKNOWN_OPERATION: {op_type}")

    folder = WorkspaceFolder.from_dict(state)
    try:
        ok = handler(folder, op)
    except KeyError as e:
        return _reject(state, f"MISSING_FIELD: {e.args[0]}")
    if not ok:
        return _reject(state, f"REJECTED: {op_type}")
    return ReduceResult(state=folder.to_dict(), accepted=True)


def missing_targets(state: dict[str, Any], op: dict[str, Any]) -> list[str]:
    """
    Ids an operation refers to that no longer exist in state.

    A non-empty result means the operation is moot rather than invalid:
    its target was removed by some other change.
    """
    folder = WorkspaceFolder.from_dict(state)
    op_type = op.get("type")

    if op_type in ("folder_renamed", "folder_deleted"):
        wanted = [op.get("folder_id")]
    elif op_type == "runbook_deleted":
        wanted = [op.get("runbook_id")]
    elif op_type == "items_moved":
        wanted = list(op.get("item_ids") or [])
        if op.get("new_parent_id") is not None:
            wanted.append(op["new_parent_id"])
    elif op_type in ("folder_created", "runbook_created"):
        wanted = [op["parent_id"]] if op.get("parent_id") is not None else []
    else:
        wanted = []

    return [item_id for item_id in wanted if item_id is None or not folder.contains(item_id)]
