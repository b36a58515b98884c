"""
Operation log payloads.

Every mutation that must reach the hub is recorded as an Operation whose
payload is one of the tagged models below (discriminated on "type"). Folder
payloads carry the change ref of the optimistic update they mirror.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Annotated, Any, Literal, Union, get_args

from pydantic import BaseModel, Field, TypeAdapter


class UnknownOperationError(RuntimeError):
    """An operation tag with no known payload or handler. Fatal."""

    def __init__(self, op_type: Any) -> None:
        super().__init__(f"Unknown operation type: {op_type!r}")
        self.op_type = op_type


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class _Payload(BaseModel):
    model_config = {"extra": "forbid"}


class WorkspaceCreated(_Payload):
    type: Literal["workspace_created"] = "workspace_created"
    workspace_id: str
    name: str
    org_id: str | None = None


class WorkspaceRenamed(_Payload):
    type: Literal["workspace_renamed"] = "workspace_renamed"
    workspace_id: str
    name: str


class WorkspaceDeleted(_Payload):
    type: Literal["workspace_deleted"] = "workspace_deleted"
    workspace_id: str


class RunbookDeleted(_Payload):
    type: Literal["runbook_deleted"] = "runbook_deleted"
    runbook_id: str


class WorkspaceInitialFolderLayout(_Payload):
    type: Literal["workspace_initial_folder_layout"] = "workspace_initial_folder_layout"
    workspace_id: str
    layout: dict[str, Any] = Field(default_factory=dict)
    change_ref: str


class WorkspaceFolderCreated(_Payload):
    type: Literal["workspace_folder_created"] = "workspace_folder_created"
    workspace_id: str
    parent_id: str | None = None
    folder_id: str
    name: str
    change_ref: str


class WorkspaceFolderRenamed(_Payload):
    type: Literal["workspace_folder_renamed"] = "workspace_folder_renamed"
    workspace_id: str
    folder_id: str
    name: str
    change_ref: str


class WorkspaceFolderDeleted(_Payload):
    type: Literal["workspace_folder_deleted"] = "workspace_folder_deleted"
    workspace_id: str
    folder_id: str
    change_ref: str


class WorkspaceItemsMoved(_Payload):
    type: Literal["workspace_items_moved"] = "workspace_items_moved"
    workspace_id: str
    item_ids: list[str]
    new_parent_id: str | None = None
    index: int = 0
    change_ref: str


class WorkspaceFolderMoved(_Payload):
    """Older name for an items move, still found in existing logs."""

    type: Literal["workspace_folder_moved"] = "workspace_folder_moved"
    workspace_id: str
    item_ids: list[str]
    new_parent_id: str | None = None
    index: int = 0
    change_ref: str


class WorkspaceRunbookCreated(_Payload):
    type: Literal["workspace_runbook_created"] = "workspace_runbook_created"
    workspace_id: str
    parent_id: str | None = None
    runbook_id: str
    change_ref: str


class WorkspaceRunbookDeleted(_Payload):
    type: Literal["workspace_runbook_deleted"] = "workspace_runbook_deleted"
    workspace_id: str
    runbook_id: str
    change_ref: str


class WorkspaceImportRunbooks(_Payload):
    type: Literal["workspace_import_runbooks"] = "workspace_import_runbooks"
    workspace_id: str
    runbook_ids: list[str]
    parent_id: str | None = None
    change_ref: str


OperationData = Annotated[
    Union[
        WorkspaceCreated,
        WorkspaceRenamed,
        WorkspaceDeleted,
        RunbookDeleted,
        WorkspaceInitialFolderLayout,
        WorkspaceFolderCreated,
        WorkspaceFolderRenamed,
        WorkspaceFolderDeleted,
        WorkspaceItemsMoved,
        WorkspaceFolderMoved,
        WorkspaceRunbookCreated,
        WorkspaceRunbookDeleted,
        WorkspaceImportRunbooks,
    ],
    Field(discriminator="type"),
]

OPERATION_TYPES: frozenset[str] = frozenset(
    get_args(model.model_fields["type"].annotation)[0] for model in get_args(get_args(OperationData)[0])
)

_operation_data = TypeAdapter(OperationData)


def parse_operation_data(raw: dict[str, Any]) -> OperationData:
    """Validate a stored payload. Unknown tags raise UnknownOperationError."""
    op_type = raw.get("type") if isinstance(raw, dict) else None
    if op_type not in OPERATION_TYPES:
        raise UnknownOperationError(op_type)
    return _operation_data.validate_python(raw)


# ---------------------------------------------------------------------------
# Operation record
# ---------------------------------------------------------------------------


class Operation(BaseModel):
    id: str
    operation: OperationData
    processed_at: datetime | None = None
    created: datetime
    updated: datetime

    @property
    def processed(self) -> bool:
        return self.processed_at is not None


_last_created: datetime | None = None


def next_created_at() -> datetime:
    """Creation timestamp, strictly increasing within this process."""
    global _last_created
    now = datetime.now(UTC)
    if _last_created is not None and now <= _last_created:
        now = _last_created + timedelta(microseconds=1)
    _last_created = now
    return now
