"""Workspace models and folder operation payloads."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, RootModel

# ---------------------------------------------------------------------------
# Workspaces
# ---------------------------------------------------------------------------


class Workspace(BaseModel):
    """Core workspace model. Maps 1:1 to the workspaces table."""

    id: str
    name: str
    owner_id: str
    org_id: str | None = None
    created_at: datetime
    updated_at: datetime


class CreateWorkspaceRequest(BaseModel):
    """What the client sends to POST /api/workspaces."""

    model_config = {"extra": "forbid"}

    id: str = Field(min_length=1, max_length=200)
    name: str = Field(min_length=1, max_length=500)
    org_id: str | None = None


class UpdateWorkspaceRequest(BaseModel):
    """What the client sends to PUT /api/workspaces/{id}."""

    model_config = {"extra": "forbid"}

    name: str = Field(min_length=1, max_length=500)


class WorkspaceResponse(BaseModel):
    """What workspace endpoints return."""

    id: str
    name: str
    org_id: str | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, ws: Workspace) -> WorkspaceResponse:
        return cls(id=ws.id, name=ws.name, org_id=ws.org_id, created_at=ws.created_at, updated_at=ws.updated_at)


# ---------------------------------------------------------------------------
# Folder operations (PUT /api/workspaces/{id}/folder)
# ---------------------------------------------------------------------------


class _FolderOp(BaseModel):
    model_config = {"extra": "forbid"}

    change_ref: str = Field(min_length=1)


class InitialLayout(_FolderOp):
    type: Literal["initial_layout"]
    layout: dict[str, Any] = Field(default_factory=dict)


class FolderCreated(_FolderOp):
    type: Literal["folder_created"]
    folder_id: str
    name: str
    parent_id: str | None = None


class FolderRenamed(_FolderOp):
    type: Literal["folder_renamed"]
    folder_id: str
    name: str


class FolderDeleted(_FolderOp):
    type: Literal["folder_deleted"]
    folder_id: str


class ItemsMoved(_FolderOp):
    type: Literal["items_moved"]
    item_ids: list[str]
    new_parent_id: str | None = None
    index: int = 0


class RunbookCreated(_FolderOp):
    type: Literal["runbook_created"]
    runbook_id: str
    parent_id: str | None = None


class RunbookDeleted(_FolderOp):
    type: Literal["runbook_deleted"]
    runbook_id: str


class ImportRunbooks(_FolderOp):
    type: Literal["import_runbooks"]
    runbook_ids: list[str]
    parent_id: str | None = None


FolderOperation = Annotated[
    Union[
        InitialLayout,
        FolderCreated,
        FolderRenamed,
        FolderDeleted,
        ItemsMoved,
        RunbookCreated,
        RunbookDeleted,
        ImportRunbooks,
    ],
    Field(discriminator="type"),
]


class FolderUpdateRequest(RootModel[FolderOperation]):
    """What the client sends to PUT /api/workspaces/{id}/folder: one folder operation."""

    pass


class FolderUpdateStatus(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"
    TARGET_MISSING = "target_missing"


class FolderUpdateResponse(BaseModel):
    """What PUT /api/workspaces/{id}/folder returns."""

    version: int
    status: FolderUpdateStatus
    reason: str | None = None


class FolderResponse(BaseModel):
    """What GET /api/workspaces/{id}/folder returns."""

    version: int
    data: dict[str, Any]
    tree: list[dict[str, Any]]
