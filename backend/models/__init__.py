"""
Pydantic models for the runbook hub.

All data shapes defined here. No imports from db, repos, or routes.
"""

from backend.models.shared_state import SharedStateChange, SharedStateDocument
from backend.models.workspace import (
    CreateWorkspaceRequest,
    FolderOperation,
    FolderResponse,
    FolderUpdateRequest,
    FolderUpdateResponse,
    FolderUpdateStatus,
    UpdateWorkspaceRequest,
    Workspace,
    WorkspaceResponse,
)

__all__ = [
    # Workspace models
    "Workspace",
    "CreateWorkspaceRequest",
    "UpdateWorkspaceRequest",
    "WorkspaceResponse",
    # Folder document models
    "FolderOperation",
    "FolderUpdateRequest",
    "FolderUpdateStatus",
    "FolderUpdateResponse",
    "FolderResponse",
    # Shared-state models
    "SharedStateDocument",
    "SharedStateChange",
]
