"""Workspace routes — create, get, rename, delete, and the folder document."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import JSONResponse

from backend.auth import get_current_user_id
from backend.models.workspace import (
    CreateWorkspaceRequest,
    FolderResponse,
    FolderUpdateRequest,
    FolderUpdateResponse,
    FolderUpdateStatus,
    UpdateWorkspaceRequest,
    WorkspaceResponse,
)
from backend.services.shared_state_hub import SharedStateHub, WorkspaceConflict, WorkspaceNotFound, get_hub
from engine.kernel.workspace_folder import WorkspaceFolder

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/workspaces", tags=["workspaces"])


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found.")


@router.post("", status_code=201)
async def create_workspace(
    req: CreateWorkspaceRequest,
    user_id: str = Depends(get_current_user_id),
    hub: SharedStateHub = Depends(get_hub),
) -> WorkspaceResponse:
    """Create a workspace. Repeating the request for a workspace you own is a no-op."""
    try:
        workspace = await hub.create_workspace(user_id, req.id, req.name, req.org_id)
    except WorkspaceConflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Workspace already exists.") from e
    return WorkspaceResponse.from_model(workspace)


@router.get("/{workspace_id}", status_code=200)
async def get_workspace(
    workspace_id: str,
    user_id: str = Depends(get_current_user_id),
    hub: SharedStateHub = Depends(get_hub),
) -> WorkspaceResponse:
    try:
        workspace = await hub.get_workspace(user_id, workspace_id)
    except WorkspaceNotFound as e:
        raise _not_found() from e
    return WorkspaceResponse.from_model(workspace)


@router.put("/{workspace_id}", status_code=200)
async def rename_workspace(
    workspace_id: str,
    req: UpdateWorkspaceRequest,
    user_id: str = Depends(get_current_user_id),
    hub: SharedStateHub = Depends(get_hub),
) -> WorkspaceResponse:
    try:
        workspace = await hub.rename_workspace(user_id, workspace_id, req.name)
    except WorkspaceNotFound as e:
        raise _not_found() from e
    return WorkspaceResponse.from_model(workspace)


@router.delete("/{workspace_id}", status_code=204)
async def delete_workspace(
    workspace_id: str,
    user_id: str = Depends(get_current_user_id),
    hub: SharedStateHub = Depends(get_hub),
) -> Response:
    try:
        await hub.delete_workspace(user_id, workspace_id)
    except WorkspaceNotFound as e:
        raise _not_found() from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{workspace_id}/folder", status_code=200)
async def get_folder(
    workspace_id: str,
    user_id: str = Depends(get_current_user_id),
    hub: SharedStateHub = Depends(get_hub),
) -> FolderResponse:
    """Current folder document with its version and the nested tree view."""
    try:
        doc = await hub.get_document(user_id, workspace_id)
    except WorkspaceNotFound as e:
        raise _not_found() from e
    return FolderResponse(
        version=doc.version,
        data=doc.value,
        tree=WorkspaceFolder.from_dict(doc.value).to_nested(),
    )


@router.put("/{workspace_id}/folder", status_code=200, response_model=FolderUpdateResponse)
async def update_folder(
    workspace_id: str,
    req: FolderUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    hub: SharedStateHub = Depends(get_hub),
):
    """
    Apply one folder operation.

    Returns 404 when the workspace or the operation's target is gone. The
    change_ref is acknowledged either way.
    """
    try:
        result = await hub.apply_folder_operation(user_id, workspace_id, req.root.model_dump())
    except WorkspaceNotFound as e:
        raise _not_found() from e

    if result.status == FolderUpdateStatus.TARGET_MISSING:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": result.reason, **result.model_dump(mode="json")},
        )
    return result
