"""Runbook routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from backend.auth import get_current_user_id
from backend.services.shared_state_hub import SharedStateHub, WorkspaceNotFound, get_hub

router = APIRouter(prefix="/api/runbooks", tags=["runbooks"])


@router.delete("/{runbook_id}", status_code=204)
async def delete_runbook(
    runbook_id: str,
    user_id: str = Depends(get_current_user_id),
    hub: SharedStateHub = Depends(get_hub),
) -> Response:
    """Delete a runbook and drop it from its workspace's folder tree."""
    try:
        await hub.delete_runbook(user_id, runbook_id)
    except WorkspaceNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Runbook not found.") from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)
