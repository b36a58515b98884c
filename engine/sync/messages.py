"""
Wire models shared by the sync engine and the hub.

Shared-state channel frames (JSON text frames):

    server → client  {"type": "joined", "state_id": ..., "version": n}
    server → client  {"type": "update", "payload": ServerUpdate}
    client → server  {"type": "resync", "ref": ..., "last_known_version": n}
    server → client  {"type": "reply", "ref": ..., "status": "ok" | "error",
                      "payload": ResyncPayload | None, "error": str | None}
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class ServerUpdate(BaseModel):
    """A versioned change pushed by the hub. change_ref is None for hub-originated changes."""

    version: int
    delta: dict[str, Any] = Field(default_factory=dict)
    change_ref: str | None = None


class ResyncPayload(BaseModel):
    """
    Authoritative document state.

    change_refs lists the client change refs the hub applied after the
    requested version; their effects are already part of data.
    """

    version: int
    data: dict[str, Any] = Field(default_factory=dict)
    change_refs: list[str] = Field(default_factory=list)


class ResyncRequest(BaseModel):
    model_config = {"extra": "forbid"}

    type: Literal["resync"] = "resync"
    ref: str
    last_known_version: int = Field(ge=-1)


class ReplyFrame(BaseModel):
    type: Literal["reply"] = "reply"
    ref: str
    status: Literal["ok", "error"]
    payload: dict[str, Any] | None = None
    error: str | None = None


def workspace_state_id(workspace_id: str) -> str:
    """Shared-state id of a workspace's folder document."""
    return f"workspace-folder:{workspace_id}"


def workspace_id_from_state_id(state_id: str) -> str | None:
    prefix, _, workspace_id = state_id.partition(":")
    if prefix != "workspace-folder" or not workspace_id:
        return None
    return workspace_id
