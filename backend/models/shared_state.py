"""Shared-state document models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class SharedStateDocument(BaseModel):
    """Authoritative document. Maps 1:1 to the shared_state_documents table."""

    state_id: str
    value: dict[str, Any] = Field(default_factory=dict)
    version: int = 0


class SharedStateChange(BaseModel):
    """
    One recorded version of a document.

    change_ref is the client's optimistic change this version answers, or
    None for changes the hub made on its own.
    """

    state_id: str
    version: int
    change_ref: str | None = None
    delta: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
