"""
Runbook Sync Kernel — Shared Types

Data classes used across the tree, the folder reducer and the sync engine.
These are the contracts that bind the kernel together.

- FolderItem: payload carried by every non-root tree node
- Applied / Cancelled: outcome of a mutator handed to a state manager
- ChangeRef / Version: identifiers for optimistic changes and document versions
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

# ---------------------------------------------------------------------------
# Aliases
# ---------------------------------------------------------------------------

ChangeRef = str
Version = int

FOLDER = "folder"
RUNBOOK = "runbook"

ItemType = Literal["folder", "runbook"]


def new_id() -> str:
    """Fresh identifier for folders, runbooks and change refs."""
    return str(uuid.uuid4())


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


# ---------------------------------------------------------------------------
# Folder items
# ---------------------------------------------------------------------------


@dataclass
class FolderItem:
    """
    Payload of a tree node.

    {"type": "folder", "id": ..., "name": ...} or {"type": "runbook", "id": ...}
    """

    type: ItemType
    id: str
    name: str | None = None

    @property
    def is_folder(self) -> bool:
        return self.type == FOLDER

    @property
    def is_runbook(self) -> bool:
        return self.type == RUNBOOK

    def to_dict(self) -> dict[str, Any]:
        if self.is_folder:
            return {"type": FOLDER, "id": self.id, "name": self.name or ""}
        return {"type": RUNBOOK, "id": self.id}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> FolderItem:
        item_type = d.get("type")
        if item_type not in (FOLDER, RUNBOOK):
            raise ValueError(f"unknown folder item type: {item_type!r}")
        if item_type == FOLDER:
            return cls(type=FOLDER, id=d["id"], name=d.get("name", ""))
        return cls(type=RUNBOOK, id=d["id"])


def folder_item(item_id: str, name: str) -> FolderItem:
    return FolderItem(type=FOLDER, id=item_id, name=name)


def runbook_item(item_id: str) -> FolderItem:
    return FolderItem(type=RUNBOOK, id=item_id)


# ---------------------------------------------------------------------------
# Mutator outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Applied:
    """The mutator produced a new document value."""

    state: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Cancelled:
    """The mutator declined; nothing is applied."""


CANCELLED = Cancelled()

MutationResult = Applied | Cancelled
