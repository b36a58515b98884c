"""
Runbook Sync Kernel — Arena Tree

Ordered, id-addressed tree. Nodes live in a flat id → Node map; each node
keeps an ordered list of child ids and its parent id. The root is implicit:
it has id None and carries no payload.

Serialized form (the shared-state document value):

    {id: {"id": id, "data": {...}, "parent": parent_id | None, "index": int}}

Pure: no IO. Mutating methods report failure with False instead of raising.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from engine.kernel.types import FolderItem

ROOT = None


class TraversalOrder(str, Enum):
    BREADTH_FIRST = "bfs"
    DEPTH_FIRST = "dfs"


class DeleteStrategy(str, Enum):
    CASCADE = "cascade"  # remove the node and everything below it
    DECLINE = "decline"  # refuse if the node has children
    REATTACH = "reattach"  # children take the node's place in its parent


@dataclass
class Node:
    id: str | None
    parent: str | None = None
    children: list[str] = field(default_factory=list)
    data: FolderItem | None = None

    @property
    def is_root(self) -> bool:
        return self.id is None


class Tree:
    def __init__(self) -> None:
        self._root = Node(id=ROOT)
        self._nodes: dict[str, Node] = {}

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def root(self) -> Node:
        return self._root

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def get(self, node_id: str | None) -> Node | None:
        if node_id is ROOT:
            return self._root
        return self._nodes.get(node_id)

    def children(self, node_id: str | None = ROOT) -> list[str]:
        node = self.get(node_id)
        return list(node.children) if node else []

    def parent(self, node_id: str) -> str | None:
        node = self._nodes.get(node_id)
        return node.parent if node else None

    def index_of(self, node_id: str) -> int:
        node = self._nodes[node_id]
        return self._siblings(node).index(node_id)

    def ancestors(self, node_id: str) -> list[str]:
        """Ids from the node's parent up to the top level. Root excluded."""
        result: list[str] = []
        node = self._nodes.get(node_id)
        while node is not None and node.parent is not ROOT:
            result.append(node.parent)
            node = self._nodes.get(node.parent)
        return result

    def is_descendant(self, node_id: str, ancestor_id: str) -> bool:
        return ancestor_id in self.ancestors(node_id)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def insert(self, node_id: str, data: FolderItem, parent_id: str | None = ROOT, index: int = 0) -> bool:
        """Insert a new node under parent_id at index (clamped to append)."""
        if node_id in self._nodes:
            return False
        parent = self.get(parent_id)
        if parent is None:
            return False
        self._nodes[node_id] = Node(id=node_id, parent=parent_id, data=data)
        _insert_at(parent.children, index, node_id)
        return True

    def move(self, node_id: str, parent_id: str | None = ROOT, index: int = 0) -> bool:
        """Detach a node (with its subtree) and reattach it under parent_id."""
        node = self._nodes.get(node_id)
        parent = self.get(parent_id)
        if node is None or parent is None:
            return False
        if parent_id == node_id or (parent_id is not ROOT and self.is_descendant(parent_id, node_id)):
            return False
        self._siblings(node).remove(node_id)
        node.parent = parent_id
        _insert_at(parent.children, index, node_id)
        return True

    def remove(self, node_id: str, strategy: DeleteStrategy = DeleteStrategy.CASCADE) -> bool:
        node = self._nodes.get(node_id)
        if node is None:
            return False

        if strategy == DeleteStrategy.DECLINE and node.children:
            return False

        siblings = self._siblings(node)
        position = siblings.index(node_id)
        siblings.pop(position)

        if strategy == DeleteStrategy.REATTACH:
            for offset, child_id in enumerate(node.children):
                self._nodes[child_id].parent = node.parent
                siblings.insert(position + offset, child_id)
        else:
            for descendant in self.descendants(node_id):
                del self._nodes[descendant.id]

        del self._nodes[node_id]
        return True

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def traverse(
        self, start: str | None = ROOT, order: TraversalOrder = TraversalOrder.BREADTH_FIRST
    ) -> Iterator[Node]:
        """Yield start and every node below it."""
        first = self.get(start)
        if first is None:
            return
        if order == TraversalOrder.BREADTH_FIRST:
            queue: deque[Node] = deque([first])
            while queue:
                node = queue.popleft()
                yield node
                queue.extend(self._nodes[c] for c in node.children)
        else:
            stack: list[Node] = [first]
            while stack:
                node = stack.pop()
                yield node
                stack.extend(self._nodes[c] for c in reversed(node.children))

    def descendants(
        self, start: str | None = ROOT, order: TraversalOrder = TraversalOrder.BREADTH_FIRST
    ) -> list[Node]:
        nodes = list(self.traverse(start, order))
        return nodes[1:]

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, dict[str, Any]]:
        result: dict[str, dict[str, Any]] = {}
        for node in self.descendants():
            result[node.id] = {
                "id": node.id,
                "data": node.data.to_dict() if node.data else None,
                "parent": node.parent,
                "index": self._siblings(node).index(node.id),
            }
        return result

    @classmethod
    def from_dict(cls, data: dict[str, dict[str, Any]]) -> Tree:
        """
        Rebuild a tree from its flat serialized form.

        Siblings are ordered by (index, id). Entries whose parent chain never
        reaches the root (missing parents, cycles) are dropped.
        """
        tree = cls()
        by_parent: dict[str | None, list[tuple[int, str]]] = {}
        for node_id, entry in data.items():
            if not isinstance(entry, dict) or not entry.get("data"):
                continue
            index = entry.get("index", 0)
            by_parent.setdefault(entry.get("parent"), []).append(
                (index if isinstance(index, int) else 0, node_id)
            )

        queue: deque[str | None] = deque([ROOT])
        while queue:
            parent_id = queue.popleft()
            for _, node_id in sorted(by_parent.get(parent_id, [])):
                if node_id in tree._nodes:
                    continue
                try:
                    item = FolderItem.from_dict(data[node_id]["data"])
                except (KeyError, ValueError):
                    continue
                tree.insert(node_id, item, parent_id, len(tree.children(parent_id)))
                queue.append(node_id)
        return tree

    def to_nested(self, start: str | None = ROOT) -> list[dict[str, Any]]:
        """JSON tree of the nodes below start, in sibling order."""
        nested = []
        for child_id in self.children(start):
            node = self._nodes[child_id]
            entry = node.data.to_dict() if node.data else {"id": child_id}
            if node.data and node.data.is_folder:
                entry["children"] = self.to_nested(child_id)
            nested.append(entry)
        return nested

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _siblings(self, node: Node) -> list[str]:
        return self.get(node.parent).children


def _insert_at(children: list[str], index: int, node_id: str) -> None:
    if index < 0 or index > len(children):
        index = len(children)
    children.insert(index, node_id)
