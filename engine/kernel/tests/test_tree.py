"""
Arena tree tests.

Covers insertion order, traversal orders, move guards, the three delete
strategies, and the flat serialized form (including orphan handling).
"""

import pytest

from engine.kernel.tree import ROOT, DeleteStrategy, TraversalOrder, Tree
from engine.kernel.types import folder_item, runbook_item

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def tree():
    """
    a
    ├── b
    │   └── d
    └── c
    e
    """
    t = Tree()
    t.insert("a", folder_item("a", "A"), ROOT, 0)
    t.insert("e", folder_item("e", "E"), ROOT, 1)
    t.insert("b", folder_item("b", "B"), "a", 0)
    t.insert("c", runbook_item("c"), "a", 1)
    t.insert("d", runbook_item("d"), "b", 0)
    return t


def ids(nodes):
    return [n.id for n in nodes]


# ============================================================================
# Insert
# ============================================================================


class TestInsert:
    def test_insert_at_head(self):
        t = Tree()
        t.insert("x", runbook_item("x"))
        t.insert("y", runbook_item("y"))
        assert t.children() == ["y", "x"]

    def test_index_past_end_appends(self, tree):
        assert tree.insert("z", runbook_item("z"), "a", 99)
        assert tree.children("a") == ["b", "c", "z"]

    def test_duplicate_id_rejected(self, tree):
        assert not tree.insert("b", runbook_item("b"), ROOT, 0)
        assert tree.parent("b") == "a"

    def test_unknown_parent_rejected(self, tree):
        assert not tree.insert("z", runbook_item("z"), "nope", 0)
        assert "z" not in tree

    def test_parent_and_ancestors(self, tree):
        assert tree.parent("d") == "b"
        assert tree.parent("a") is ROOT
        assert tree.ancestors("d") == ["b", "a"]
        assert tree.is_descendant("d", "a")
        assert not tree.is_descendant("a", "d")


# ============================================================================
# Traversal
# ============================================================================


class TestTraversal:
    def test_breadth_first(self, tree):
        assert ids(tree.descendants()) == ["a", "e", "b", "c", "d"]

    def test_depth_first(self, tree):
        assert ids(tree.descendants(order=TraversalOrder.DEPTH_FIRST)) == ["a", "b", "d", "c", "e"]

    def test_traverse_includes_start(self, tree):
        assert ids(tree.traverse("b")) == ["b", "d"]

    def test_descendants_of_unknown_node_is_empty(self, tree):
        assert tree.descendants("nope") == []


# ============================================================================
# Move
# ============================================================================


class TestMove:
    def test_move_to_other_parent(self, tree):
        assert tree.move("d", "e", 0)
        assert tree.children("b") == []
        assert tree.children("e") == ["d"]
        assert tree.parent("d") == "e"

    def test_move_into_own_subtree_rejected(self, tree):
        assert not tree.move("a", "d", 0)
        assert tree.parent("a") is ROOT

    def test_move_onto_itself_rejected(self, tree):
        assert not tree.move("a", "a", 0)

    def test_move_to_root(self, tree):
        assert tree.move("d", ROOT, 1)
        assert tree.children() == ["a", "d", "e"]


# ============================================================================
# Remove
# ============================================================================


class TestRemove:
    def test_cascade_removes_subtree(self, tree):
        assert tree.remove("a", DeleteStrategy.CASCADE)
        assert tree.children() == ["e"]
        for node_id in ("a", "b", "c", "d"):
            assert node_id not in tree

    def test_decline_with_children_fails(self, tree):
        assert not tree.remove("b", DeleteStrategy.DECLINE)
        assert "b" in tree
        assert tree.children("b") == ["d"]

    def test_decline_on_leaf_succeeds(self, tree):
        assert tree.remove("d", DeleteStrategy.DECLINE)
        assert "d" not in tree

    def test_reattach_moves_children_up(self, tree):
        assert tree.remove("b", DeleteStrategy.REATTACH)
        assert tree.children("a") == ["d", "c"]
        assert tree.parent("d") == "a"

    def test_remove_unknown(self, tree):
        assert not tree.remove("nope")


# ============================================================================
# Serialization
# ============================================================================


class TestSerialization:
    def test_to_dict_shape(self, tree):
        data = tree.to_dict()
        assert data["d"] == {"id": "d", "data": {"type": "runbook", "id": "d"}, "parent": "b", "index": 0}
        assert data["e"]["index"] == 1
        assert data["a"]["data"] == {"type": "folder", "id": "a", "name": "A"}

    def test_round_trip_preserves_order(self, tree):
        rebuilt = Tree.from_dict(tree.to_dict())
        assert rebuilt.to_nested() == tree.to_nested()

    def test_orphans_are_dropped(self):
        data = {
            "x": {"id": "x", "data": {"type": "runbook", "id": "x"}, "parent": "gone", "index": 0},
            "y": {"id": "y", "data": {"type": "runbook", "id": "y"}, "parent": None, "index": 0},
        }
        t = Tree.from_dict(data)
        assert t.children() == ["y"]
        assert "x" not in t

    def test_cycles_are_dropped(self):
        data = {
            "p": {"id": "p", "data": {"type": "folder", "id": "p", "name": "P"}, "parent": "q", "index": 0},
            "q": {"id": "q", "data": {"type": "folder", "id": "q", "name": "Q"}, "parent": "p", "index": 0},
        }
        assert len(Tree.from_dict(data)) == 0

    def test_index_ties_break_by_id(self):
        data = {
            "b": {"id": "b", "data": {"type": "runbook", "id": "b"}, "parent": None, "index": 0},
            "a": {"id": "a", "data": {"type": "runbook", "id": "a"}, "parent": None, "index": 0},
        }
        assert Tree.from_dict(data).children() == ["a", "b"]

    def test_to_nested(self, tree):
        assert tree.to_nested() == [
            {
                "type": "folder",
                "id": "a",
                "name": "A",
                "children": [
                    {"type": "folder", "id": "b", "name": "B", "children": [{"type": "runbook", "id": "d"}]},
                    {"type": "runbook", "id": "c"},
                ],
            },
            {"type": "folder", "id": "e", "name": "E", "children": []},
        ]
