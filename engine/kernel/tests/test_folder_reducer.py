"""
Folder reducer tests.

The reducer must agree with calling WorkspaceFolder directly, reject invalid
operations without touching the input, and report moot targets.
"""

import copy

import pytest

from engine.kernel.folder_reducer import FOLDER_OPERATION_TYPES, check_handlers, missing_targets, reduce_folder
from engine.kernel.workspace_folder import WorkspaceFolder

OPS = [
    {"type": "folder_created", "folder_id": "f1", "name": "One", "parent_id": None},
    {"type": "folder_created", "folder_id": "f2", "name": "Two", "parent_id": None},
    {"type": "runbook_created", "runbook_id": "i1", "parent_id": "f1"},
    {"type": "import_runbooks", "runbook_ids": ["i2", "i4"], "parent_id": "f2"},
    {"type": "folder_created", "folder_id": "f3", "name": "Three", "parent_id": "f1"},
    {"type": "items_moved", "item_ids": ["i4"], "new_parent_id": "f3", "index": 0},
    {"type": "folder_renamed", "folder_id": "f2", "name": "Second"},
    {"type": "runbook_deleted", "runbook_id": "i2"},
]


def reduce_all(state, ops):
    for op in ops:
        result = reduce_folder(state, op)
        if result.accepted:
            state = result.state
    return state


class TestReduceFolder:
    def test_matches_direct_calls(self):
        direct = WorkspaceFolder.empty()
        direct.create_folder("f1", "One", None)
        direct.create_folder("f2", "Two", None)
        direct.create_runbook("i1", "f1")
        direct.import_runbooks(["i2", "i4"], "f2")
        direct.create_folder("f3", "Three", "f1")
        direct.move_items(["i4"], "f3", 0)
        direct.rename_folder("f2", "Second")
        direct.delete_runbook("i2")

        reduced = WorkspaceFolder.from_dict(reduce_all({}, OPS))
        assert reduced.to_nested() == direct.to_nested()

    def test_input_state_not_modified(self):
        state = reduce_all({}, OPS[:3])
        snapshot = copy.deepcopy(state)
        reduce_folder(state, {"type": "folder_deleted", "folder_id": "f1"})
        assert state == snapshot

    def test_rejection_keeps_state(self):
        state = reduce_all({}, OPS[:3])
        result = reduce_folder(state, {"type": "folder_deleted", "folder_id": "i1"})
        assert not result.accepted
        assert result.state is state
        assert result.reason == "REJECTED: folder_deleted"

    def test_runbook_deleted_rejects_empty_folder(self):
        state = reduce_all({}, OPS[:1])
        result = reduce_folder(state, {"type": "runbook_deleted", "runbook_id": "f1"})
        assert not result.accepted
        assert result.state is state

    def test_unknown_type(self):
        result = reduce_folder({}, {"type": "folder_exploded"})
        assert not result.accepted
        assert result.reason.startswith("UNKNOWN_OPERATION")

    def test_missing_field(self):
        result = reduce_folder({}, {"type": "folder_renamed", "name": "x"})
        assert not result.accepted
        assert result.reason.startswith("MISSING_FIELD")

    def test_initial_layout_only_on_empty(self):
        layout = reduce_all({}, OPS[:2])
        assert reduce_folder({}, {"type": "initial_layout", "layout": layout}).accepted
        assert not reduce_folder(layout, {"type": "initial_layout", "layout": {}}).accepted

    def test_every_type_has_a_handler(self):
        for op_type in FOLDER_OPERATION_TYPES:
            result = reduce_folder({}, {"type": op_type})
            assert not (result.reason or "").startswith("UNKNOWN_OPERATION")

    def test_handler_table_mismatch_raises(self):
        handlers = dict.fromkeys(FOLDER_OPERATION_TYPES - {"items_moved"})
        with pytest.raises(RuntimeError, match="items_moved"):
            check_handlers(handlers)
        with pytest.raises(RuntimeError, match="folder_moved"):
            check_handlers({**dict.fromkeys(FOLDER_OPERATION_TYPES), "folder_moved": None})


class TestMissingTargets:
    def test_rename_of_deleted_folder(self):
        state = reduce_all({}, OPS[:1])
        assert missing_targets(state, {"type": "folder_renamed", "folder_id": "gone", "name": "x"}) == ["gone"]

    def test_create_under_deleted_parent(self):
        assert missing_targets({}, {"type": "runbook_created", "runbook_id": "r", "parent_id": "gone"}) == ["gone"]

    def test_create_at_root_has_no_targets(self):
        assert missing_targets({}, {"type": "folder_created", "folder_id": "f", "parent_id": None}) == []

    def test_move_reports_every_missing_id(self):
        state = reduce_all({}, OPS[:3])
        op = {"type": "items_moved", "item_ids": ["i1", "x"], "new_parent_id": "y", "index": 0}
        assert missing_targets(state, op) == ["x", "y"]

    def test_import_never_misses(self):
        assert missing_targets({}, {"type": "import_runbooks", "runbook_ids": ["a"], "parent_id": "gone"}) == []
