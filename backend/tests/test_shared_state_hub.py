"""
Tests for the shared-state hub service: change refs, versions, broadcasts.
"""

from __future__ import annotations

import pytest

from backend.models.workspace import FolderUpdateStatus
from backend.services.shared_state_hub import WorkspaceConflict, WorkspaceNotFound
from engine.kernel.workspace_folder import WorkspaceFolder
from engine.sync.messages import workspace_state_id

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
STATE_ID = workspace_state_id("ws1")


def folder_created(folder_id, ref, parent_id=None, name="Folder"):
    return {"type": "folder_created", "folder_id": folder_id, "name": name, "parent_id": parent_id, "change_ref": ref}


@pytest.fixture
async def workspace(hub):
    return await hub.create_workspace(USER_ID, "ws1", "Ops")


@pytest.fixture
def received(hub):
    updates = []
    hub.subscribe(STATE_ID, updates.append)
    return updates


class TestWorkspaces:
    async def test_create_starts_empty_document(self, hub, workspace):
        doc = await hub.get_document(USER_ID, "ws1")
        assert doc.version == 0
        assert doc.value == {}
        assert workspace.owner_id == USER_ID

    async def test_create_is_idempotent_for_owner(self, hub, workspace):
        again = await hub.create_workspace(USER_ID, "ws1", "Renamed")
        assert again.name == "Ops"

    async def test_create_conflicts_for_other_owner(self, hub, workspace):
        with pytest.raises(WorkspaceConflict):
            await hub.create_workspace(OTHER_USER_ID, "ws1", "Mine")

    async def test_other_user_cannot_see_workspace(self, hub, workspace):
        with pytest.raises(WorkspaceNotFound):
            await hub.get_workspace(OTHER_USER_ID, "ws1")

    async def test_rename(self, hub, workspace):
        renamed = await hub.rename_workspace(USER_ID, "ws1", "Platform")
        assert renamed.name == "Platform"
        assert (await hub.get_workspace(USER_ID, "ws1")).name == "Platform"

    async def test_delete_removes_document(self, hub, hub_store, workspace):
        await hub.delete_workspace(USER_ID, "ws1")
        assert await hub_store.get_document(STATE_ID) is None
        with pytest.raises(WorkspaceNotFound):
            await hub.get_document(USER_ID, "ws1")


class TestApplyFolderOperation:
    async def test_applied_bumps_version_and_broadcasts(self, hub, workspace, received):
        result = await hub.apply_folder_operation(USER_ID, "ws1", folder_created("f1", "r1"))

        assert result.status == FolderUpdateStatus.APPLIED
        assert result.version == 1
        assert len(received) == 1
        assert received[0].version == 1
        assert received[0].change_ref == "r1"
        assert received[0].delta == {
            "f1": [
                {
                    "id": "f1",
                    "data": {"type": "folder", "id": "f1", "name": "Folder"},
                    "parent": None,
                    "index": 0,
                }
            ]
        }

    async def test_duplicate_change_ref_is_a_no_op(self, hub, workspace, received):
        await hub.apply_folder_operation(USER_ID, "ws1", folder_created("f1", "r1"))
        result = await hub.apply_folder_operation(USER_ID, "ws1", folder_created("f1", "r1"))

        assert result.status == FolderUpdateStatus.DUPLICATE
        assert result.version == 1
        assert len(received) == 1
        assert (await hub.get_document(USER_ID, "ws1")).version == 1

    async def test_rejected_still_acknowledges_ref(self, hub, workspace, received):
        await hub.apply_folder_operation(USER_ID, "ws1", folder_created("f1", "r1"))
        result = await hub.apply_folder_operation(USER_ID, "ws1", folder_created("f1", "r2"))

        assert result.status == FolderUpdateStatus.REJECTED
        assert result.version == 2
        assert received[-1].change_ref == "r2"
        assert received[-1].delta == {}

    async def test_missing_target_acknowledges_ref(self, hub, workspace, received):
        result = await hub.apply_folder_operation(
            USER_ID, "ws1", {"type": "folder_renamed", "folder_id": "gone", "name": "X", "change_ref": "r1"}
        )

        assert result.status == FolderUpdateStatus.TARGET_MISSING
        assert "gone" in result.reason
        assert received[-1].change_ref == "r1"
        assert received[-1].delta == {}

    async def test_unknown_workspace(self, hub):
        with pytest.raises(WorkspaceNotFound):
            await hub.apply_folder_operation(USER_ID, "nope", folder_created("f1", "r1"))

    async def test_resync_lists_refs_after_version(self, hub, workspace):
        await hub.apply_folder_operation(USER_ID, "ws1", folder_created("f1", "r1"))
        await hub.apply_folder_operation(USER_ID, "ws1", folder_created("f2", "r2"))
        await hub.apply_folder_operation(USER_ID, "ws1", folder_created("f3", "r3"))

        payload = await hub.resync(USER_ID, STATE_ID, 1)

        assert payload.version == 3
        assert payload.change_refs == ["r2", "r3"]
        assert set(payload.data) == {"f1", "f2", "f3"}

    async def test_resync_other_user_not_found(self, hub, workspace):
        with pytest.raises(WorkspaceNotFound):
            await hub.resync(OTHER_USER_ID, STATE_ID, 0)


class TestRunbooks:
    async def test_runbooks_are_indexed_to_their_workspace(self, hub, hub_store, workspace):
        await hub.apply_folder_operation(
            USER_ID, "ws1", {"type": "import_runbooks", "runbook_ids": ["a", "b"], "parent_id": None, "change_ref": "r1"}
        )
        assert await hub_store.get_runbook_workspace("a") == "ws1"
        assert await hub_store.get_runbook_workspace("b") == "ws1"

    async def test_delete_runbook_is_hub_originated_change(self, hub, hub_store, workspace, received):
        await hub.apply_folder_operation(
            USER_ID, "ws1", {"type": "runbook_created", "runbook_id": "a", "parent_id": None, "change_ref": "r1"}
        )
        await hub.delete_runbook(USER_ID, "a")

        assert received[-1].change_ref is None
        assert received[-1].version == 2
        doc = await hub.get_document(USER_ID, "ws1")
        assert not WorkspaceFolder.from_dict(doc.value).contains("a")
        assert await hub_store.get_runbook_workspace("a") is None

    async def test_delete_unknown_runbook(self, hub, workspace):
        with pytest.raises(WorkspaceNotFound):
            await hub.delete_runbook(USER_ID, "nope")


class TestSubscribers:
    async def test_unsubscribe(self, hub, workspace):
        updates = []
        unsubscribe = hub.subscribe(STATE_ID, updates.append)
        unsubscribe()
        await hub.apply_folder_operation(USER_ID, "ws1", folder_created("f1", "r1"))
        assert updates == []
        assert hub.subscriber_count(STATE_ID) == 0

    async def test_failing_subscriber_does_not_block_others(self, hub, workspace):
        def broken(update):
            raise RuntimeError("boom")

        updates = []
        hub.subscribe(STATE_ID, broken)
        hub.subscribe(STATE_ID, updates.append)
        await hub.apply_folder_operation(USER_ID, "ws1", folder_created("f1", "r1"))
        assert len(updates) == 1
