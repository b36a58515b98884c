"""
Shared state manager tests.

The visible state must always equal the confirmed server state with the
pending optimistic deltas replayed in order.
"""

import pytest

from engine.kernel.delta import replay
from engine.kernel.types import CANCELLED, Applied
from engine.sync.messages import ResyncPayload
from engine.sync.tests.fakes import FakeAdapter

pytestmark = pytest.mark.asyncio


def set_key(key, value):
    return lambda state: Applied({**state, key: value})


def assert_composite(manager):
    deltas = [u.delta for u in manager._pending]
    assert manager.data == replay(manager.confirmed, deltas)


class TestOptimisticUpdates:
    async def test_update_is_visible_immediately(self, make_manager, store):
        manager = await make_manager()
        seen = []
        manager.subscribe(seen.append)

        ref = await manager.update_optimistic(set_key("a", 1))

        assert ref is not None
        assert manager.data == {"a": 1}
        assert manager.confirmed == {}
        assert manager.pending_change_refs == [ref]
        assert seen[-1] == {"a": 1}
        doc = await store.get_document("doc")
        assert [u.change_ref for u in doc.optimistic_updates] == [ref]

    async def test_cancelled_mutator_changes_nothing(self, make_manager):
        manager = await make_manager()
        assert await manager.update_optimistic(lambda state: CANCELLED) is None
        assert manager.pending_change_refs == []
        assert manager.data == {}

    async def test_mutator_receives_a_copy(self, make_manager):
        manager = await make_manager()
        await manager.update_optimistic(set_key("a", {"x": 1}))

        def vandal(state):
            state["a"]["x"] = 99
            return CANCELLED

        await manager.update_optimistic(vandal)
        assert manager.data == {"a": {"x": 1}}

    async def test_expire_reverts_to_confirmed_plus_remaining(self, make_manager, store):
        manager = await make_manager()
        first = await manager.update_optimistic(set_key("a", 1))
        await manager.update_optimistic(set_key("b", 2))

        await manager.expire_optimistic_updates([first])

        assert manager.data == {"b": 2}
        assert_composite(manager)
        doc = await store.get_document("doc")
        assert len(doc.optimistic_updates) == 1

    async def test_destroyed_manager_rejects_updates(self, make_manager):
        manager = await make_manager()
        manager.destroy()
        assert await manager.update_optimistic(set_key("a", 1)) is None

    async def test_pending_updates_survive_restart(self, make_manager):
        manager = await make_manager()
        ref = await manager.update_optimistic(set_key("a", 1))
        manager.destroy()

        restarted = await make_manager()
        assert restarted.pending_change_refs == [ref]
        assert restarted.data == {"a": 1}


class TestServerPushes:
    async def test_ack_drops_pending_and_moves_baseline(self, make_manager, store):
        adapter = FakeAdapter("doc")
        manager = await make_manager(adapter=adapter)
        ref = await manager.update_optimistic(set_key("a", 1))

        adapter.push(1, {"a": [1]}, change_ref=ref)
        await manager.idle()

        assert manager.version == 1
        assert manager.pending_change_refs == []
        assert manager.confirmed == {"a": 1}
        assert manager.data == {"a": 1}
        doc = await store.get_document("doc")
        assert doc.version == 1 and doc.optimistic_updates == []

    async def test_ack_is_not_replayed_after_crash_mid_persist(self, make_manager, store, connectivity, monkeypatch):
        adapter = FakeAdapter("doc")
        manager = await make_manager(adapter=adapter)
        ref = await manager.update_optimistic(set_key("a", 1))

        async def crash(*args):
            raise OSError("disk gone")

        monkeypatch.setattr(store, "update_document", crash)
        adapter.push(1, {"a": [1]}, change_ref=ref)
        await manager.idle()
        manager.destroy()
        monkeypatch.undo()

        restarted_adapter = FakeAdapter("doc")
        restarted_adapter.resync_payload = ResyncPayload(version=2, data={}, change_refs=[])
        restarted = await make_manager(adapter=restarted_adapter)
        assert restarted.pending_change_refs == []
        assert restarted.version == 0

        connectivity.set_online()
        await restarted.idle()
        assert restarted_adapter.resync_calls == [0]
        assert restarted.data == {}

    async def test_foreign_push_keeps_local_pending_on_top(self, make_manager):
        adapter = FakeAdapter("doc")
        manager = await make_manager(adapter=adapter)
        await manager.update_optimistic(set_key("mine", 1))

        adapter.push(1, {"theirs": [2]})
        await manager.idle()

        assert manager.confirmed == {"theirs": 2}
        assert manager.data == {"theirs": 2, "mine": 1}
        assert_composite(manager)

    async def test_stale_push_is_ignored(self, make_manager):
        adapter = FakeAdapter("doc")
        manager = await make_manager(adapter=adapter)
        adapter.push(1, {"a": [1]})
        adapter.push(1, {"b": [2]})
        await manager.idle()
        assert manager.confirmed == {"a": 1}

    async def test_empty_delta_only_bumps_version(self, make_manager):
        adapter = FakeAdapter("doc")
        manager = await make_manager(adapter=adapter)
        ref = await manager.update_optimistic(set_key("a", 1))

        adapter.push(1, {}, change_ref=ref)
        await manager.idle()

        assert manager.version == 1
        assert manager.data == {}

    async def test_version_gap_triggers_resync(self, make_manager, connectivity):
        adapter = FakeAdapter("doc")
        manager = await make_manager(adapter=adapter)
        connectivity.set_online()
        await manager.idle()
        adapter.resync_calls.clear()

        adapter.resync_payload = ResyncPayload(version=5, data={"z": 1}, change_refs=[])
        adapter.push(5, {"ignored": [1]})
        await manager.idle()

        assert adapter.resync_calls == [0]
        assert manager.version == 5
        assert manager.confirmed == {"z": 1}


class TestResync:
    async def test_online_transition_reconnects_and_resyncs(self, make_manager, connectivity):
        adapter = FakeAdapter("doc")
        adapter.resync_payload = ResyncPayload(version=3, data={"x": 1})
        manager = await make_manager(adapter=adapter)

        connectivity.set_online()
        await manager.idle()

        assert adapter.connect_calls == 1
        assert manager.version == 3
        assert manager.data == {"x": 1}

    async def test_resync_drops_acknowledged_and_keeps_unknown(self, make_manager, connectivity):
        adapter = FakeAdapter("doc")
        manager = await make_manager(adapter=adapter)
        delivered = await manager.update_optimistic(set_key("a", 1))
        undelivered = await manager.update_optimistic(set_key("b", 2))

        adapter.resync_payload = ResyncPayload(version=4, data={"a": 1}, change_refs=[delivered])
        connectivity.set_online()
        await manager.idle()

        assert manager.pending_change_refs == [undelivered]
        assert manager.confirmed == {"a": 1}
        assert manager.data == {"a": 1, "b": 2}

    async def test_resync_skipped_while_offline(self, make_manager):
        adapter = FakeAdapter("doc")
        manager = await make_manager(adapter=adapter)
        manager.request_resync()
        await manager.idle()
        assert adapter.resync_calls == []

    async def test_failed_resync_keeps_state(self, make_manager, connectivity):
        adapter = FakeAdapter("doc")
        manager = await make_manager(adapter=adapter)
        await manager.update_optimistic(set_key("a", 1))
        connectivity.set_online()
        await manager.idle()
        assert manager.data == {"a": 1}
        assert adapter.resync_calls == [0]
