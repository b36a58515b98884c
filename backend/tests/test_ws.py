"""
Integration tests for the shared-state WebSocket endpoint.

Tests /ws/shared-state/{state_id} — join, resync replies, update broadcasts.
"""

from __future__ import annotations

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from backend.routes.ws import CLOSE_NOT_FOUND, CLOSE_UNAUTHORIZED

URL = "/ws/shared-state/workspace-folder:ws1"


@pytest.fixture
def client(app, auth_headers):
    """Synchronous TestClient with one workspace already created."""
    with TestClient(app) as c:
        res = c.post("/api/workspaces", json={"id": "ws1", "name": "Ops"}, headers=auth_headers)
        assert res.status_code == 201
        yield c


def put_folder(client, headers, op):
    res = client.put("/api/workspaces/ws1/folder", json=op, headers=headers)
    assert res.status_code in (200, 404)
    return res.json()


class TestJoin:
    def test_joined_frame(self, client, auth_headers):
        with client.websocket_connect(URL, headers=auth_headers) as ws:
            frame = ws.receive_json()
        assert frame == {"type": "joined", "state_id": "workspace-folder:ws1", "version": 0}

    def test_token_query_param(self, client, token):
        with client.websocket_connect(f"{URL}?token={token}") as ws:
            assert ws.receive_json()["type"] == "joined"

    def test_unauthenticated_closed(self, client):
        with client.websocket_connect(URL) as ws:
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()
        assert exc.value.code == CLOSE_UNAUTHORIZED

    def test_unknown_state_closed(self, client, auth_headers):
        with client.websocket_connect("/ws/shared-state/workspace-folder:nope", headers=auth_headers) as ws:
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()
        assert exc.value.code == CLOSE_NOT_FOUND

    def test_other_users_state_closed(self, client, other_auth_headers):
        with client.websocket_connect(URL, headers=other_auth_headers) as ws:
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()
        assert exc.value.code == CLOSE_NOT_FOUND


class TestUpdates:
    def test_folder_change_is_pushed(self, client, auth_headers):
        with client.websocket_connect(URL, headers=auth_headers) as ws:
            ws.receive_json()
            put_folder(client, auth_headers, {"type": "folder_created", "folder_id": "f1", "name": "One", "change_ref": "r1"})

            frame = ws.receive_json()

        assert frame["type"] == "update"
        assert frame["payload"]["version"] == 1
        assert frame["payload"]["change_ref"] == "r1"
        assert "f1" in frame["payload"]["delta"]

    def test_acknowledgement_for_missing_target_is_pushed(self, client, auth_headers):
        with client.websocket_connect(URL, headers=auth_headers) as ws:
            ws.receive_json()
            put_folder(client, auth_headers, {"type": "folder_deleted", "folder_id": "gone", "change_ref": "r1"})

            frame = ws.receive_json()

        assert frame["payload"] == {"version": 1, "delta": {}, "change_ref": "r1"}


class TestResync:
    def test_resync_reply(self, client, auth_headers):
        put_folder(client, auth_headers, {"type": "folder_created", "folder_id": "f1", "name": "One", "change_ref": "r1"})
        put_folder(client, auth_headers, {"type": "folder_created", "folder_id": "f2", "name": "Two", "change_ref": "r2"})

        with client.websocket_connect(URL, headers=auth_headers) as ws:
            assert ws.receive_json()["version"] == 2
            ws.send_json({"type": "resync", "ref": "q1", "last_known_version": 1})
            reply = ws.receive_json()

        assert reply["type"] == "reply"
        assert reply["ref"] == "q1"
        assert reply["status"] == "ok"
        assert reply["payload"]["version"] == 2
        assert reply["payload"]["change_refs"] == ["r2"]
        assert set(reply["payload"]["data"]) == {"f1", "f2"}

    def test_invalid_resync_gets_error_reply(self, client, auth_headers):
        with client.websocket_connect(URL, headers=auth_headers) as ws:
            ws.receive_json()
            ws.send_json({"type": "resync", "ref": "q1"})
            reply = ws.receive_json()

        assert reply["ref"] == "q1"
        assert reply["status"] == "error"

    def test_unknown_frames_are_ignored(self, client, auth_headers):
        with client.websocket_connect(URL, headers=auth_headers) as ws:
            ws.receive_json()
            ws.send_text("not json")
            ws.send_json({"type": "dance"})
            ws.send_json({"type": "resync", "ref": "q1", "last_known_version": 0})
            reply = ws.receive_json()

        assert reply["ref"] == "q1"
