import asyncio

import pytest
from fastapi import HTTPException
from starlette.websockets import WebSocketDisconnect

from pinzo import store
from pinzo.app import _forward_changes
from pinzo.events import InsertEvent
from pinzo.db import SessionLocal
from pinzo.reconciler import LiveView
from pinzo.relay import ChangeRelay, relay

from tests.helpers import login, rec


def add(client, title, url=None):
    r = client.post("/api/bookmarks", json={"title": title, "url": url or f"https://{title.lower()}.example"})
    assert r.status_code == 201
    return r.json()


def sync(ws):
    """Commands are handled in order, so an ERROR for junk means earlier commands are done."""
    ws.send_text("not json")
    msg = ws.receive_json()
    assert msg == {"type": "ERROR", "action": "", "detail": "invalid command"}


def test_anonymous_stream_is_refused(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/api/stream"):
            pass
    assert exc.value.code == 1008


def test_snapshot_then_live_insert(client, make_user):
    ada = make_user()
    login(client, ada)
    old = add(client, "Old")

    with client.websocket_connect("/api/stream") as ws:
        snap = ws.receive_json()
        assert snap == {"type": "SNAPSHOT", "records": [old]}
        assert relay.subscriber_count(ada.id) == 1

        created = add(client, "New")
        assert ws.receive_json() == {"type": "INSERT", "record": created}

    assert relay.subscriber_count(ada.id) == 0


def test_every_open_tab_sees_changes(client, make_user):
    login(client, make_user())
    with client.websocket_connect("/api/stream") as tab1, client.websocket_connect("/api/stream") as tab2:
        tab1.receive_json()
        tab2.receive_json()

        created = add(client, "Shared")
        assert tab1.receive_json()["record"]["id"] == created["id"]
        assert tab2.receive_json()["record"]["id"] == created["id"]

        renamed = client.patch(f"/api/bookmarks/{created['id']}", json={"title": "Renamed"}).json()
        for tab in (tab1, tab2):
            msg = tab.receive_json()
            assert msg["type"] == "UPDATE"
            assert msg["record"] == renamed
            assert msg["old_record"]["title"] == "Shared"

        client.delete(f"/api/bookmarks/{created['id']}")
        for tab in (tab1, tab2):
            assert tab.receive_json() == {"type": "DELETE", "old_record": {"id": created["id"]}}


def test_other_users_changes_are_not_streamed(client, make_user):
    ada = make_user()
    bob = make_user(email="bob@example.com", name="Bob")

    login(client, bob)
    with client.websocket_connect("/api/stream") as bob_ws:
        assert bob_ws.receive_json()["records"] == []

        with SessionLocal() as s:
            store.insert_bookmark(s, ada.id, "Ada's", "https://ada.example")
        bob_ws.send_json({"action": "create", "title": "Bob's", "url": "https://bob.example"})
        msg = bob_ws.receive_json()
        assert msg["type"] == "INSERT"
        assert msg["record"]["title"] == "Bob's"


def test_create_and_delete_commands(client, make_user):
    ada = make_user()
    login(client, ada)
    with client.websocket_connect("/api/stream") as ws:
        ws.receive_json()

        ws.send_json({"action": "create", "title": " Via socket ", "url": "https://socket.example"})
        inserted = ws.receive_json()
        assert inserted["type"] == "INSERT"
        assert inserted["record"]["title"] == "Via socket"
        assert inserted["record"]["user_id"] == ada.id
        sync(ws)

        listed = client.get("/api/bookmarks").json()["bookmarks"]
        assert [b["id"] for b in listed] == [inserted["record"]["id"]]

        # the relay echo of our own insert is already applied, so the next
        # message must be the delete, not a second INSERT
        ws.send_json({"action": "delete", "id": inserted["record"]["id"]})
        assert ws.receive_json() == {"type": "DELETE", "old_record": {"id": inserted["record"]["id"]}}
        sync(ws)
        assert client.get("/api/bookmarks").json() == {"bookmarks": []}


def test_update_command(client, make_user):
    login(client, make_user())
    created = add(client, "Draft")
    with client.websocket_connect("/api/stream") as ws:
        ws.receive_json()
        ws.send_json({"action": "update", "id": created["id"], "title": "Final"})
        msg = ws.receive_json()
        assert msg["type"] == "UPDATE"
        assert msg["record"]["title"] == "Final"
        assert msg["record"]["url"] == created["url"]
        sync(ws)
    assert client.get("/api/bookmarks").json()["bookmarks"][0]["title"] == "Final"


def test_rejected_command_only_answers_the_sender(client, make_user):
    login(client, make_user())
    with client.websocket_connect("/api/stream") as ws:
        ws.receive_json()
        ws.send_json({"action": "delete", "id": "does-not-exist"})
        assert ws.receive_json() == {"type": "ERROR", "action": "delete", "detail": "bookmark not found"}
        assert ws.receive_json() == {"type": "SNAPSHOT", "records": []}


def test_failed_delete_is_rolled_back(client, make_user, monkeypatch):
    login(client, make_user())
    keep = add(client, "Keep")

    def refuse(db, user_id, bookmark_id):
        raise HTTPException(503, "store unavailable")

    monkeypatch.setattr(store, "delete_bookmark", refuse)
    with client.websocket_connect("/api/stream") as ws:
        ws.receive_json()
        ws.send_json({"action": "delete", "id": keep["id"]})
        assert ws.receive_json()["type"] == "DELETE"
        assert ws.receive_json() == {"type": "ERROR", "action": "delete", "detail": "store unavailable"}
        assert ws.receive_json() == {"type": "SNAPSHOT", "records": [keep]}


def test_invalid_command_shapes(client, make_user):
    login(client, make_user())
    with client.websocket_connect("/api/stream") as ws:
        ws.receive_json()
        for payload in ({"action": "explode"}, {"action": "create", "title": "", "url": "https://x"}):
            ws.send_json(payload)
            assert ws.receive_json()["type"] == "ERROR"


def test_socket_create_keeps_its_timestamp(client, make_user):
    login(client, make_user())
    with client.websocket_connect("/api/stream") as ws:
        ws.receive_json()
        ws.send_json({"action": "create", "title": "Stamped", "url": "https://stamped.example"})
        inserted = ws.receive_json()["record"]
        sync(ws)
    listed = client.get("/api/bookmarks").json()["bookmarks"]
    assert listed == [inserted]


def test_failed_delete_after_concurrent_delete_stays_deleted(client, make_user, monkeypatch):
    login(client, make_user())
    gone = add(client, "Gone")
    real_delete = store.delete_bookmark

    def lose_race(db, user_id, bookmark_id):
        # another tab removes the row first, so this call finds nothing
        real_delete(db, user_id, bookmark_id)
        raise HTTPException(404, "bookmark not found")

    monkeypatch.setattr(store, "delete_bookmark", lose_race)
    with client.websocket_connect("/api/stream") as ws:
        ws.receive_json()
        ws.send_json({"action": "delete", "id": gone["id"]})
        assert ws.receive_json() == {"type": "DELETE", "old_record": {"id": gone["id"]}}
        assert ws.receive_json() == {"type": "ERROR", "action": "delete", "detail": "bookmark not found"}
        assert ws.receive_json() == {"type": "SNAPSHOT", "records": []}
        sync(ws)
    assert client.get("/api/bookmarks").json() == {"bookmarks": []}


class RecordingSocket:
    def __init__(self):
        self.sent = []
        self.close_code = None

    async def send_json(self, data):
        self.sent.append(data)

    async def close(self, code=1000):
        self.close_code = code


def test_change_feed_failure_closes_socket():
    relay_ = ChangeRelay(queue_size=1)
    loads = []

    def loader(user_id):
        loads.append(user_id)
        if len(loads) > 1:
            raise ConnectionError("store unavailable")
        return []

    async def scenario():
        view = await LiveView(relay_, 1, loader).open()
        relay_.publish(1, InsertEvent(record=rec("a")))
        relay_.publish(1, InsertEvent(record=rec("b", minutes=1)))

        ws = RecordingSocket()
        await asyncio.wait_for(_forward_changes(ws, view), 5)
        assert ws.close_code == 1011
        assert ws.sent == []
        assert view.released
        assert relay_.subscriber_count(1) == 0

    asyncio.run(scenario())
