import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from scenario_tracker.database.db import init_db
from scenario_tracker.errors import RemoteStoreError
from scenario_tracker.services.gist_store import GistDocumentStore
from scenario_tracker.services.persistence import DebouncedPusher
from scenario_tracker.services.snapshot import SnapshotStore


# ── Debounced push ──

def test_burst_of_schedules_pushes_once() -> None:
    pushes = []

    async def push():
        pushes.append(1)

    async def scenario():
        pusher = DebouncedPusher(push, delay=0.01)
        for _ in range(5):
            pusher.schedule()
        assert pusher.pending
        await asyncio.sleep(0.1)
        assert not pusher.pending

    asyncio.run(scenario())
    assert pushes == [1]


def test_flush_runs_pending_push_now() -> None:
    pushes = []

    async def push():
        pushes.append(1)

    async def scenario():
        pusher = DebouncedPusher(push, delay=60)
        await pusher.flush()
        assert pushes == []
        pusher.schedule()
        await pusher.flush()
        assert not pusher.pending

    asyncio.run(scenario())
    assert pushes == [1]


def test_failed_push_is_logged_not_raised() -> None:
    async def push():
        raise RuntimeError("network down")

    async def scenario():
        pusher = DebouncedPusher(push, delay=0)
        pusher.schedule()
        await asyncio.sleep(0.05)
        return pusher.pending

    assert asyncio.run(scenario()) is False


# ── Gist store ──

def _store(handler, token="secret-token") -> GistDocumentStore:
    return GistDocumentStore(
        token=token,
        base_url="https://gist.test",
        transport=httpx.MockTransport(handler),
    )


def test_missing_token_fails_before_any_request() -> None:
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={})

    with pytest.raises(RemoteStoreError) as info:
        asyncio.run(_store(handler, token="").fetch_all("abc"))
    assert "no GitHub token" in str(info.value)
    assert requests == []


def test_fetch_parses_json_and_follows_truncated_files() -> None:
    def handler(request):
        if request.url.path == "/raw/big.json":
            return httpx.Response(200, text='{"arc_1": {}}')
        assert request.headers["Authorization"] == "token secret-token"
        assert request.headers["Accept"] == "application/vnd.github.v3+json"
        return httpx.Response(200, json={"files": {
            "world_state.json": {"content": '{"arc": "1"}'},
            "notes.txt": {"content": "free text"},
            "arc_events.json": {"truncated": True, "raw_url": "https://gist.test/raw/big.json", "content": "{"},
        }})

    documents = asyncio.run(_store(handler).fetch_all("abc"))
    assert documents == {
        "world_state.json": {"arc": "1"},
        "notes.txt": "free text",
        "arc_events.json": {"arc_1": {}},
    }


def test_error_body_is_truncated() -> None:
    def handler(request):
        return httpx.Response(404, text="x" * 500)

    with pytest.raises(RemoteStoreError) as info:
        asyncio.run(_store(handler).fetch_all("missing"))
    error = info.value
    assert error.status_code == 404
    assert error.operation == "Gist fetch"
    assert len(error.body) == 200
    assert str(error).startswith("Gist fetch failed (404)")


def test_patch_and_create_serialize_documents() -> None:
    seen = []

    def handler(request):
        seen.append((request.method, request.url.path, request.read()))
        if request.method == "POST":
            return httpx.Response(201, json={"id": "new-gist"})
        return httpx.Response(200, json={})

    store = _store(handler)
    asyncio.run(store.patch("abc", {"world_state.json": {"arc": "2"}}))
    gist_id = asyncio.run(store.create("Tracker", {"world_state.json": {"arc": "1"}}))

    assert gist_id == "new-gist"
    assert [(method, path) for method, path, _ in seen] == [("PATCH", "/gists/abc"), ("POST", "/gists")]
    assert b'\\"arc\\": \\"2\\"' in seen[0][2]
    assert b'"public":false' in seen[1][2].replace(b" ", b"")


def test_transport_errors_are_wrapped() -> None:
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(RemoteStoreError) as info:
        asyncio.run(_store(handler).patch("abc", {}))
    assert info.value.operation == "Gist update"


# ── Local snapshots ──

class Clock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


def test_snapshot_round_trip_and_staleness(tmp_path) -> None:
    db_path = str(tmp_path / "tracker.db")
    clock = Clock()
    store = SnapshotStore(db_path, max_age_seconds=3600, clock=clock)

    async def scenario():
        await init_db(db_path)
        assert await store.load("chat-1") is None
        await store.save("chat-1", "gist-1", {"world_state.json": {"arc": "1"}})
        fresh = await store.load("chat-1")
        clock.now += timedelta(hours=2)
        stale = await store.load("chat-1")
        return fresh, stale

    fresh, stale = asyncio.run(scenario())
    assert fresh.remote_id == "gist-1"
    assert fresh.documents == {"world_state.json": {"arc": "1"}}
    assert stale is None


def test_remote_links_fall_back_to_most_recent(tmp_path) -> None:
    db_path = str(tmp_path / "tracker.db")
    clock = Clock()
    store = SnapshotStore(db_path, clock=clock)

    async def scenario():
        await init_db(db_path)
        empty = await store.remote_for("chat-1")
        await store.link_remote("chat-1", "gist-1")
        clock.now += timedelta(minutes=1)
        await store.link_remote("chat-2", "gist-2")
        return empty, await store.remote_for("chat-1"), await store.remote_for("chat-3")

    empty, own, fallback = asyncio.run(scenario())
    assert empty is None
    assert own == "gist-1"
    assert fallback == "gist-2"
