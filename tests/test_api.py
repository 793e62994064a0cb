import pytest
from fastapi.testclient import TestClient

from scenario_tracker.app import app
from scenario_tracker.config import settings
from scenario_tracker.services.session import SessionRegistry
from scenario_tracker.services.snapshot import SnapshotStore

BASE = "/api/sessions/chat-1"


@pytest.fixture
def client(tmp_path, monkeypatch, documents, fake_caller_factory, fake_store_factory):
    db_path = str(tmp_path / "tracker.db")
    monkeypatch.setattr(settings, "DATABASE_PATH", db_path)
    monkeypatch.setattr(settings, "BACKBOARD_API_KEY", "")
    with TestClient(app) as test_client:
        app.state.sessions = SessionRegistry(
            fake_store_factory({"gist-1": documents}),
            SnapshotStore(db_path),
            fake_caller_factory(),
            push_delay=60,
        )
        yield test_client


def test_health(client) -> None:
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["backboard_available"] is False


def test_unknown_session_is_404(client) -> None:
    assert client.get("/api/sessions/nope/state").status_code == 404
    assert client.delete("/api/sessions/nope").status_code == 404


def test_session_review_flow(client) -> None:
    started = client.post(f"{BASE}/start", json={"remote_id": "gist-1"})
    assert started.status_code == 200
    assert started.json()["npc_count"] == 2

    block = '```wst\n{"in_world_date": "April 14, 2011", "divergence_delta": 2}\n```'
    event = {"turns": [{"text": "go", "is_user": True}, {"text": f"Night falls.\n{block}"}]}
    outcome = client.post(f"{BASE}/events/message-received", json=event).json()
    assert outcome["proposed"] == 2

    queue = client.get(f"{BASE}/queue").json()
    assert [item["kind"] for item in queue] == ["divergence", "date_advance"]
    assert "commit" not in queue[0]

    accepted = client.post(f"{BASE}/queue/{queue[1]['id']}/accept")
    assert accepted.status_code == 200
    assert client.post(f"{BASE}/queue/{queue[1]['id']}/accept").status_code == 404

    denied = client.post(f"{BASE}/queue/deny-all").json()
    assert denied["count"] == 1

    state = client.get(f"{BASE}/state").json()
    assert state["pending_changes"] == 0
    assert "Date: April 14, 2011" in state["summary"]

    injections = client.get(f"{BASE}/injections").json()["slots"]
    assert "April 14, 2011" in injections["sst_world"]


def test_secrets_and_imports(client) -> None:
    client.post(f"{BASE}/start", json={"remote_id": "gist-1"})

    assert client.put(f"{BASE}/secrets/Coil Plan", json={"value": True}).json() == {
        "known_secrets": {"coil_plan": True}
    }
    assert client.post(f"{BASE}/secrets/coil_plan/toggle").json()["known_secrets"] == {"coil_plan": False}
    assert client.delete(f"{BASE}/secrets/missing").status_code == 404

    imported = client.post(f"{BASE}/imports", json={"files": {
        "amy.json": {"display_name": "Amy Dallon", "power": {"summary": "Biokinesis"}},
        "bad.json": "{oops",
    }})
    assert imported.status_code == 201
    (change,) = imported.json()
    assert change["target_key"] == "npc_amy_dallon.json"

    result = client.post(f"{BASE}/queue/accept-all").json()
    assert result["applied"] == 1
    assert client.get(f"{BASE}/state").json()["npc_count"] == 3


def test_rescan_runs_in_background(client) -> None:
    client.post(f"{BASE}/start", json={"remote_id": "gist-1"})
    turns = [{"text": '```wst\n{"world_state": {"arc": "2"}}\n```'}]

    response = client.post(f"{BASE}/rescan", json={"turns": turns, "structured_only": True})
    assert response.status_code == 202
    assert response.json()["started"] is True

    assert client.post(f"{BASE}/rescan/cancel").status_code == 200


def test_sync_without_remote_is_400(client) -> None:
    client.post(f"{BASE}/start", json={})
    assert client.post(f"{BASE}/sync").status_code == 400
