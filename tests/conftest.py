import copy

import pytest

from scenario_tracker.services.documents import default_documents, scaffold_npc


def _taylor() -> dict:
    npc = scaffold_npc("Taylor Hebert", alias="Skitter", faction="Undersiders")
    npc["aliases"] = ["Skitter", "Weaver"]
    npc["appearance"] = {"hair": "long, dark and curly", "eyes": "grey"}
    npc["current_state"]["physical_state"] = "in the same room as PC"
    return npc


def _lisa() -> dict:
    npc = scaffold_npc("Lisa Wilbourn", alias="Tattletale", faction="Undersiders")
    npc["current_state"]["relationship_to_user_character"] = "wary"
    return npc


@pytest.fixture
def documents() -> dict:
    docs = default_documents("chat-1")
    docs["world_state.json"]["in_world_date"] = "April 10, 2011"
    docs["npc_taylor_hebert.json"] = _taylor()
    docs["npc_lisa_wilbourn.json"] = _lisa()
    return docs


class FakeCaller:
    """Stands in for the extraction caller; replies are consumed in order."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: list[str] = []

    @property
    def is_available(self) -> bool:
        return True

    async def extract(self, narrative_text, documents, scenario_context=""):
        self.calls.append(narrative_text)
        reply = self.replies.pop(0) if self.replies else None
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeStore:
    """In-memory remote document store."""

    def __init__(self, remotes: dict | None = None):
        self.remotes = remotes or {}
        self.patches: list[tuple[str, dict]] = []

    async def fetch_all(self, gist_id):
        return copy.deepcopy(self.remotes[gist_id])

    async def patch(self, gist_id, documents):
        self.patches.append((gist_id, copy.deepcopy(documents)))
        self.remotes[gist_id] = copy.deepcopy(documents)

    async def create(self, description, documents):
        gist_id = f"gist-{len(self.remotes) + 1}"
        self.remotes[gist_id] = copy.deepcopy(documents)
        return gist_id


@pytest.fixture
def fake_caller_factory():
    return FakeCaller


@pytest.fixture
def fake_store_factory():
    return FakeStore
