import asyncio
from types import SimpleNamespace

import pytest

from scenario_tracker.errors import CapabilityUnavailable, GenerationError, is_rate_limit_error
from scenario_tracker.services.backboard import BackboardService
from scenario_tracker.services.extraction import ExtractionCaller


class FakeBackboardClient:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.messages = []
        self.deleted = []

    async def create_thread(self, assistant_id):
        return SimpleNamespace(thread_id=f"thread-{len(self.messages) + 1}")

    async def add_message(self, **kwargs):
        self.messages.append(kwargs)
        if self.error:
            raise self.error
        return SimpleNamespace(content=self.reply, model_name=None, model_provider=None)

    async def delete_thread(self, thread_id):
        self.deleted.append(thread_id)


def _service(client) -> BackboardService:
    service = BackboardService()
    service.client = client
    service._initialized = True
    service._assistant_id = "assistant-1"
    return service


def test_quiet_generate_uses_throwaway_thread() -> None:
    client = FakeBackboardClient(reply='{"divergence_delta": 2}')
    reply = asyncio.run(_service(client).quiet_generate("prompt"))
    assert reply == '{"divergence_delta": 2}'
    assert client.messages[0]["memory"] == "off"
    assert client.deleted == ["thread-1"]


def test_quiet_generate_failure_keeps_rate_limit_detail() -> None:
    client = FakeBackboardClient(error=RuntimeError("429 Too Many Requests"))
    with pytest.raises(GenerationError) as info:
        asyncio.run(_service(client).quiet_generate("prompt"))
    assert is_rate_limit_error(info.value)
    assert len(client.messages) == 1
    assert client.deleted == ["thread-1"]


def test_unconfigured_backboard_is_unavailable() -> None:
    with pytest.raises(CapabilityUnavailable):
        asyncio.run(BackboardService().quiet_generate("prompt"))


def test_extract_round_trip_through_caller(documents) -> None:
    client = FakeBackboardClient(reply='```json\n{"npc_updates": [{"name": "Skitter", "relationship": "friend"}]}\n```')
    caller = ExtractionCaller(_service(client))

    delta = asyncio.run(caller.extract("Skitter nods.", documents, "Worm"))

    assert delta.npc_relationship == {"npc_taylor_hebert.json": "friend"}
    assert client.messages[0]["content"].startswith("SCENARIO CONTEXT:\nWorm")


def test_extract_returns_none_for_prose(documents) -> None:
    caller = ExtractionCaller(_service(FakeBackboardClient(reply="Nothing happened.")))
    assert asyncio.run(caller.extract("Quiet night.", documents)) is None


def test_caller_without_generator_raises(documents) -> None:
    caller = ExtractionCaller()
    assert not caller.is_available
    with pytest.raises(CapabilityUnavailable):
        asyncio.run(caller.extract("text", documents))
