import asyncio

from scenario_tracker.config import settings
from scenario_tracker.errors import CapabilityUnavailable, GenerationError
from scenario_tracker.models import BusyReason, CanonicalDelta, NarrativeTurn, RescanPhase
from scenario_tracker.services.narrative import render_structured_block
from scenario_tracker.services.rescan import RescanOrchestrator, build_batch_text, clamp_count, select_window
from scenario_tracker.services.session_context import SessionContext


def _orphan_turns(count: int) -> list[NarrativeTurn]:
    turns = []
    for index in range(count):
        turns.append(NarrativeTurn(text=f"go on {index}", is_user=True))
        turns.append(NarrativeTurn(text=f"Skitter watches the bay, scene {index}."))
    return turns


def _orchestrator(documents, caller):
    context = SessionContext(session_id="chat-1", documents=documents)
    sleeps: list[float] = []
    statuses: list[str] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    orchestrator = RescanOrchestrator(context, caller, statuses.append, sleep=fake_sleep)
    return orchestrator, context, sleeps, statuses


def test_window_and_batch_helpers() -> None:
    turns = [
        NarrativeTurn(text="a"),
        NarrativeTurn(text="user", is_user=True),
        NarrativeTurn(text=""),
        NarrativeTurn(text="b"),
        NarrativeTurn(text="c"),
    ]
    assert select_window(turns, 2) == ["b", "c"]
    assert clamp_count(0) == 1
    assert clamp_count(500) == settings.RESCAN_MAX_COUNT
    assert clamp_count(None) == settings.RESCAN_DEFAULT_COUNT
    assert build_batch_text(["x", "y"]) == "[Message 1 of 2]\nx\n\n━━━ [next message] ━━━\n\n[Message 2 of 2]\ny"


def test_orphans_are_sent_in_one_call(documents, fake_caller_factory) -> None:
    caller = fake_caller_factory(CanonicalDelta(in_world_date="April 13, 2011"))
    orchestrator, context, sleeps, _ = _orchestrator(documents, caller)

    report = asyncio.run(orchestrator.run(_orphan_turns(10), count=10))

    assert len(caller.calls) == 1
    assert "[Message 1 of 10]" in caller.calls[0]
    assert "[Message 10 of 10]" in caller.calls[0]
    assert report.orphans == 10
    assert report.batch_found_changes
    assert len(context.queue) == 1
    assert sleeps == []
    assert context.busy is None
    assert context.rescan_phase == RescanPhase.IDLE


def test_rate_limit_retries_with_growing_waits(documents, fake_caller_factory) -> None:
    rate_limited = GenerationError("Too Many Requests", status_code=429)
    caller = fake_caller_factory(rate_limited, rate_limited, CanonicalDelta(in_world_date="April 13, 2011"))
    orchestrator, context, sleeps, _ = _orchestrator(documents, caller)

    report = asyncio.run(orchestrator.run(_orphan_turns(3)))

    step = settings.RESCAN_BACKOFF_STEP_SECONDS
    assert report.batch_attempts == 3
    assert sleeps == [step, 2 * step]
    assert report.batch_error is None
    assert report.batch_found_changes


def test_rate_limit_gives_up_after_max_attempts(documents, fake_caller_factory) -> None:
    caller = fake_caller_factory(*[GenerationError("429 rate limit exceeded")] * 5)
    orchestrator, _, sleeps, _ = _orchestrator(documents, caller)

    report = asyncio.run(orchestrator.run(_orphan_turns(2)))

    assert report.batch_attempts == settings.RESCAN_MAX_ATTEMPTS
    assert len(sleeps) == settings.RESCAN_MAX_ATTEMPTS - 1
    assert "429" in report.batch_error


def test_other_errors_stop_immediately(documents, fake_caller_factory) -> None:
    caller = fake_caller_factory(RuntimeError("model exploded"))
    orchestrator, _, sleeps, statuses = _orchestrator(documents, caller)

    report = asyncio.run(orchestrator.run(_orphan_turns(2)))

    assert report.batch_attempts == 1
    assert sleeps == []
    assert report.batch_error == "model exploded"
    assert statuses[-1].startswith("rescan finished with errors")


def test_missing_capability_is_not_retried(documents, fake_caller_factory) -> None:
    caller = fake_caller_factory(CapabilityUnavailable("quiet generation not available"))
    orchestrator, _, sleeps, _ = _orchestrator(documents, caller)

    report = asyncio.run(orchestrator.run(_orphan_turns(2)))

    assert report.batch_attempts == 1
    assert sleeps == []


def test_structured_blocks_skip_the_llm(documents, fake_caller_factory) -> None:
    caller = fake_caller_factory()
    orchestrator, context, _, _ = _orchestrator(documents, caller)
    turns = _orphan_turns(2) + [
        NarrativeTurn(text="The fight ends.\n" + render_structured_block({"world_state": {"arc": "2"}})),
    ]

    report = asyncio.run(orchestrator.run(turns, structured_only=True))

    assert caller.calls == []
    assert report.structured_hits == 1
    assert report.orphans == 0
    assert len(context.queue) == 1


def test_turns_without_known_npcs_are_not_orphans(documents, fake_caller_factory) -> None:
    caller = fake_caller_factory()
    orchestrator, _, _, statuses = _orchestrator(documents, caller)

    report = asyncio.run(orchestrator.run([NarrativeTurn(text="Rain over Brockton Bay.")]))

    assert caller.calls == []
    assert report.orphans == 0
    assert statuses[-1] == "rescan complete, no structured blocks found"


def test_cancel_stops_between_turns(documents, fake_caller_factory) -> None:
    caller = fake_caller_factory()
    context = SessionContext(session_id="chat-1", documents=documents)
    holder = {}

    def on_status(message: str) -> None:
        if message.startswith("pass 1"):
            holder["orchestrator"].cancel()

    orchestrator = RescanOrchestrator(context, caller, on_status)
    holder["orchestrator"] = orchestrator

    report = asyncio.run(orchestrator.run(_orphan_turns(5)))

    assert report.cancelled
    assert report.scanned == 0
    assert caller.calls == []
    assert report.message.startswith("scan stopped")
    assert context.busy is None
    assert context.cancel_requested is False


def test_guards(documents, fake_caller_factory) -> None:
    caller = fake_caller_factory()
    orchestrator, context, _, _ = _orchestrator(documents, caller)

    context.busy = BusyReason.EXTRACTION
    report = asyncio.run(orchestrator.run(_orphan_turns(2)))
    assert report.message == "already scanning, please wait"
    assert context.busy == BusyReason.EXTRACTION

    context.busy = None
    report = asyncio.run(orchestrator.run([NarrativeTurn(text="hi", is_user=True)]))
    assert report.message == "no AI messages to scan"

    context.documents = {}
    report = asyncio.run(orchestrator.run(_orphan_turns(2)))
    assert report.message == "no world_state loaded, sync first"
    assert caller.calls == []


def test_broken_structured_block_is_skipped(documents, fake_caller_factory, monkeypatch) -> None:
    caller = fake_caller_factory()
    orchestrator, context, _, statuses = _orchestrator(documents, caller)
    calls = []

    def flaky_propose(delta):
        calls.append(delta)
        if len(calls) == 1:
            raise RuntimeError("queue is broken")
        return []

    monkeypatch.setattr(context.queue, "propose", flaky_propose)
    turns = [
        NarrativeTurn(text=render_structured_block({"world_state": {"arc": "2"}})),
        NarrativeTurn(text=render_structured_block({"world_state": {"arc": "3"}})),
    ]

    report = asyncio.run(orchestrator.run(turns, structured_only=True))

    assert report.scanned == 2
    assert len(calls) == 2
    assert "skipped a malformed structured block: queue is broken" in statuses
    assert context.busy is None
