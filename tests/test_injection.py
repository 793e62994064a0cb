from scenario_tracker.models import NarrativeTurn
from scenario_tracker.services.extraction import build_state_context
from scenario_tracker.services.injection import (
    NPC_SLOT,
    WORLD_SLOT,
    SlotInjectionSink,
    build_injections,
    push_injections,
    render_npc,
    render_world_state,
    score_npc,
    select_relevant_npcs,
)
from scenario_tracker.services.prompts import build_extraction_prompt


def test_world_state_render_lists_known_secrets(documents) -> None:
    world_state = documents["world_state.json"]
    world_state["known_secrets"] = {"skitter_identity": True, "coil_plan": False}
    world_state["divergence"]["timeline_reliable"] = False

    text = render_world_state(documents, "Worm")

    assert text.startswith("=== WORM: STATE ===")
    assert "TIMELINE UNRELIABLE" in text
    assert "skitter identity" in text
    assert "coil plan" not in text


def test_world_state_render_is_empty_without_date_or_arc() -> None:
    assert render_world_state({"world_state.json": {"arc": ""}}) == ""


def test_scoring_prefers_named_and_present_npcs(documents) -> None:
    taylor = documents["npc_taylor_hebert.json"]
    lisa = documents["npc_lisa_wilbourn.json"]
    assert score_npc(taylor, "skitter sends her bugs out") == 18
    assert score_npc(lisa, "nobody mentioned here") == 0
    assert score_npc(lisa, "lisa grins") == 7


def test_selection_respects_limit(documents) -> None:
    text = "skitter and tattletale argue"
    assert len(select_relevant_npcs(documents, text, limit=2)) == 2
    (top,) = select_relevant_npcs(documents, text, limit=1)
    assert top["display_name"] == "Taylor Hebert"


def test_render_npc_includes_state_and_hidden_knowledge(documents) -> None:
    taylor = documents["npc_taylor_hebert.json"]
    taylor["knowledge"]["visibility_gates"] = {"pc_secret_identity": False}
    text = render_npc(taylor)
    assert text.startswith('[NPC: TAYLOR HEBERT "Skitter" | Undersiders |')
    assert "Hair: long, dark and curly" in text
    assert "[DOES NOT KNOW] pc secret identity" in text


def test_injections_fill_and_clear_slots(documents) -> None:
    sink = SlotInjectionSink()
    turns = [NarrativeTurn(text="Tattletale laughs.")]
    push_injections(sink, build_injections(documents, turns, "Worm", limit=5))
    assert "Date: April 10, 2011" in sink.slots[WORLD_SLOT]
    assert sink.slots[NPC_SLOT].startswith("=== ACTIVE NPCs (2) ===")
    assert sink.priorities[NPC_SLOT] == 1

    push_injections(sink, build_injections({}, [], "", limit=5))
    assert sink.slots == {}


def test_extraction_prompt_section_order(documents) -> None:
    prompt = build_extraction_prompt("Taylor sighs.", build_state_context(documents), "Worm fanfic, PC is a tinker")
    positions = [
        prompt.index("SCENARIO CONTEXT:"),
        prompt.index("CURRENT STATE SUMMARY:"),
        prompt.index("NARRATIVE RESPONSE TO ANALYZE:"),
        prompt.index("Return JSON only."),
    ]
    assert positions == sorted(positions)
    assert '"file": "npc_taylor_hebert.json"' in prompt
    assert "SCENARIO CONTEXT" not in build_extraction_prompt("x", {}, "")
