from scenario_tracker.services.narrative import (
    extract_structured_block,
    merge_continuation,
    render_structured_block,
    strip_non_narrative,
)
from scenario_tracker.services.resolver import mentions_known_npc, resolve_npc_key


def test_strip_removes_reasoning_and_structured_blocks() -> None:
    raw = (
        "<think>plan the scene</think>Taylor looks up."
        "<lumiaooc>ooc note</lumiaooc>\n"
        "```wst\n{\"divergence_delta\": 2}\n```"
    )
    assert strip_non_narrative(raw) == "Taylor looks up."


def test_strip_is_idempotent_on_nested_tags() -> None:
    raw = "Before <thi<think>x</think>nk>secret</think> after"
    once = strip_non_narrative(raw)
    assert "secret" not in once
    assert strip_non_narrative(once) == once


def test_strip_handles_non_text() -> None:
    assert strip_non_narrative(None) == ""


def test_structured_block_is_read_from_raw_text() -> None:
    payload = {"in_world_date": "April 11, 2011", "divergence_delta": 4}
    raw = f"The docks burn.\n\n{render_structured_block(payload)}"
    assert extract_structured_block(raw) == payload


def test_structured_block_survives_fences_in_values() -> None:
    payload = {"npc_updates": [{"name": "Skitter", "notes": "wrote ```wst {} ``` on the wall"}]}
    raw = f"Taylor writes.\n{render_structured_block(payload)}\nThe end."
    assert extract_structured_block(raw) == payload
    assert strip_non_narrative(raw) == "Taylor writes.\n\nThe end."


def test_structured_block_rejects_invalid_json_and_non_objects() -> None:
    assert extract_structured_block("```wst\n{not json}\n```") is None
    assert extract_structured_block("```wst\n[1, 2]\n```") is None
    assert extract_structured_block("no block here") is None


def test_continuation_joins_previous_text() -> None:
    assert merge_continuation("second half", "first half ", True) == "first half second half"
    assert merge_continuation("second half", "first half", False) == "second half"


def test_resolver_matches_name_alias_and_partial(documents) -> None:
    assert resolve_npc_key("Taylor Hebert", documents) == "npc_taylor_hebert.json"
    assert resolve_npc_key("Skitter", documents) == "npc_taylor_hebert.json"
    assert resolve_npc_key("taylor", documents) == "npc_taylor_hebert.json"
    assert resolve_npc_key("Tattletale", documents) == "npc_lisa_wilbourn.json"


def test_resolver_returns_none_for_unknown_or_empty(documents) -> None:
    assert resolve_npc_key("Armsmaster", documents) is None
    assert resolve_npc_key("   ", documents) is None
    assert resolve_npc_key(None, documents) is None


def test_mentions_known_npc(documents) -> None:
    assert mentions_known_npc("Weaver walks in", documents)
    assert not mentions_known_npc("The rain keeps falling", documents)
