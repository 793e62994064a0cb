"""Prompt builders shared across services."""

import json
from typing import Any

EXTRACTION_INSTRUCTIONS = """You are a state extraction assistant for a roleplay session. Read the narrative response below and compare it against the current tracked state. Identify ONLY concrete, confirmed changes: things that definitively happened in the text, not inferences or possibilities.

Return a single JSON object only. If nothing changed, return {}.

Categories to check:

npc_knowledge: Did any NPC learn something new about the PC or world?
  Format: { "npc_filename.json": { "knowledge.field": newValue } }

npc_relationship: Did any NPC's relationship to the PC visibly shift?
  Format: { "npc_filename.json": "new relationship description" }

npc_current_state: Physical or emotional state changes for any NPC.
  Format: { "npc_filename.json": { "emotional_state": "...", "physical_state": "..." } }

arc_events: Did any tracked story event fire, get altered, or get skipped?
  Format: { "event_id": "fired-canon" | "fired-altered" | "skipped" }

new_npcs: Were any new named characters introduced not yet in the tracker?
  Format: [{ "display_name": "", "alias": "", "aliases": [], "faction": "", "first_appeared": "" }]

npc_appearance: Did the narrative visually describe any NPC's physical appearance concretely?
  Only propose if specific visual details were described (hair, eyes, height, build, clothing, marks).
  Format: { "npc_filename.json": { "hair": "...", "eyes": "...", "height": "...", "build": "...", "face": "...", "clothing_style": "...", "distinguishing_marks": "..." } }
  Include ONLY fields actually described. Omit null/unknown fields entirely.

npc_aliases: Did any NPC reveal, adopt, or lose a name or alias?
  Format: { "npc_filename.json": { "alias": "primary name", "aliases": ["all known names"] } }

world_state: Any setting-level changes (factions, territory, public knowledge, active situations)?
  Format: { "field_name": newValue }

divergence_delta: Integer. How many new story-altering events were confirmed? 0 if none.

in_world_date: Updated date string if time advanced in-scene, otherwise null."""


def build_extraction_assistant_prompt(scenario_name: str = "") -> str:
    label = f" for the scenario '{scenario_name}'" if scenario_name else ""
    return (
        f"You are a state extraction assistant{label}. "
        "You read roleplay narrative and report confirmed world-state changes as strict JSON. "
        "Never add commentary, never wrap JSON in markdown."
    )


def build_extraction_prompt(narrative_text: str, state_context: dict[str, Any], scenario_context: str = "") -> str:
    """
    Build the single extraction instruction for one narrative excerpt.

    :param narrative_text: Normalized narrative (or a combined rescan batch)
    :type narrative_text: str
    :param state_context: world_state / master_index / arc_events / active_npcs summary
    :type state_context: dict[str, Any]
    :param scenario_context: Optional scenario preamble, placed ahead of the instructions
    :type scenario_context: str
    :return: Prompt text
    :rtype: str
    """
    preamble = (scenario_context or "").strip()
    instructions = (
        f"SCENARIO CONTEXT:\n{preamble}\n\n{EXTRACTION_INSTRUCTIONS}"
        if preamble
        else EXTRACTION_INSTRUCTIONS
    )
    state_text = json.dumps(state_context, indent=2, ensure_ascii=False, default=str)
    return (
        f"{instructions}\n\n"
        f"CURRENT STATE SUMMARY:\n{state_text}\n\n"
        f"NARRATIVE RESPONSE TO ANALYZE:\n{narrative_text}\n\n"
        "Return JSON only. No explanation. No markdown fences. No prose. Return {} if nothing changed."
    )
