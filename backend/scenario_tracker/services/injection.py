"""Renders tracked state into prompt-injection text and picks the NPCs worth injecting."""

from __future__ import annotations

import json
import re
from typing import Any, Protocol, Sequence

from scenario_tracker.config import settings
from scenario_tracker.logging import get_logger
from scenario_tracker.models import ArcEventStatus, NarrativeTurn
from scenario_tracker.services.documents import ARC_EVENTS_KEY, WORLD_STATE_KEY, iter_npc_documents, npc_names

logger = get_logger("services.injection")

WORLD_SLOT = "sst_world"
NPC_SLOT = "sst_npcs"
INJECTION_PRIORITY = 1

_PRESENT_PATTERN = re.compile(r"present|scene|with pc|same room")
_HOSTILE_PATTERN = re.compile(r"hostile|enemy|threat")
_TRUSTED_PATTERN = re.compile(r"trusted|loyal|ally")
_ROMANTIC_PATTERN = re.compile(r"romantic|love|crush")


class InjectionSink(Protocol):
    def inject(self, slot_id: str, text: str, priority: int) -> None: ...


class SlotInjectionSink:
    """Keeps the latest text per slot; injecting into a slot replaces its previous text."""

    def __init__(self, slots: dict[str, str] | None = None):
        self.slots: dict[str, str] = slots if slots is not None else {}
        self.priorities: dict[str, int] = {}

    def inject(self, slot_id: str, text: str, priority: int) -> None:
        if text:
            self.slots[slot_id] = text
            self.priorities[slot_id] = priority
        else:
            self.slots.pop(slot_id, None)
            self.priorities.pop(slot_id, None)


def _inline(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)


def render_world_state(documents: dict[str, Any], scenario_name: str = "") -> str:
    world_state = documents.get(WORLD_STATE_KEY) or {}
    if not isinstance(world_state, dict) or (not world_state.get("in_world_date") and not world_state.get("arc")):
        return ""

    label = f"=== {scenario_name.upper()}: STATE ===" if scenario_name else "=== WORLD STATE ==="
    chapter = f" ch.{world_state['chapter']}" if world_state.get("chapter") else ""
    lines = [
        label,
        f"Date: {world_state.get('in_world_date') or '?'}  |  Arc {world_state.get('arc') or '?'}{chapter}",
    ]

    divergence = world_state.get("divergence")
    if isinstance(divergence, dict) and "rating" in divergence:
        warning = "" if divergence.get("timeline_reliable", True) else "  ⚠ TIMELINE UNRELIABLE, arc events reference only"
        threshold = divergence.get("threshold") or settings.DEFAULT_DIVERGENCE_THRESHOLD
        lines.append(f"Divergence: {divergence['rating']}/{threshold}{warning}")

    situations = world_state.get("active_situations")
    if isinstance(situations, list) and situations:
        lines += ["", "Active situations:"]
        lines += [f"  • {_inline(situation)}" for situation in situations]

    factions = world_state.get("faction_status") or world_state.get("territorial_control") or {}
    if isinstance(factions, dict) and factions:
        lines += ["", "Faction status:"]
        for name, status in factions.items():
            if isinstance(status, dict):
                status = status.get("status") or _inline(status)
            lines.append(f"  {name}: {status}")

    secrets = world_state.get("known_secrets")
    if isinstance(secrets, dict):
        known = [
            key for key, value in secrets.items()
            if value is True or (isinstance(value, str) and "know" in value.lower())
        ]
        if known:
            lines += ["", "PC currently knows:"]
            lines += [f"  • {key.replace('_', ' ')}" for key in known]

    return "\n".join(lines)


def render_arc_events(documents: dict[str, Any]) -> str:
    world_state = documents.get(WORLD_STATE_KEY)
    if not isinstance(world_state, dict):
        world_state = {}
    arc = world_state.get("arc") or "1"
    arc_data = (documents.get(ARC_EVENTS_KEY) or {}).get(f"arc_{arc}")
    if not isinstance(arc_data, dict):
        return ""
    fired = [
        f"  [{event['player_status'].upper()}] {event_id.replace('_', ' ')}: {event.get('summary') or ''}"
        for event_id, event in arc_data.items()
        if isinstance(event, dict)
        and isinstance(event.get("player_status"), str)
        and event["player_status"] != ArcEventStatus.PENDING.value
    ]
    return f"=== ARC {arc} EVENTS (FIRED) ===\n" + "\n".join(fired) if fired else ""


_APPEARANCE_FIELDS = (
    ("height", "{}"),
    ("build", "{}"),
    ("face", "Face: {}"),
    ("hair", "Hair: {}"),
    ("eyes", "Eyes: {}"),
    ("body_detail", "Body: {}"),
    ("distinguishing_marks", "Marks: {}"),
    ("clothing_style", "Style: {}"),
)


def render_npc(npc: dict[str, Any]) -> str | None:
    if not npc.get("display_name"):
        return None
    alias = f' "{npc["alias"]}"' if npc.get("alias") else ""
    lines = [
        f"[NPC: {str(npc['display_name']).upper()}{alias} | {npc.get('faction') or 'Unknown'} | {npc.get('classification') or ''}]"
    ]

    appearance = npc.get("appearance")
    if isinstance(appearance, dict) and appearance:
        parts = [template.format(appearance[field]) for field, template in _APPEARANCE_FIELDS if appearance.get(field)]
        if parts:
            lines.append(f"Appearance: {'. '.join(parts)}")
    elif npc.get("physical_description"):
        lines.append(f"Appearance: {npc['physical_description']}")

    if npc.get("abilities"):
        lines.append(f"Abilities: {npc['abilities']}")
    power = npc.get("power")
    if isinstance(power, dict) and power.get("summary"):
        lines.append(f"Power: {power['summary']}")
        limitations = power.get("current_limitations")
        if isinstance(limitations, list) and limitations:
            lines.append(f"  Limitations: {'; '.join(map(str, limitations))}")
        if power.get("cannot_do"):
            lines.append(f"  Cannot: {power['cannot_do']}")
    if npc.get("personality"):
        lines.append(f"Personality: {npc['personality']}")

    state = npc.get("current_state") if isinstance(npc.get("current_state"), dict) else {}
    lines.append("Current:")
    if state.get("relationship_to_user_character"):
        lines.append(f"  → Relationship to PC: {state['relationship_to_user_character']}")
    if state.get("emotional_state"):
        lines.append(f"  → Emotional: {state['emotional_state']}")
    if state.get("physical_state"):
        lines.append(f"  → Physical: {state['physical_state']}")

    knowledge = npc.get("knowledge") if isinstance(npc.get("knowledge"), dict) else {}
    intel = [item for item in (knowledge.get("specific_intel") or []) if item]
    gates = knowledge.get("visibility_gates") if isinstance(knowledge.get("visibility_gates"), dict) else {}
    hidden = [key for key, value in gates.items() if value is False or value == "hidden"]
    if intel or hidden:
        lines.append("Knowledge:")
        for item in intel:
            fact = item.get("fact") if isinstance(item, dict) else item
            lines.append(f"  [KNOWS] {fact}")
        for key in hidden:
            lines.append(f"  [DOES NOT KNOW] {key.replace('_', ' ')}")

    if npc.get("critical_note"):
        lines.append(f"!! CRITICAL: {npc['critical_note']}")
    return "\n".join(lines)


def recent_text(turns: Sequence[NarrativeTurn], depth: int | None = None) -> str:
    depth = settings.NPC_SCAN_DEPTH if depth is None else depth
    if depth <= 0:
        return ""
    return " ".join(turn.text or "" for turn in turns[-depth:]).lower()


def score_npc(npc: dict[str, Any], text: str) -> int:
    """Relevance of one NPC to the recent conversation; 0 means leave it out."""
    score = 0
    for name in npc_names(npc):
        if name.lower() in text:
            score += 10
            break
        first = name.split()[0].lower() if name.split() else ""
        if len(first) > 3 and first in text:
            score += 7
            break

    state = npc.get("current_state") if isinstance(npc.get("current_state"), dict) else {}
    physical = str(state.get("physical_state") or "").lower()
    if _PRESENT_PATTERN.search(physical):
        score += 8
    relationship = str(state.get("relationship_to_user_character") or "").lower()
    if _HOSTILE_PATTERN.search(relationship):
        score += 5
    if _TRUSTED_PATTERN.search(relationship):
        score += 4
    if _ROMANTIC_PATTERN.search(relationship):
        score += 6
    knowledge = npc.get("knowledge") if isinstance(npc.get("knowledge"), dict) else {}
    if knowledge.get("specific_intel"):
        score += 1
    return score


def select_relevant_npcs(documents: dict[str, Any], text: str, limit: int | None = None) -> list[dict[str, Any]]:
    limit = settings.MAX_INJECTED_NPCS if limit is None else limit
    scored = [(score_npc(npc, text), npc) for _, npc in iter_npc_documents(documents)]
    ranked = sorted((item for item in scored if item[0] > 0), key=lambda item: item[0], reverse=True)
    return [npc for _, npc in ranked[:limit]]


def build_injections(
    documents: dict[str, Any],
    turns: Sequence[NarrativeTurn],
    scenario_name: str = "",
    limit: int | None = None,
) -> dict[str, str]:
    """Text for both slots; an empty string clears the slot."""
    world_text = "\n\n".join(
        block for block in (render_world_state(documents, scenario_name), render_arc_events(documents)) if block
    )
    selected = select_relevant_npcs(documents, recent_text(turns), limit)
    npc_text = ""
    if selected:
        rendered = "\n\n".join(block for block in map(render_npc, selected) if block)
        npc_text = f"=== ACTIVE NPCs ({len(selected)}) ===\n{rendered}"
    return {WORLD_SLOT: world_text, NPC_SLOT: npc_text}


def push_injections(sink: InjectionSink, injections: dict[str, str]) -> None:
    for slot_id, text in injections.items():
        sink.inject(slot_id, text, INJECTION_PRIORITY)
    logger.debug("Injected %s", {slot: len(text) for slot, text in injections.items()})
