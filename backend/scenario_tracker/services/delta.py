"""Canonical delta construction from structured blocks and extraction replies."""

from __future__ import annotations

import json
import math
import re
import time
from itertools import count
from typing import Any, Mapping

from scenario_tracker.logging import get_logger
from scenario_tracker.models import ArcEventStatus, CanonicalDelta
from scenario_tracker.services.resolver import resolve_npc_key

logger = get_logger("services.delta")

ARC_EVENT_ID_MAX_CHARS = 40
_ARC_EVENT_ID_PATTERN = re.compile(r"[^a-z0-9]+")
_FENCE_PATTERN = re.compile(r"```(?:json)?", re.IGNORECASE)
_learned_sequence = count(1)


def _millis() -> int:
    return int(time.time() * 1000)


def arc_event_id(text: Any) -> str:
    if isinstance(text, str):
        return _ARC_EVENT_ID_PATTERN.sub("_", text.lower())[:ARC_EVENT_ID_MAX_CHARS]
    return f"event_{_millis()}"


def learned_field_path() -> str:
    return f"knowledge.learned_{_millis()}_{next(_learned_sequence)}"


def _coerce_divergence(value: Any) -> int:
    if isinstance(value, bool) or value is None:
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number) or number <= 0:
        return 0
    return int(number)


def _text(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _mapping_of_mappings(value: Any) -> dict[str, dict[str, Any]]:
    if not isinstance(value, Mapping):
        return {}
    return {
        str(key): dict(inner)
        for key, inner in value.items()
        if isinstance(inner, Mapping) and inner
    }


def _collect_npc_updates(source: Mapping[str, Any]) -> list[dict[str, Any]]:
    updates: list[dict[str, Any]] = []
    primary = source.get("npc_updates")
    if isinstance(primary, list):
        updates.extend(item for item in primary if isinstance(item, Mapping))

    legacy = source.get("npc_state_change")
    if isinstance(legacy, Mapping):
        legacy = [legacy]
    if isinstance(legacy, list):
        for item in legacy:
            if not isinstance(item, Mapping) or not item.get("name"):
                continue
            updates.append({
                "name": item.get("name"),
                "emotional_state": item.get("change") or item.get("state") or "",
            })
    return updates


def normalize_delta(source: Any, documents: dict[str, Any]) -> CanonicalDelta:
    """
    Build a canonical delta from a structured block or a parsed extraction reply.

    Malformed or missing optional fields are treated as absent. Character
    names that resolve to no NPC are dropped without affecting other fields.
    """
    if not isinstance(source, Mapping):
        return CanonicalDelta()

    divergence = _coerce_divergence(source.get("divergence_delta"))

    raw_world_state = source.get("world_state")
    world_state = dict(raw_world_state) if isinstance(raw_world_state, Mapping) else {}
    in_world_date = source.get("in_world_date")
    if in_world_date is None:
        in_world_date = world_state.get("in_world_date")
    world_state.pop("in_world_date", None)

    arc_events: dict[str, str] = {}
    direct_arc_events = source.get("arc_events")
    if isinstance(direct_arc_events, Mapping):
        for event_id, status in direct_arc_events.items():
            status_text = _text(status)
            if status_text:
                arc_events[str(event_id)] = status_text
    legacy_event = source.get("arc_event")
    if legacy_event and legacy_event != "null":
        arc_events[arc_event_id(legacy_event)] = ArcEventStatus.FIRED_CANON.value

    npc_relationship: dict[str, str] = {}
    npc_current_state: dict[str, dict[str, Any]] = {}
    npc_knowledge: dict[str, dict[str, Any]] = {}

    for update in _collect_npc_updates(source):
        key = resolve_npc_key(update.get("name"), documents)
        if not key:
            logger.debug("Dropping update for unresolved NPC %r", update.get("name"))
            continue
        relationship = _text(update.get("relationship"))
        if relationship:
            npc_relationship[key] = relationship
        state: dict[str, Any] = {}
        for field in ("emotional_state", "physical_state"):
            value = update.get(field)
            if value:
                state[field] = value
        if state:
            npc_current_state.setdefault(key, {}).update(state)
        if update.get("learned"):
            npc_knowledge.setdefault(key, {})[learned_field_path()] = update["learned"]

    for key, fields in _mapping_of_mappings(source.get("npc_knowledge")).items():
        npc_knowledge.setdefault(key, {}).update(fields)

    direct_relationship = source.get("npc_relationship")
    if isinstance(direct_relationship, Mapping):
        for key, value in direct_relationship.items():
            relationship = _text(value)
            if relationship:
                npc_relationship[str(key)] = relationship

    for key, fields in _mapping_of_mappings(source.get("npc_current_state")).items():
        npc_current_state.setdefault(key, {}).update(fields)

    payload: dict[str, Any] = {}
    if divergence > 0:
        payload["divergence_delta"] = divergence
    if isinstance(in_world_date, str) and in_world_date.strip():
        payload["in_world_date"] = in_world_date
    if world_state:
        payload["world_state"] = world_state
    if arc_events:
        payload["arc_events"] = arc_events
    if npc_knowledge:
        payload["npc_knowledge"] = npc_knowledge
    if npc_relationship:
        payload["npc_relationship"] = npc_relationship
    if npc_current_state:
        payload["npc_current_state"] = npc_current_state

    appearance = _mapping_of_mappings(source.get("npc_appearance"))
    if appearance:
        payload["npc_appearance"] = appearance
    aliases = _mapping_of_mappings(source.get("npc_aliases"))
    if aliases:
        payload["npc_aliases"] = aliases

    new_npcs = source.get("new_npcs")
    if isinstance(new_npcs, list):
        payload["new_npcs"] = [dict(entry) for entry in new_npcs if isinstance(entry, Mapping)]

    return CanonicalDelta(**payload)


def parse_delta(raw_text: Any) -> dict[str, Any] | None:
    """Parse an extraction reply; None means "no changes extracted"."""
    if not raw_text or not isinstance(raw_text, str):
        return None
    cleaned = _FENCE_PATTERN.sub("", raw_text).strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.warning("Delta parse failed on: %s", raw_text[:200])
        return None
    if not isinstance(parsed, dict):
        logger.warning("Delta reply is not a JSON object (got %s)", type(parsed).__name__)
        return None
    return parsed
