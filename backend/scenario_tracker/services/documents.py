"""Entity store layout: document keys, default documents, dotted-path access."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Iterator

from scenario_tracker.config import settings

WORLD_STATE_KEY = "world_state.json"
ARC_EVENTS_KEY = "arc_events.json"
MASTER_INDEX_KEY = "_master_index.json"
NPC_KEY_PREFIX = "npc_"
NPC_KEY_SUFFIX = ".json"

_WHITESPACE_RUN = re.compile(r"\s+")
_NON_KEY_CHARS = re.compile(r"[^a-z0-9_]")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def npc_key(display_name: str) -> str:
    slug = _WHITESPACE_RUN.sub("_", (display_name or "").strip().lower())
    slug = _NON_KEY_CHARS.sub("", slug)
    return f"{NPC_KEY_PREFIX}{slug}{NPC_KEY_SUFFIX}"


def is_npc_key(key: str) -> bool:
    return key.startswith(NPC_KEY_PREFIX) and key.endswith(NPC_KEY_SUFFIX)


def iter_npc_documents(documents: dict[str, Any]) -> Iterator[tuple[str, dict]]:
    """Yield (key, document) for NPC documents in store iteration order."""
    for key, document in documents.items():
        if is_npc_key(key) and isinstance(document, dict):
            yield key, document


def npc_label(documents: dict[str, Any], key: str) -> str:
    document = documents.get(key)
    if isinstance(document, dict) and document.get("display_name"):
        return str(document["display_name"])
    stem = key
    if stem.startswith(NPC_KEY_PREFIX):
        stem = stem[len(NPC_KEY_PREFIX):]
    if stem.endswith(NPC_KEY_SUFFIX):
        stem = stem[: -len(NPC_KEY_SUFFIX)]
    return stem.replace("_", " ")


def npc_names(document: dict) -> list[str]:
    """Display name, primary alias and alternate names, empties dropped."""
    names = [document.get("display_name"), document.get("alias")]
    aliases = document.get("aliases")
    if isinstance(aliases, list):
        names.extend(aliases)
    return [str(name) for name in names if isinstance(name, str) and name.strip()]


def deep_get(document: Any, path: str) -> Any:
    current = document
    for segment in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(segment)
    return current


def deep_set(document: dict, path: str, value: Any) -> None:
    segments = path.split(".")
    current = document
    for segment in segments[:-1]:
        child = current.get(segment)
        if not isinstance(child, dict):
            child = {}
            current[segment] = child
        current = child
    current[segments[-1]] = value


def scaffold_npc(
    display_name: str,
    alias: str | None = None,
    faction: str | None = None,
    first_appeared: str | None = None,
) -> dict[str, Any]:
    return {
        "display_name": display_name,
        "alias": alias or "",
        "aliases": [alias] if alias else [],
        "faction": faction or "Unknown",
        "first_appeared": first_appeared or "",
        "age": "",
        "appearance": {},
        "personality": "",
        "history": "",
        "abilities": "",
        "knowledge": {
            "specific_intel": [],
            "visibility_gates": {},
        },
        "current_state": {
            "relationship_to_user_character": "not yet met",
            "emotional_state": "",
            "physical_state": "",
        },
    }


def default_divergence() -> dict[str, Any]:
    return {
        "rating": 0,
        "threshold": settings.DEFAULT_DIVERGENCE_THRESHOLD,
        "timeline_reliable": True,
        "logged_divergences": [],
    }


def default_master_index(session_id: str | None = None) -> dict[str, Any]:
    return {
        "schema_version": "1.0",
        "setting": "My Scenario",
        "chat_id": session_id or "",
        "current_arc": "1",
        "current_chapter": "1.1",
        "in_world_date": "",
        "divergence_rating": 0,
        "divergence_threshold": settings.DEFAULT_DIVERGENCE_THRESHOLD,
        "timeline_reliable": True,
        "active_npcs": [],
        "last_updated": _now(),
        "notes": "",
    }


def default_world_state() -> dict[str, Any]:
    return {
        "in_world_date": "",
        "arc": "1",
        "chapter": "1.1",
        "faction_status": {},
        "active_situations": [],
        "known_secrets": {},
        "divergence": default_divergence(),
    }


def default_arc_events() -> dict[str, Any]:
    return {"arc_1": {}}


def default_documents(session_id: str | None = None) -> dict[str, Any]:
    return {
        MASTER_INDEX_KEY: default_master_index(session_id),
        WORLD_STATE_KEY: default_world_state(),
        ARC_EVENTS_KEY: default_arc_events(),
    }
