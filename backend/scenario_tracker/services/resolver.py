"""
Free-text character name → NPC document key.

Matching is a heuristic: exact slug first, then a bidirectional,
case-insensitive substring test against display name, alias and alternate
names. The first NPC in store iteration order wins, with no ranking, so
short or shared names can attach an update to the wrong character and an
unusual spelling can miss entirely.
"""

from __future__ import annotations

from typing import Any

from scenario_tracker.logging import get_logger
from scenario_tracker.services.documents import iter_npc_documents, npc_key, npc_names

logger = get_logger("services.resolver")


def resolve_npc_key(name: Any, documents: dict[str, Any]) -> str | None:
    if not isinstance(name, str):
        return None
    candidate = name.strip().lower()
    if not candidate:
        return None

    exact_key = npc_key(candidate)
    if isinstance(documents.get(exact_key), dict):
        return exact_key

    for key, document in iter_npc_documents(documents):
        for known in npc_names(document):
            known_lower = known.strip().lower()
            if candidate in known_lower or known_lower in candidate:
                return key

    logger.debug("No NPC matches name %r", name)
    return None


def mentions_known_npc(text: str, documents: dict[str, Any]) -> bool:
    """True when the text names at least one known NPC by any of its names."""
    lowered = (text or "").lower()
    if not lowered:
        return False
    for _, document in iter_npc_documents(documents):
        if any(known.lower() in lowered for known in npc_names(document)):
            return True
    return False
