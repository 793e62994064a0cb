"""Canonical delta model: everything one extraction cycle detected."""

from typing import Any, Mapping, Optional

from pydantic import BaseModel


class CanonicalDelta(BaseModel):
    """Category-keyed changes; every field is optional."""

    divergence_delta: Optional[int] = None
    in_world_date: Optional[str] = None
    world_state: Optional[dict[str, Any]] = None
    arc_events: Optional[dict[str, str]] = None
    npc_knowledge: Optional[dict[str, dict[str, Any]]] = None
    npc_relationship: Optional[dict[str, str]] = None
    npc_current_state: Optional[dict[str, dict[str, Any]]] = None
    npc_appearance: Optional[dict[str, dict[str, Any]]] = None
    npc_aliases: Optional[dict[str, dict[str, Any]]] = None
    new_npcs: Optional[list[dict[str, Any]]] = None

    def present_fields(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def is_empty(self) -> bool:
        return delta_is_empty(self)


def _value_is_empty(value: Any) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, (int, float)) and value == 0:
        return True
    if isinstance(value, (str, list, tuple, dict, set)) and len(value) == 0:
        return True
    return False


def delta_is_empty(delta: "CanonicalDelta | Mapping[str, Any] | None") -> bool:
    """True when every present field is null, zero, or an empty string/collection."""
    if delta is None:
        return True
    if isinstance(delta, CanonicalDelta):
        fields = delta.present_fields()
    elif isinstance(delta, Mapping):
        fields = dict(delta)
    else:
        return True
    return all(_value_is_empty(value) for value in fields.values())
