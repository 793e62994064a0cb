"""Extraction caller: prompt → quiet generation → canonical delta."""

from __future__ import annotations

from typing import Any, Protocol

from scenario_tracker.errors import CapabilityUnavailable
from scenario_tracker.logging import get_logger
from scenario_tracker.models import CanonicalDelta
from scenario_tracker.services.delta import normalize_delta, parse_delta
from scenario_tracker.services.documents import (
    ARC_EVENTS_KEY,
    MASTER_INDEX_KEY,
    WORLD_STATE_KEY,
    iter_npc_documents,
)
from scenario_tracker.services.prompts import build_extraction_prompt

logger = get_logger("services.extraction")


class QuietGeneration(Protocol):
    """Side-channel text generation that never appears in the visible chat."""

    @property
    def is_available(self) -> bool: ...

    async def quiet_generate(self, prompt: str) -> str: ...


def build_state_context(documents: dict[str, Any]) -> dict[str, Any]:
    return {
        "world_state": documents.get(WORLD_STATE_KEY) or {},
        "master_index": documents.get(MASTER_INDEX_KEY) or {},
        "arc_events": documents.get(ARC_EVENTS_KEY) or {},
        "active_npcs": [
            {
                "file": key,
                "display_name": npc.get("display_name"),
                "alias": npc.get("alias"),
                "current_state": npc.get("current_state"),
                "knowledge": npc.get("knowledge"),
            }
            for key, npc in iter_npc_documents(documents)
        ],
    }


class ExtractionCaller:
    """Delegates prompts to whatever generation capability is registered at call time."""

    def __init__(self, generator: QuietGeneration | None = None):
        self.generator = generator

    @property
    def is_available(self) -> bool:
        return self.generator is not None and bool(self.generator.is_available)

    async def call(self, prompt: str) -> str:
        if not self.is_available:
            raise CapabilityUnavailable("quiet generation not available")
        return await self.generator.quiet_generate(prompt)

    async def extract(
        self,
        narrative_text: str,
        documents: dict[str, Any],
        scenario_context: str = "",
    ) -> CanonicalDelta | None:
        """
        Run one extraction round trip. Returns None when the reply held no usable object.

        Errors from the capability propagate to the caller unchanged.
        """
        prompt = build_extraction_prompt(narrative_text, build_state_context(documents), scenario_context)
        raw = await self.call(prompt)
        parsed = parse_delta(raw)
        if parsed is None:
            return None
        return normalize_delta(parsed, documents)
