"""Per-session mutable state owned by one controller."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from scenario_tracker.config import settings
from scenario_tracker.models import BusyReason, RescanPhase, ScenarioConfig
from scenario_tracker.services.documents import WORLD_STATE_KEY
from scenario_tracker.services.review_queue import ReviewQueue


@dataclass
class SessionContext:
    session_id: str
    remote_id: str | None = None
    documents: dict[str, Any] = field(default_factory=dict)
    scenario: ScenarioConfig = field(
        default_factory=lambda: ScenarioConfig(
            scenario_name=settings.SCENARIO_NAME,
            extraction_prompt=settings.EXTRACTION_PROMPT,
        )
    )
    max_injected_npcs: int = settings.MAX_INJECTED_NPCS
    status: str = "idle"
    busy: BusyReason | None = None
    rescan_phase: RescanPhase = RescanPhase.IDLE
    cancel_requested: bool = False
    last_message_text: str | None = None
    injections: dict[str, str] = field(default_factory=dict)
    queue: ReviewQueue = field(init=False)

    def __post_init__(self) -> None:
        self.queue = ReviewQueue(lambda: self.documents)

    @property
    def has_world_state(self) -> bool:
        return isinstance(self.documents.get(WORLD_STATE_KEY), dict)

    def try_acquire(self, reason: BusyReason) -> bool:
        """Claim the single extraction-family slot; False if something already holds it."""
        if self.busy is not None:
            return False
        self.busy = reason
        return True

    def release(self, reason: BusyReason) -> None:
        if self.busy == reason:
            self.busy = None

    def reset(self) -> None:
        self.documents = {}
        self.queue.clear()
        self.busy = None
        self.rescan_phase = RescanPhase.IDLE
        self.cancel_requested = False
        self.last_message_text = None
        self.injections.clear()
        self.status = "idle"
