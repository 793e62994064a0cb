"""Proposed change domain models (review queue items)."""

from datetime import datetime, timezone
from typing import Any, Callable, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from scenario_tracker.models.enums import ChangeKind


class ChangeView(BaseModel):
    """Serializable face of a queued change."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    kind: ChangeKind
    target_key: Optional[str] = None
    description: str
    previous_value: Any = None
    proposed_value: Any = None
    preview_text: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ProposedChange(ChangeView):
    """One reviewable mutation. Accepting runs `commit`; denying discards it."""

    commit: Callable[[], None] = Field(exclude=True, repr=False)

    def view(self) -> ChangeView:
        return ChangeView.model_validate(self.model_dump())


class AcceptAllResult(BaseModel):
    """Outcome of applying every queued change in enqueue order."""

    applied: int = 0
    failed: int = 0
    failed_ids: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
