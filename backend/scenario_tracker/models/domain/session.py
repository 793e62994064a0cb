"""Session-level request and state models."""

from datetime import datetime

from pydantic import BaseModel, Field
from typing import Any, Optional

from scenario_tracker.models.enums import BusyReason, RescanPhase


class NarrativeTurn(BaseModel):
    """One chat turn as delivered by the host."""
    text: str = ""
    is_user: bool = False


class ScenarioConfig(BaseModel):
    """Scenario label and extraction preamble for one session."""
    scenario_name: str = ""
    extraction_prompt: str = ""


class SessionStart(BaseModel):
    """Payload for starting (or switching to) a session."""
    remote_id: Optional[str] = None


class SessionConfigUpdate(BaseModel):
    """Runtime overrides for a session."""
    scenario_name: Optional[str] = None
    extraction_prompt: Optional[str] = None
    max_injected_npcs: Optional[int] = Field(default=None, ge=1, le=30)
    remote_id: Optional[str] = None


class MessageReceivedEvent(BaseModel):
    """The host received a new narrative turn."""
    turns: list[NarrativeTurn] = Field(default_factory=list)
    is_continuation: bool = False


class GenerationEndedEvent(BaseModel):
    """The host finished generating; recent turns feed NPC relevance scoring."""
    turns: list[NarrativeTurn] = Field(default_factory=list)


class RescanRequest(BaseModel):
    """Request to rescan a window of historical turns."""
    turns: list[NarrativeTurn] = Field(default_factory=list)
    count: Optional[int] = Field(default=None, ge=1, le=50)
    structured_only: bool = False


class ImportRequest(BaseModel):
    """Documents to import, keyed by their original file name."""
    files: dict[str, Any] = Field(default_factory=dict)


class SessionState(BaseModel):
    """Snapshot of one session for the panel."""
    session_id: str
    remote_id: Optional[str] = None
    status: str = "idle"
    busy: Optional[BusyReason] = None
    rescan_phase: RescanPhase = RescanPhase.IDLE
    document_keys: list[str] = Field(default_factory=list)
    npc_count: int = 0
    pending_changes: int = 0
    summary: list[str] = Field(default_factory=list)


class SessionSnapshot(BaseModel):
    """Locally cached copy of a session's documents."""
    session_id: str
    remote_id: Optional[str] = None
    documents: dict[str, Any] = Field(default_factory=dict)
    saved_at: datetime


class SecretUpdate(BaseModel):
    """Set a known secret to a given state."""
    value: bool = True


class RemoteCreate(BaseModel):
    """Create a fresh remote document set for a session."""
    description: Optional[str] = None


class SecretsView(BaseModel):
    """Secrets tracked in the world state (key → known)."""
    known_secrets: dict[str, Any] = Field(default_factory=dict)
