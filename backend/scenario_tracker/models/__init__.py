"""
Scenario tracker models.

Usage:
    from scenario_tracker.models import CanonicalDelta, ProposedChange, NarrativeTurn
    from scenario_tracker.models import ChangeKind, DocumentKind, normalize_type
    from scenario_tracker.models import ChatResponse, RescanReport
"""

# --- Enums & utilities ---
from scenario_tracker.models.enums import (
    DocumentKind,
    ChangeKind,
    ArcEventStatus,
    RescanPhase,
    BusyReason,
    normalize_type,
)

# --- Domain models ---
from scenario_tracker.models.domain import (
    CanonicalDelta, delta_is_empty,
    ChangeView, ProposedChange, AcceptAllResult,
    NarrativeTurn, ScenarioConfig, SessionStart, SessionConfigUpdate,
    MessageReceivedEvent, GenerationEndedEvent, RescanRequest,
    ImportRequest, SessionState, SessionSnapshot, SecretUpdate,
    RemoteCreate, SecretsView,
)

# --- Result models ---
from scenario_tracker.models.results import (
    BackboardResult, ChatResponse,
    ExtractionOutcome, RescanReport, RescanAccepted, InjectionsView,
)

__all__ = [
    # Enums
    "DocumentKind", "ChangeKind", "ArcEventStatus", "RescanPhase", "BusyReason", "normalize_type",
    # Domain
    "CanonicalDelta", "delta_is_empty",
    "ChangeView", "ProposedChange", "AcceptAllResult",
    "NarrativeTurn", "ScenarioConfig", "SessionStart", "SessionConfigUpdate",
    "MessageReceivedEvent", "GenerationEndedEvent", "RescanRequest",
    "ImportRequest", "SessionState", "SessionSnapshot", "SecretUpdate",
    "RemoteCreate", "SecretsView",
    # Results
    "BackboardResult",
    "ChatResponse",
    "ExtractionOutcome", "RescanReport", "RescanAccepted", "InjectionsView",
]
