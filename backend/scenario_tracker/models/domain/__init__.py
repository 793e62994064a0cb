"""Domain models: the data structures of the tracked scenario."""

from scenario_tracker.models.domain.delta import CanonicalDelta, delta_is_empty
from scenario_tracker.models.domain.change import ChangeView, ProposedChange, AcceptAllResult
from scenario_tracker.models.domain.session import (
    NarrativeTurn,
    ScenarioConfig,
    SessionStart,
    SessionConfigUpdate,
    MessageReceivedEvent,
    GenerationEndedEvent,
    RescanRequest,
    ImportRequest,
    SessionState,
    SessionSnapshot,
    SecretUpdate,
    RemoteCreate,
    SecretsView,
)

__all__ = [
    "CanonicalDelta", "delta_is_empty",
    "ChangeView", "ProposedChange", "AcceptAllResult",
    "NarrativeTurn", "ScenarioConfig", "SessionStart", "SessionConfigUpdate",
    "MessageReceivedEvent", "GenerationEndedEvent", "RescanRequest",
    "ImportRequest", "SessionState", "SessionSnapshot", "SecretUpdate",
    "RemoteCreate", "SecretsView",
]
