"""
Enum definitions for the scenario tracker.
"""
import re
from enum import Enum


class DocumentKind(str, Enum):
    """Kinds of documents held in the entity store."""
    NPC = "npc"
    WORLD_STATE = "world_state"
    ARC_EVENTS = "arc_events"
    MASTER_INDEX = "master_index"
    UNKNOWN = "unknown"


class ChangeKind(str, Enum):
    """Category of a proposed change awaiting review."""
    NPC_KNOWLEDGE = "npc_knowledge"
    NPC_RELATIONSHIP = "npc_relationship"
    NPC_STATE = "npc_state"
    NPC_APPEARANCE = "npc_appearance"
    NPC_ALIASES = "npc_aliases"
    ARC_EVENT = "arc_event"
    WORLD_STATE = "world_state"
    DIVERGENCE = "divergence"
    DATE_ADVANCE = "date_advance"
    NEW_NPC = "new_npc"
    IMPORT = "import"


class ArcEventStatus(str, Enum):
    """Player-facing status of a tracked story event."""
    PENDING = "pending"
    FIRED_CANON = "fired-canon"
    FIRED_ALTERED = "fired-altered"
    SKIPPED = "skipped"


class RescanPhase(str, Enum):
    """States of the batch rescan state machine."""
    IDLE = "idle"
    SCANNING_STRUCTURED = "scanning_structured"
    SCANNING_BATCH = "scanning_batch"
    DONE = "done"


class BusyReason(str, Enum):
    """Which extraction-family operation currently holds the session."""
    EXTRACTION = "extraction"
    RESCAN = "rescan"


_WHITESPACE_RUN = re.compile(r"\s+")


def normalize_type(type_str: str) -> str:
    """
    Normalize a key string for consistency.

    - Lowercase
    - Strip whitespace
    - Replace whitespace runs with underscores

    Examples:
        "Knows Secret Identity" -> "knows_secret_identity"
        " parent  of " -> "parent_of"
    """
    return _WHITESPACE_RUN.sub("_", type_str.strip().lower())
