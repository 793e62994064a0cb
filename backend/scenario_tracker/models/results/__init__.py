"""Result models for service operations."""

from scenario_tracker.models.results.generation import BackboardResult, ChatResponse
from scenario_tracker.models.results.extraction import (
    ExtractionOutcome, RescanReport, RescanAccepted, InjectionsView,
)

__all__ = [
    "BackboardResult", "ChatResponse",
    "ExtractionOutcome", "RescanReport", "RescanAccepted", "InjectionsView",
]
