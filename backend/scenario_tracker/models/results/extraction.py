"""Result models for extraction and rescan operations."""

from pydantic import BaseModel
from typing import Optional


class ExtractionOutcome(BaseModel):
    """Result of handling one newly received narrative turn."""

    source: str = "none"
    proposed: int = 0
    skipped_reason: Optional[str] = None
    error: Optional[str] = None


class RescanReport(BaseModel):
    """Final summary of a batch rescan."""

    scanned: int = 0
    structured_hits: int = 0
    orphans: int = 0
    batch_attempted: bool = False
    batch_attempts: int = 0
    batch_found_changes: bool = False
    batch_error: Optional[str] = None
    cancelled: bool = False
    message: str = ""


class RescanAccepted(BaseModel):
    """Reply to a background rescan request."""

    started: bool
    status: str


class InjectionsView(BaseModel):
    """Current prompt-injection text per slot."""

    slots: dict[str, str] = {}
