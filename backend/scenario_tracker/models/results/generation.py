"""Result models for the quiet-generation transport."""

from pydantic import BaseModel
from typing import Optional


class BackboardResult(BaseModel):
    """Outcome of one Backboard call; `id` is set by create operations."""
    success: bool
    id: Optional[str] = None
    error: Optional[str] = None


class ChatResponse(BackboardResult):
    """Reply to one extraction prompt, with usage as reported by the provider."""
    response: Optional[str] = None
    status_code: Optional[int] = None
    model_provider: Optional[str] = None
    model_name: Optional[str] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
