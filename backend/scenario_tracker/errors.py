"""Exception types shared by the extraction pipeline and the remote store."""

from __future__ import annotations

RATE_LIMIT_TOKENS: tuple[str, ...] = (
    "429",
    "too many",
    "rate limit",
    "rate-limit",
    "ratelimit",
    "throttl",
)


class TrackerError(Exception):
    """Base class for tracker failures."""


class CapabilityUnavailable(TrackerError):
    """No quiet generation capability is registered with the host."""


class GenerationError(TrackerError):
    """The generation capability answered with a failure."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteStoreError(TrackerError):
    """A fetch/patch/create call against the remote document store failed."""

    def __init__(self, operation: str, message: str, status_code: int | None = None, body: str = ""):
        self.operation = operation
        self.status_code = status_code
        self.body = (body or "")[:200]
        detail = f"{operation} failed"
        if status_code is not None:
            detail += f" ({status_code})"
        detail += f": {message}"
        if self.body:
            detail += f" {self.body}"
        super().__init__(detail)


class CommitError(TrackerError):
    """A proposed change's commit action raised; the change stays queued."""

    def __init__(self, change_id: str, cause: Exception):
        super().__init__(f"apply error: {cause}")
        self.change_id = change_id
        self.cause = cause


def is_rate_limit_error(error: BaseException) -> bool:
    if getattr(error, "status_code", None) == 429:
        return True
    message = str(error).lower()
    return any(token in message for token in RATE_LIMIT_TOKENS)
