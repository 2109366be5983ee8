"""Domain exceptions for the meeting intelligence subsystems."""

from __future__ import annotations


class PlatformError(Exception):
    """A meeting/chat platform call failed after retries."""


class TransientSourceError(Exception):
    """Transcript source failed in a way that is expected to clear up."""


class RateLimitedError(TransientSourceError):
    """Transcript source throttled the caller (HTTP 429)."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class SourceNotAvailableError(Exception):
    """The transcript does not exist yet (or any more) for the meeting."""


class SummarizationError(Exception):
    """The LLM call failed or produced an unusable reply."""


class SummaryParseError(SummarizationError):
    """The LLM reply held no valid JSON object or lacked required fields."""


class StorageUnavailableError(Exception):
    """The durable summary backend could not be reached."""


class SummaryNotFoundError(Exception):
    """No stored summary has the requested id."""


class AccessDeniedError(Exception):
    """The requester may not read the requested summary or meeting."""

    def __init__(self, requester_id: str, resource: str) -> None:
        super().__init__(f"{requester_id} may not access {resource}")
        self.requester_id = requester_id
        self.resource = resource


class AccessCheckUnavailableError(Exception):
    """Meeting membership could not be verified against the platform."""


class MeetingStartError(Exception):
    """A meeting could not be brought under management."""
