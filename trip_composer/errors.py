"""Error kinds raised by the composition engine."""
from __future__ import annotations

from typing import Optional


class TripComposerError(Exception):
    """Base class for recoverable engine errors."""


class NotFoundError(TripComposerError):
    """An operation referenced an option that does not belong to the trip."""


class InvalidStateError(TripComposerError):
    """A transition was requested that the current selection cannot accept."""


class ExternalFetchError(TripComposerError):
    """A booking-detail fetch failed. Never cached, always retryable."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
