"""Error taxonomy for matchmaking operations.

Every error carries the HTTP status the API layer reports for it, so routers
can translate without knowing which operation raised.
"""

from __future__ import annotations


class MatchmakingError(Exception):
    """Base class for client-visible matchmaking failures."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(MatchmakingError):
    """Malformed or missing input (e.g. no game preference)."""

    status_code = 400


class NotFoundError(MatchmakingError):
    """Queue entry, session or room does not exist or is not the caller's."""

    status_code = 404


class ConflictError(MatchmakingError):
    """An invariant would be violated (e.g. a second open session)."""

    status_code = 409


class DeliveryError(Exception):
    """EventGateway failed to publish. Logged, never reported to callers."""
