"""Error taxonomy shared by every service.

Services raise these; the transport layer decides how they reach the caller.
"""


class RoyaleError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(RoyaleError):
    """Malformed input or an operation the current state does not allow."""


class ConflictError(RoyaleError):
    """Concurrent modification or duplicate creation. Retrying will not help."""


class NotFoundError(RoyaleError):
    """A referenced tournament, phase, registration, match or snapshot does not exist."""


class StaleComputationError(RoyaleError):
    """A phase was about to be finalized from a stale standings snapshot.

    Internal: the progression controller catches it, recalculates and retries.
    """
