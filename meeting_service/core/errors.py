"""Domain error taxonomy.

Every failure the engine reports to its callers is one of these. The
transport layer maps them to HTTP status codes in ``meeting_service.main``.
"""


class MeetingServiceError(Exception):
    """Base class for all domain errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MeetingServiceError):
    """Malformed or contradictory input."""

    status_code = 400


class NotFoundError(MeetingServiceError):
    """An entity or occurrence id does not resolve."""

    status_code = 404


class ConflictError(MeetingServiceError):
    """Optimistic-concurrency mismatch or uniqueness violation.

    Attributes:
        precondition_failed: True when the conflict comes from a stale
            version token rather than a uniqueness constraint.
    """

    status_code = 409

    def __init__(self, message: str, precondition_failed: bool = False):
        super().__init__(message)
        self.precondition_failed = precondition_failed


class UnauthorizedError(MeetingServiceError):
    """Webhook signature or timestamp could not be verified."""

    status_code = 401


class TransientError(MeetingServiceError):
    """A dependent service failed; the caller may retry."""

    status_code = 503
