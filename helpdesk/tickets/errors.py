from __future__ import annotations


class TicketServiceError(RuntimeError):
    """Base error for ticket service issues."""

    kind = "ticket_error"
    status_code = 400
    retryable = False


class NotFoundError(TicketServiceError):
    """Raised when a ticket, comment or user could not be located."""

    kind = "not_found"
    status_code = 404


class TicketNotFoundError(NotFoundError):
    """Raised when an operation targets a non-existent ticket."""


class InvalidTicketTransitionError(TicketServiceError):
    """Raised when a status change does not follow the lifecycle."""

    kind = "invalid_transition"
    status_code = 409

    def __init__(self, current: object, requested: object, reason: str | None = None) -> None:
        self.current = current
        self.requested = requested
        message = f"Cannot transition ticket from {_label(current)} to {_label(requested)}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class TicketClosedError(TicketServiceError):
    """Raised when mutating a ticket that has already been closed."""

    kind = "ticket_closed"
    status_code = 409


class RepresentativeNotEligibleError(TicketServiceError):
    """Raised when the assignment target cannot work on tickets."""

    kind = "representative_not_eligible"
    status_code = 400


class PermissionDeniedError(TicketServiceError):
    """Raised when the actor's role does not allow the operation."""

    kind = "permission_denied"
    status_code = 403


class TicketValidationError(TicketServiceError):
    """Raised for malformed input such as empty messages or unknown enum values."""

    kind = "validation_error"
    status_code = 422


class VersionConflictError(TicketServiceError):
    """Raised when a save is attempted against a stale ticket version.

    This is the only error a caller may recover from, by reloading the ticket
    and reapplying its change.
    """

    kind = "version_conflict"
    status_code = 409
    retryable = True

    def __init__(self, ticket_id: str, expected_version: int, actual_version: int | None = None) -> None:
        self.ticket_id = ticket_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        message = f"Ticket {ticket_id} was modified concurrently (expected version {expected_version}"
        if actual_version is not None:
            message += f", found {actual_version}"
        super().__init__(message + ")")


def _label(value: object) -> str:
    return str(getattr(value, "value", value))
