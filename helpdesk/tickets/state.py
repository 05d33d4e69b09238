from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Mapping

from .errors import InvalidTicketTransitionError, PermissionDeniedError, TicketValidationError

if TYPE_CHECKING:  # pragma: no cover
    from .audit import AuditTrail
    from .models import Actor, Ticket


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    WAITING_CUSTOMER = "waiting_customer"
    RESOLVED = "resolved"
    CLOSED = "closed"


# Statuses in which somebody must be working the ticket.
ASSIGNEE_REQUIRED: frozenset[TicketStatus] = frozenset(
    {TicketStatus.ASSIGNED, TicketStatus.IN_PROGRESS, TicketStatus.WAITING_CUSTOMER}
)


def parse_status(value: TicketStatus | str) -> TicketStatus:
    if isinstance(value, TicketStatus):
        return value
    try:
        return TicketStatus(str(value))
    except ValueError as exc:
        raise TicketValidationError(f"Unknown ticket status: {value!r}") from exc


class TicketStateMachine:
    """Validate and apply ticket lifecycle transitions.

    This is the only component that writes ``Ticket.status``. Every applied
    transition appends a ``status_changed`` history event, followed by a
    ``resolved`` or ``closed`` marker when the ticket enters those states.
    """

    _TRANSITIONS: Mapping[TicketStatus, frozenset[TicketStatus]] = {
        TicketStatus.OPEN: frozenset({TicketStatus.ASSIGNED, TicketStatus.CLOSED}),
        TicketStatus.ASSIGNED: frozenset(
            {TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED, TicketStatus.CLOSED}
        ),
        TicketStatus.IN_PROGRESS: frozenset(
            {TicketStatus.WAITING_CUSTOMER, TicketStatus.RESOLVED, TicketStatus.CLOSED}
        ),
        TicketStatus.WAITING_CUSTOMER: frozenset(
            {TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED, TicketStatus.CLOSED}
        ),
        TicketStatus.RESOLVED: frozenset({TicketStatus.IN_PROGRESS, TicketStatus.CLOSED}),
        TicketStatus.CLOSED: frozenset(),
    }

    def __init__(self, audit: AuditTrail) -> None:
        self._audit = audit

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.OPEN

    @classmethod
    def can_transition(cls, current: TicketStatus, new: TicketStatus) -> bool:
        return new in cls._TRANSITIONS.get(current, frozenset())

    @classmethod
    def allowed_transitions(cls, current: TicketStatus) -> list[TicketStatus]:
        allowed = cls._TRANSITIONS.get(current, frozenset())
        return [status for status in TicketStatus if status in allowed]

    @classmethod
    def assert_transition(cls, current: TicketStatus, new: TicketStatus) -> None:
        if not cls.can_transition(current, new):
            raise InvalidTicketTransitionError(current, new)

    @staticmethod
    def ensure_permitted(ticket: Ticket, new: TicketStatus, actor: Actor) -> None:
        if actor.is_staff:
            return
        # Submitters may only cancel their own ticket before anyone picks it up.
        if (
            ticket.is_owned_by(actor)
            and ticket.status is TicketStatus.OPEN
            and new is TicketStatus.CLOSED
        ):
            return
        raise PermissionDeniedError(
            f"Role {actor.role.value} may not move ticket {ticket.ticket_number} to {new.value}"
        )

    def transition(
        self,
        ticket: Ticket,
        new_status: TicketStatus | str,
        actor: Actor,
        *,
        notes: str | None = None,
    ) -> Ticket:
        """Move ``ticket`` to ``new_status`` on behalf of ``actor``."""

        target = parse_status(new_status)
        self.ensure_permitted(ticket, target, actor)
        self._apply(ticket, target, actor, notes=notes, record=True)
        return ticket

    def confirm_resolution(self, ticket: Ticket, actor: Actor) -> Ticket:
        """Let the submitter close their own ticket once it has been resolved."""

        if not ticket.is_owned_by(actor):
            raise PermissionDeniedError("Only the submitter can confirm a resolution")
        if ticket.status is not TicketStatus.RESOLVED:
            raise InvalidTicketTransitionError(
                ticket.status, TicketStatus.CLOSED, "only resolved tickets can be confirmed"
            )
        self._apply(ticket, TicketStatus.CLOSED, actor, notes="Resolution confirmed by submitter", record=True)
        return ticket

    def enter_assigned(self, ticket: Ticket, actor: Actor) -> None:
        """Move an open ticket to ``assigned`` as part of an assignment.

        The assignment itself is the audit record for this change, so no
        ``status_changed`` event is written here.
        """

        self._apply(ticket, TicketStatus.ASSIGNED, actor, notes=None, record=False)

    def _apply(
        self,
        ticket: Ticket,
        target: TicketStatus,
        actor: Actor,
        *,
        notes: str | None,
        record: bool,
    ) -> None:
        current = ticket.status
        self.assert_transition(current, target)
        if target in ASSIGNEE_REQUIRED and ticket.assigned_to is None:
            raise InvalidTicketTransitionError(current, target, "ticket has no assignee")

        now = self._audit.now()
        ticket.status = target
        ticket.last_activity = now
        if target is TicketStatus.RESOLVED:
            ticket.resolved_at = now
        elif target is TicketStatus.CLOSED:
            ticket.closed_at = now

        if not record:
            return
        self._audit.record_status_change(ticket, current, target, actor, notes=notes, at=now)
        if target in (TicketStatus.RESOLVED, TicketStatus.CLOSED):
            self._audit.record_lifecycle_marker(ticket, target, actor, at=now)
