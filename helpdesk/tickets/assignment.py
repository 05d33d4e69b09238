from __future__ import annotations

from .audit import AuditTrail
from .errors import PermissionDeniedError, RepresentativeNotEligibleError, TicketClosedError
from .models import STAFF_ROLES, Actor, HistoryEvent, Ticket, UserRecord
from .state import TicketStateMachine, TicketStatus


class AssignmentPolicy:
    """Bind a ticket to exactly one representative at a time."""

    def __init__(self, state_machine: TicketStateMachine, audit: AuditTrail) -> None:
        self._state_machine = state_machine
        self._audit = audit

    @staticmethod
    def is_eligible(user: UserRecord) -> bool:
        return user.is_active and user.role in STAFF_ROLES

    def assign(
        self,
        ticket: Ticket,
        representative: UserRecord,
        actor: Actor,
        *,
        notes: str | None = None,
    ) -> HistoryEvent:
        """Assign or reassign ``ticket`` to ``representative``.

        An ``open`` ticket moves to ``assigned``; tickets already being worked
        keep their status. Exactly one ``assigned`` event is appended either way.
        """

        if not actor.is_staff:
            raise PermissionDeniedError(f"Role {actor.role.value} may not assign tickets")
        if ticket.status is TicketStatus.CLOSED:
            raise TicketClosedError(f"Ticket {ticket.ticket_number} is closed and cannot be assigned")
        if not self.is_eligible(representative):
            reason = "is inactive" if not representative.is_active else "is not a support representative"
            raise RepresentativeNotEligibleError(f"User {representative.id} {reason}")

        previous = ticket.assigned_to
        now = self._audit.now()
        ticket.assigned_to = representative.id
        if ticket.status is TicketStatus.OPEN:
            self._state_machine.enter_assigned(ticket, actor)
        ticket.last_activity = now
        return self._audit.record_assignment(ticket, previous, actor, notes=notes, at=now)
