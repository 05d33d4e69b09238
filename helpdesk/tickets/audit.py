from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Callable

from .errors import NotFoundError, PermissionDeniedError, TicketClosedError, TicketValidationError
from .models import (
    DELETED_COMMENT_PLACEHOLDER,
    Actor,
    Comment,
    HistoryAction,
    HistoryEvent,
    Ticket,
)
from .state import TicketStatus

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


def audit_reference(comment_id: str) -> str:
    """Short handle for a comment, embedded in history instead of the message."""

    return f"c-{comment_id.replace('-', '')[:8]}"


class AuditTrail:
    """Append-only comment and history log for a ticket.

    History events are only ever appended. Comments can be edited or
    tombstoned, but the ``comment_added`` event that announced them stays as
    it was written.
    """

    def __init__(self, *, clock: Clock | None = None, max_comment_length: int = 2000) -> None:
        self._clock = clock or utcnow
        self._max_comment_length = max_comment_length

    def now(self) -> datetime:
        return self._clock()

    def record_created(self, ticket: Ticket, actor: Actor) -> HistoryEvent:
        return self._append(
            ticket,
            HistoryEvent(
                action=HistoryAction.CREATED,
                description="Ticket created",
                performed_by=actor.id,
                timestamp=ticket.created_at,
                new_value=ticket.status.value,
            ),
        )

    def record_status_change(
        self,
        ticket: Ticket,
        previous: TicketStatus,
        new: TicketStatus,
        actor: Actor,
        *,
        notes: str | None = None,
        at: datetime | None = None,
    ) -> HistoryEvent:
        return self._append(
            ticket,
            HistoryEvent(
                action=HistoryAction.STATUS_CHANGED,
                description=f"Status changed from {previous.value} to {new.value}",
                performed_by=actor.id,
                timestamp=at or self.now(),
                previous_value=previous.value,
                new_value=new.value,
                notes=notes or None,
            ),
        )

    def record_lifecycle_marker(
        self, ticket: Ticket, status: TicketStatus, actor: Actor, *, at: datetime | None = None
    ) -> HistoryEvent:
        if status is TicketStatus.RESOLVED:
            action, description = HistoryAction.RESOLVED, "Ticket resolved"
        elif status is TicketStatus.CLOSED:
            action, description = HistoryAction.CLOSED, "Ticket closed"
        else:
            raise ValueError(f"No lifecycle marker for status {status.value}")
        return self._append(
            ticket,
            HistoryEvent(
                action=action,
                description=description,
                performed_by=actor.id,
                timestamp=at or self.now(),
                new_value=status.value,
            ),
        )

    def record_assignment(
        self,
        ticket: Ticket,
        previous_assignee: str | None,
        actor: Actor,
        *,
        notes: str | None = None,
        at: datetime | None = None,
    ) -> HistoryEvent:
        description = "Ticket reassigned" if previous_assignee else "Ticket assigned to staff member"
        return self._append(
            ticket,
            HistoryEvent(
                action=HistoryAction.ASSIGNED,
                description=description,
                performed_by=actor.id,
                timestamp=at or self.now(),
                previous_value=previous_assignee,
                new_value=ticket.assigned_to,
                notes=notes or None,
            ),
        )

    def add_comment(self, ticket: Ticket, author: Actor, message: str, *, is_internal: bool = False) -> Comment:
        if ticket.status is TicketStatus.CLOSED:
            raise TicketClosedError(f"Ticket {ticket.ticket_number} is closed; comments are disabled")
        if is_internal and not author.is_staff:
            raise PermissionDeniedError("Only staff can add internal comments")
        text = self._validate_message(message)

        now = self.now()
        comment = Comment(
            id=str(uuid.uuid4()),
            author=author.id,
            message=text,
            is_internal=is_internal,
            timestamp=now,
        )
        ticket.comments.append(comment)
        label = "Internal comment added" if is_internal else "Comment added"
        self._append(
            ticket,
            HistoryEvent(
                action=HistoryAction.COMMENT_ADDED,
                description=f"{label} (ref {audit_reference(comment.id)})",
                performed_by=author.id,
                timestamp=now,
                new_value=comment.id,
            ),
        )
        ticket.last_activity = now
        return comment

    def edit_comment(self, ticket: Ticket, comment_id: str, actor: Actor, message: str) -> Comment:
        if ticket.status is TicketStatus.CLOSED:
            raise TicketClosedError(f"Ticket {ticket.ticket_number} is closed; comments are disabled")
        comment = self._owned_comment(ticket, comment_id, actor)
        if comment.is_deleted:
            raise TicketValidationError("Deleted comments cannot be edited")

        now = self.now()
        comment.message = self._validate_message(message)
        comment.edited_at = now
        ticket.last_activity = now
        return comment

    def delete_comment(self, ticket: Ticket, comment_id: str, actor: Actor) -> Comment:
        comment = self._owned_comment(ticket, comment_id, actor)
        if comment.is_deleted:
            return comment

        now = self.now()
        comment.message = DELETED_COMMENT_PLACEHOLDER
        comment.is_deleted = True
        comment.edited_at = now
        ticket.last_activity = now
        return comment

    @staticmethod
    def visible_comments(ticket: Ticket, viewer: Actor) -> list[Comment]:
        if viewer.is_staff:
            return list(ticket.comments)
        return [comment for comment in ticket.comments if not comment.is_internal]

    @staticmethod
    def visible_history(ticket: Ticket, viewer: Actor) -> list[HistoryEvent]:
        """History as ``viewer`` may see it; internal comment events are staff only."""

        if viewer.is_staff:
            return list(ticket.history)
        internal_ids = {comment.id for comment in ticket.comments if comment.is_internal}
        return [
            event
            for event in ticket.history
            if not (event.action is HistoryAction.COMMENT_ADDED and event.new_value in internal_ids)
        ]

    def _validate_message(self, message: str) -> str:
        text = (message or "").strip()
        if not text:
            raise TicketValidationError("Comment message must not be empty")
        if len(text) > self._max_comment_length:
            raise TicketValidationError(
                f"Comment message exceeds {self._max_comment_length} characters"
            )
        return text

    @staticmethod
    def _owned_comment(ticket: Ticket, comment_id: str, actor: Actor) -> Comment:
        comment = ticket.find_comment(comment_id)
        if comment is None:
            raise NotFoundError(f"Comment {comment_id} not found on ticket {ticket.ticket_number}")
        if comment.author != actor.id and not actor.is_admin:
            raise PermissionDeniedError("Only the author or an administrator can change this comment")
        return comment

    @staticmethod
    def _append(ticket: Ticket, event: HistoryEvent) -> HistoryEvent:
        ticket.history.append(event)
        return event
