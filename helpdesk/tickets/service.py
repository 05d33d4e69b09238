from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from enum import Enum
from typing import Iterable, Sequence, TypeVar

from .assignment import AssignmentPolicy
from .audit import AuditTrail
from .errors import (
    NotFoundError,
    PermissionDeniedError,
    TicketValidationError,
    VersionConflictError,
)
from .models import (
    Actor,
    Attachment,
    CustomerSatisfaction,
    IssueType,
    Pagination,
    Role,
    Ticket,
    TicketFilter,
    TicketPage,
    TicketPriority,
)
from .repository import TicketRepository
from .state import TicketStateMachine, TicketStatus
from .stats import RepresentativeStatistics, StatisticsAggregator, TicketStatistics
from .users import UserDirectory

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

# Tickets somebody is actively working on cannot be deleted.
UNDELETABLE_STATUSES = frozenset({TicketStatus.ASSIGNED, TicketStatus.IN_PROGRESS})


def parse_enum(enum_cls: type[E], value: E | str, label: str) -> E:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value))
    except ValueError as exc:
        raise TicketValidationError(f"Unknown {label}: {value!r}") from exc


class TicketService:
    """High level orchestration for ticket lifecycle operations.

    Every mutating call loads a private copy of the ticket, lets the state
    machine, assignment policy or audit trail change it, and persists it with
    the version it was loaded at. Nothing is written when any step fails.
    """

    def __init__(
        self,
        repository: TicketRepository,
        users: UserDirectory,
        *,
        audit: AuditTrail | None = None,
        state_machine: TicketStateMachine | None = None,
        assignment: AssignmentPolicy | None = None,
        statistics: StatisticsAggregator | None = None,
        max_title_length: int = 200,
        max_description_length: int = 2000,
        max_attachments: int = 5,
        default_page_size: int = 10,
        max_page_size: int = 100,
    ) -> None:
        self._repository = repository
        self._users = users
        self._audit = audit or AuditTrail()
        self._state_machine = state_machine or TicketStateMachine(self._audit)
        self._assignment = assignment or AssignmentPolicy(self._state_machine, self._audit)
        self._statistics = statistics or StatisticsAggregator()
        self._max_title_length = max_title_length
        self._max_description_length = max_description_length
        self._max_attachments = max_attachments
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size

    @property
    def state_machine(self) -> TicketStateMachine:
        return self._state_machine

    async def create_ticket(
        self,
        actor: Actor,
        *,
        title: str,
        description: str,
        issue_type: IssueType | str,
        priority: TicketPriority | str = TicketPriority.MEDIUM,
        related_order: str | None = None,
        related_service: str | None = None,
        attachments: Sequence[Attachment] = (),
        tags: Iterable[str] = (),
    ) -> Ticket:
        clean_title = self._bounded_text(title, "title", self._max_title_length)
        clean_description = self._bounded_text(description, "description", self._max_description_length)
        parsed_issue = parse_enum(IssueType, issue_type, "issue type")
        parsed_priority = parse_enum(TicketPriority, priority, "priority")
        if len(attachments) > self._max_attachments:
            raise TicketValidationError(f"At most {self._max_attachments} attachments are allowed")

        now = self._audit.now()
        ticket = Ticket(
            id=str(uuid.uuid4()),
            ticket_number=await self._repository.next_ticket_number(),
            title=clean_title,
            description=clean_description,
            issue_type=parsed_issue,
            priority=parsed_priority,
            status=TicketStateMachine.initial_state(),
            submitted_by=actor.id,
            created_at=now,
            last_activity=now,
            related_order=related_order or None,
            related_service=related_service or None,
            attachments=list(attachments),
            tags=[tag.strip() for tag in tags if tag and tag.strip()],
        )
        self._audit.record_created(ticket, actor)
        stored = await self._repository.add(ticket)
        logger.info(
            "Ticket %s created by %s (%s, %s)",
            stored.ticket_number,
            actor.id,
            parsed_issue.value,
            parsed_priority.value,
        )
        return stored

    async def get_ticket(self, ticket_id: str, actor: Actor) -> Ticket:
        ticket = await self._repository.load(ticket_id)
        self._ensure_can_view(ticket, actor)
        return self._view_for(ticket, actor)

    async def list_tickets(
        self,
        actor: Actor,
        ticket_filter: TicketFilter | None = None,
        pagination: Pagination | None = None,
    ) -> TicketPage:
        scoped = replace(ticket_filter) if ticket_filter is not None else TicketFilter()
        if not actor.is_staff:
            scoped.submitted_by = actor.id

        window = pagination or Pagination(limit=self._default_page_size)
        if window.page < 1:
            raise TicketValidationError("page must be at least 1")
        if not 1 <= window.limit <= self._max_page_size:
            raise TicketValidationError(f"limit must be between 1 and {self._max_page_size}")

        tickets, total = await self._repository.query(scoped, window)
        return TicketPage(
            items=[self._view_for(ticket, actor) for ticket in tickets],
            total=total,
            page=window.page,
            limit=window.limit,
        )

    async def transition_status(
        self,
        ticket_id: str,
        new_status: TicketStatus | str,
        actor: Actor,
        *,
        notes: str | None = None,
    ) -> Ticket:
        ticket = await self._repository.load(ticket_id)
        expected_version = ticket.version
        previous = ticket.status
        self._state_machine.transition(ticket, new_status, actor, notes=notes)
        saved = await self._save(ticket, expected_version)
        logger.info(
            "Ticket %s moved %s -> %s by %s",
            saved.ticket_number,
            previous.value,
            saved.status.value,
            actor.id,
        )
        return self._view_for(saved, actor)

    async def assign_ticket(
        self,
        ticket_id: str,
        representative_id: str,
        actor: Actor,
        *,
        notes: str | None = None,
    ) -> Ticket:
        if not actor.is_staff:
            raise PermissionDeniedError(f"Role {actor.role.value} may not assign tickets")

        ticket = await self._repository.load(ticket_id)
        expected_version = ticket.version
        representative = await self._users.get_user(representative_id)
        if representative is None:
            raise NotFoundError(f"User {representative_id} not found")

        event = self._assignment.assign(ticket, representative, actor, notes=notes)
        saved = await self._save(ticket, expected_version)
        logger.info(
            "Ticket %s assigned to %s by %s (previous: %s)",
            saved.ticket_number,
            representative.id,
            actor.id,
            event.previous_value,
        )
        return saved

    async def add_comment(
        self,
        ticket_id: str,
        actor: Actor,
        message: str,
        *,
        is_internal: bool = False,
    ) -> Ticket:
        ticket = await self._repository.load(ticket_id)
        self._ensure_can_view(ticket, actor)
        expected_version = ticket.version
        comment = self._audit.add_comment(ticket, actor, message, is_internal=is_internal)
        saved = await self._save(ticket, expected_version)
        logger.info(
            "Comment %s added to ticket %s by %s (internal=%s)",
            comment.id,
            saved.ticket_number,
            actor.id,
            is_internal,
        )
        return self._view_for(saved, actor)

    async def edit_comment(self, ticket_id: str, comment_id: str, actor: Actor, message: str) -> Ticket:
        ticket = await self._repository.load(ticket_id)
        self._ensure_can_view(ticket, actor)
        expected_version = ticket.version
        self._audit.edit_comment(ticket, comment_id, actor, message)
        saved = await self._save(ticket, expected_version)
        return self._view_for(saved, actor)

    async def delete_comment(self, ticket_id: str, comment_id: str, actor: Actor) -> Ticket:
        ticket = await self._repository.load(ticket_id)
        self._ensure_can_view(ticket, actor)
        expected_version = ticket.version
        existing = ticket.find_comment(comment_id)
        already_deleted = existing is not None and existing.is_deleted
        self._audit.delete_comment(ticket, comment_id, actor)
        if already_deleted:
            return self._view_for(ticket, actor)
        saved = await self._save(ticket, expected_version)
        logger.info("Comment %s on ticket %s deleted by %s", comment_id, saved.ticket_number, actor.id)
        return self._view_for(saved, actor)

    async def close_ticket(
        self,
        ticket_id: str,
        actor: Actor,
        *,
        resolution: str | None = None,
        rating: int | None = None,
        feedback: str | None = None,
    ) -> Ticket:
        """Close a ticket.

        Staff close with an optional resolution text. The submitter can cancel
        their own open ticket, or confirm a resolved one while leaving a
        satisfaction rating.
        """

        ticket = await self._repository.load(ticket_id)
        self._ensure_can_view(ticket, actor)
        expected_version = ticket.version

        if actor.is_staff:
            if resolution and resolution.strip():
                ticket.resolution = resolution.strip()
            self._state_machine.transition(ticket, TicketStatus.CLOSED, actor, notes=ticket.resolution)
        elif ticket.status is TicketStatus.RESOLVED:
            if rating is not None:
                if not 1 <= rating <= 5:
                    raise TicketValidationError("rating must be between 1 and 5")
                ticket.customer_satisfaction = CustomerSatisfaction(
                    rating=rating,
                    feedback=(feedback or "").strip(),
                    submitted_at=self._audit.now(),
                )
            self._state_machine.confirm_resolution(ticket, actor)
        else:
            self._state_machine.transition(ticket, TicketStatus.CLOSED, actor)

        saved = await self._save(ticket, expected_version)
        logger.info("Ticket %s closed by %s", saved.ticket_number, actor.id)
        return self._view_for(saved, actor)

    async def delete_ticket(self, ticket_id: str, actor: Actor) -> None:
        ticket = await self._repository.load(ticket_id)
        if not (actor.is_staff or ticket.is_owned_by(actor)):
            raise PermissionDeniedError("Insufficient permissions to delete this ticket")
        if ticket.status in UNDELETABLE_STATUSES:
            raise TicketValidationError("Cannot delete ticket that is currently being worked on")
        await self._repository.delete(ticket.id, ticket.version)
        logger.info("Ticket %s deleted by %s", ticket.ticket_number, actor.id)

    async def get_statistics(
        self, actor: Actor, ticket_filter: TicketFilter | None = None
    ) -> TicketStatistics:
        if not actor.is_admin:
            raise PermissionDeniedError("Only administrators can view global ticket statistics")
        tickets, _ = await self._repository.query(ticket_filter or TicketFilter())
        return self._statistics.aggregate(tickets, now=self._audit.now())

    async def get_representative_statistics(
        self, actor: Actor, representative_id: str | None = None
    ) -> RepresentativeStatistics:
        target = representative_id or actor.id
        if not actor.is_staff:
            raise PermissionDeniedError("Only staff can view representative statistics")
        if actor.has_role(Role.CUSTOMER_SERVICE_REP) and target != actor.id:
            raise PermissionDeniedError("Representatives can only view their own statistics")
        tickets, _ = await self._repository.query(TicketFilter(assigned_to=target))
        return self._statistics.aggregate_for_representative(tickets, target, now=self._audit.now())

    async def _save(self, ticket: Ticket, expected_version: int) -> Ticket:
        try:
            return await self._repository.save(ticket, expected_version)
        except VersionConflictError:
            logger.warning(
                "Version conflict on ticket %s (expected version %s)",
                ticket.ticket_number,
                expected_version,
            )
            raise

    @staticmethod
    def _ensure_can_view(ticket: Ticket, actor: Actor) -> None:
        if actor.is_staff or ticket.is_owned_by(actor):
            return
        raise PermissionDeniedError("Access denied")

    def _view_for(self, ticket: Ticket, actor: Actor) -> Ticket:
        if actor.is_staff:
            return ticket
        return replace(
            ticket,
            comments=self._audit.visible_comments(ticket, actor),
            history=self._audit.visible_history(ticket, actor),
        )

    @staticmethod
    def _bounded_text(value: str, label: str, limit: int) -> str:
        text = (value or "").strip()
        if not text:
            raise TicketValidationError(f"{label} must not be empty")
        if len(text) > limit:
            raise TicketValidationError(f"{label} exceeds {limit} characters")
        return text
