from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Sequence

from .state import TicketStatus


class TicketPriority(str, Enum):
    """Urgency levels chosen by the submitter at creation time."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class IssueType(str, Enum):
    """Categories a ticket can be filed under."""

    TECHNICAL_ISSUE = "technical_issue"
    PAYMENT_PROBLEM = "payment_problem"
    ORDER_INQUIRY = "order_inquiry"
    SERVICE_COMPLAINT = "service_complaint"
    ACCOUNT_ISSUE = "account_issue"
    PRODUCT_QUESTION = "product_question"
    BILLING_INQUIRY = "billing_inquiry"
    FEATURE_REQUEST = "feature_request"
    OTHER = "other"


class HistoryAction(str, Enum):
    """Kinds of lifecycle events recorded in a ticket's history."""

    CREATED = "created"
    ASSIGNED = "assigned"
    STATUS_CHANGED = "status_changed"
    COMMENT_ADDED = "comment_added"
    RESOLVED = "resolved"
    CLOSED = "closed"


class Role(str, Enum):
    """Platform roles known to the ticket engine."""

    FARMER = "farmer"
    SERVICE_PROVIDER = "service_provider"
    CUSTOMER_SERVICE_REP = "customer_service_rep"
    ADMIN = "admin"


STAFF_ROLES: frozenset[Role] = frozenset({Role.CUSTOMER_SERVICE_REP, Role.ADMIN})
SUBMITTER_ROLES: frozenset[Role] = frozenset({Role.FARMER, Role.SERVICE_PROVIDER})

DELETED_COMMENT_PLACEHOLDER = "[comment deleted]"


@dataclass(frozen=True, slots=True)
class Actor:
    """Resolved identity of the caller performing an operation."""

    id: str
    role: Role

    def has_role(self, *roles: Role) -> bool:
        return self.role in roles

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


@dataclass(slots=True)
class Attachment:
    """Opaque reference to a file kept by the attachment store."""

    filename: str
    original_name: str
    content_type: str
    size: int
    uploaded_at: datetime


@dataclass(slots=True)
class Comment:
    """Message left on a ticket by its submitter or by staff."""

    id: str
    author: str
    message: str
    is_internal: bool
    timestamp: datetime
    edited_at: datetime | None = None
    is_deleted: bool = False


@dataclass(frozen=True, slots=True)
class HistoryEvent:
    """Immutable audit record of a single lifecycle action."""

    action: HistoryAction
    description: str
    performed_by: str | None
    timestamp: datetime
    previous_value: str | None = None
    new_value: str | None = None
    notes: str | None = None


@dataclass(slots=True)
class CustomerSatisfaction:
    """Feedback left by the submitter when confirming a resolution."""

    rating: int
    feedback: str
    submitted_at: datetime


@dataclass(slots=True)
class Ticket:
    """Aggregate representing a support ticket with its comments and history."""

    id: str
    ticket_number: str
    title: str
    description: str
    issue_type: IssueType
    priority: TicketPriority
    status: TicketStatus
    submitted_by: str
    created_at: datetime
    last_activity: datetime
    assigned_to: str | None = None
    related_order: str | None = None
    related_service: str | None = None
    attachments: list[Attachment] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    comments: list[Comment] = field(default_factory=list)
    history: list[HistoryEvent] = field(default_factory=list)
    resolution: str | None = None
    resolved_at: datetime | None = None
    closed_at: datetime | None = None
    customer_satisfaction: CustomerSatisfaction | None = None
    version: int = 1

    def is_owned_by(self, actor: Actor) -> bool:
        return self.submitted_by == actor.id

    def find_comment(self, comment_id: str) -> Comment | None:
        for comment in self.comments:
            if comment.id == comment_id:
                return comment
        return None

    def last_event(self, action: HistoryAction) -> HistoryEvent | None:
        for event in reversed(self.history):
            if event.action is action:
                return event
        return None


@dataclass(slots=True)
class TicketFilter:
    """Query filter understood by every ticket repository."""

    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    issue_type: IssueType | None = None
    assigned_to: str | None = None
    submitted_by: str | None = None
    unassigned_only: bool = False

    def matches(self, ticket: Ticket) -> bool:
        if self.status is not None and ticket.status is not self.status:
            return False
        if self.priority is not None and ticket.priority is not self.priority:
            return False
        if self.issue_type is not None and ticket.issue_type is not self.issue_type:
            return False
        if self.assigned_to is not None and ticket.assigned_to != self.assigned_to:
            return False
        if self.submitted_by is not None and ticket.submitted_by != self.submitted_by:
            return False
        if self.unassigned_only and ticket.assigned_to is not None:
            return False
        return True


class SortField(str, Enum):
    CREATED_AT = "created_at"
    LAST_ACTIVITY = "last_activity"
    TICKET_NUMBER = "ticket_number"


@dataclass(slots=True)
class Pagination:
    """Page window and ordering for ticket listings."""

    page: int = 1
    limit: int = 10
    sort_by: SortField = SortField.CREATED_AT
    descending: bool = True

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(slots=True)
class TicketPage:
    """A page of tickets plus the total number of matches."""

    items: Sequence[Ticket]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return -(-self.total // self.limit)


@dataclass(frozen=True, slots=True)
class UserRecord:
    """Minimal view of a platform user as exposed by the identity collaborator."""

    id: str
    role: Role
    is_active: bool = True
    display_name: str | None = None
