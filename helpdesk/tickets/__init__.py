"""Support ticket lifecycle, assignment, audit trail and statistics."""

from .assignment import AssignmentPolicy
from .audit import AuditTrail
from .errors import (
    InvalidTicketTransitionError,
    NotFoundError,
    PermissionDeniedError,
    RepresentativeNotEligibleError,
    TicketClosedError,
    TicketNotFoundError,
    TicketServiceError,
    TicketValidationError,
    VersionConflictError,
)
from .models import (
    Actor,
    Attachment,
    Comment,
    HistoryAction,
    HistoryEvent,
    IssueType,
    Pagination,
    Role,
    SortField,
    Ticket,
    TicketFilter,
    TicketPage,
    TicketPriority,
    UserRecord,
)
from .repository import InMemoryTicketRepository, SQLTicketRepository, TicketRepository
from .service import TicketService
from .state import TicketStateMachine, TicketStatus
from .stats import RepresentativeStatistics, StatisticsAggregator, TicketStatistics
from .users import InMemoryUserDirectory, SQLUserDirectory, UserDirectory

__all__ = [
    "Actor",
    "AssignmentPolicy",
    "Attachment",
    "AuditTrail",
    "Comment",
    "HistoryAction",
    "HistoryEvent",
    "InMemoryTicketRepository",
    "InMemoryUserDirectory",
    "InvalidTicketTransitionError",
    "IssueType",
    "NotFoundError",
    "Pagination",
    "PermissionDeniedError",
    "RepresentativeNotEligibleError",
    "RepresentativeStatistics",
    "Role",
    "SQLTicketRepository",
    "SQLUserDirectory",
    "SortField",
    "StatisticsAggregator",
    "Ticket",
    "TicketClosedError",
    "TicketFilter",
    "TicketNotFoundError",
    "TicketPage",
    "TicketPriority",
    "TicketRepository",
    "TicketService",
    "TicketServiceError",
    "TicketStateMachine",
    "TicketStatistics",
    "TicketStatus",
    "TicketValidationError",
    "UserDirectory",
    "UserRecord",
    "VersionConflictError",
]
