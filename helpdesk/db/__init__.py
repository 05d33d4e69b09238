"""Database models and utilities."""

from .models import TicketCommentTable, TicketHistoryTable, TicketSequenceTable, TicketTable, UserTable

__all__ = [
    "TicketCommentTable",
    "TicketHistoryTable",
    "TicketSequenceTable",
    "TicketTable",
    "UserTable",
]
