"""Derived ticket rollups for the admin and representative dashboards.

Nothing here is authoritative: every figure is recomputed from the tickets it
is given, so calling the aggregator twice over the same tickets yields the
same result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Iterable
from zoneinfo import ZoneInfo

from .models import HistoryAction, IssueType, Ticket, TicketPriority
from .state import TicketStatus


def _zero_counts(members: Iterable[TicketStatus | TicketPriority | IssueType]) -> dict[str, int]:
    return {member.value: 0 for member in members}


@dataclass(slots=True)
class TicketStatistics:
    total: int = 0
    by_status: dict[str, int] = field(default_factory=lambda: _zero_counts(TicketStatus))
    by_priority: dict[str, int] = field(default_factory=lambda: _zero_counts(TicketPriority))
    by_issue_type: dict[str, int] = field(default_factory=lambda: _zero_counts(IssueType))
    unassigned_tickets: int = 0
    resolved_today: int = 0


@dataclass(slots=True)
class RepresentativeStatistics:
    representative_id: str
    total_assigned: int = 0
    active: int = 0
    resolved: int = 0
    resolved_today: int = 0
    customers_served: int = 0
    by_status: dict[str, int] = field(default_factory=lambda: _zero_counts(TicketStatus))


class StatisticsAggregator:
    """Compute dashboard counters from a collection of tickets."""

    def __init__(self, timezone: tzinfo | str = "UTC") -> None:
        self._tz = ZoneInfo(timezone) if isinstance(timezone, str) else timezone

    def aggregate(self, tickets: Iterable[Ticket], *, now: datetime) -> TicketStatistics:
        stats = TicketStatistics()
        for ticket in tickets:
            stats.total += 1
            stats.by_status[ticket.status.value] += 1
            stats.by_priority[ticket.priority.value] += 1
            stats.by_issue_type[ticket.issue_type.value] += 1
            if ticket.assigned_to is None and ticket.status is not TicketStatus.CLOSED:
                stats.unassigned_tickets += 1
            if self.resolved_on_day_of(ticket, now):
                stats.resolved_today += 1
        return stats

    def aggregate_for_representative(
        self, tickets: Iterable[Ticket], representative_id: str, *, now: datetime
    ) -> RepresentativeStatistics:
        stats = RepresentativeStatistics(representative_id=representative_id)
        customers: set[str] = set()
        for ticket in tickets:
            if ticket.assigned_to != representative_id:
                continue
            stats.total_assigned += 1
            stats.by_status[ticket.status.value] += 1
            customers.add(ticket.submitted_by)
            if ticket.status in (TicketStatus.RESOLVED, TicketStatus.CLOSED):
                stats.resolved += 1
            else:
                stats.active += 1
            if self.resolved_on_day_of(ticket, now):
                stats.resolved_today += 1
        stats.customers_served = len(customers)
        return stats

    def resolved_on_day_of(self, ticket: Ticket, now: datetime) -> bool:
        """True when the ticket's latest ``resolved`` event falls on ``now``'s local date."""

        event = ticket.last_event(HistoryAction.RESOLVED)
        if event is None:
            return False
        return self._local_date(event.timestamp) == self._local_date(now)

    def _local_date(self, moment: datetime):
        return moment.astimezone(self._tz).date()
