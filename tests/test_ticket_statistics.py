from datetime import datetime, timedelta, timezone

from helpdesk.tickets.models import HistoryAction, HistoryEvent, IssueType, TicketPriority
from helpdesk.tickets.state import TicketStatus
from helpdesk.tickets.stats import StatisticsAggregator

NOW = datetime(2024, 3, 15, 14, 0, tzinfo=timezone.utc)


def _resolved_event(at: datetime) -> HistoryEvent:
    return HistoryEvent(
        action=HistoryAction.RESOLVED,
        description="Ticket resolved",
        performed_by="R123",
        timestamp=at,
        new_value="resolved",
    )


def test_aggregate_of_nothing_is_zero_filled():
    stats = StatisticsAggregator().aggregate([], now=NOW)

    assert stats.total == 0
    assert stats.by_status == {status.value: 0 for status in TicketStatus}
    assert stats.by_priority == {priority.value: 0 for priority in TicketPriority}
    assert stats.by_issue_type == {issue.value: 0 for issue in IssueType}
    assert stats.unassigned_tickets == 0
    assert stats.resolved_today == 0


def test_aggregate_counts_tickets(make_ticket):
    tickets = [
        make_ticket(priority=TicketPriority.URGENT, issue_type=IssueType.PAYMENT_PROBLEM),
        make_ticket(status=TicketStatus.IN_PROGRESS, assigned_to="R123"),
        make_ticket(
            status=TicketStatus.RESOLVED,
            assigned_to="R123",
            history=[_resolved_event(NOW - timedelta(hours=2))],
        ),
        make_ticket(status=TicketStatus.CLOSED),
    ]

    stats = StatisticsAggregator().aggregate(tickets, now=NOW)

    assert stats.total == 4
    assert stats.by_status["open"] == 1
    assert stats.by_status["in_progress"] == 1
    assert stats.by_status["resolved"] == 1
    assert stats.by_status["closed"] == 1
    assert stats.by_priority["urgent"] == 1
    assert stats.by_priority["medium"] == 3
    assert stats.by_issue_type["payment_problem"] == 1
    assert stats.unassigned_tickets == 1
    assert stats.resolved_today == 1


def test_resolved_yesterday_is_not_counted(make_ticket):
    ticket = make_ticket(status=TicketStatus.RESOLVED, history=[_resolved_event(NOW - timedelta(days=1))])

    assert StatisticsAggregator().aggregate([ticket], now=NOW).resolved_today == 0


def test_latest_resolution_wins(make_ticket):
    ticket = make_ticket(
        status=TicketStatus.RESOLVED,
        history=[_resolved_event(NOW - timedelta(days=3)), _resolved_event(NOW - timedelta(minutes=5))],
    )

    assert StatisticsAggregator().aggregate([ticket], now=NOW).resolved_today == 1


def test_resolved_today_uses_configured_timezone(make_ticket):
    # 03:00 UTC on the 15th is still the evening of the 14th in New York.
    ticket = make_ticket(
        status=TicketStatus.RESOLVED,
        history=[_resolved_event(datetime(2024, 3, 15, 3, 0, tzinfo=timezone.utc))],
    )

    assert StatisticsAggregator("UTC").aggregate([ticket], now=NOW).resolved_today == 1
    assert StatisticsAggregator("America/New_York").aggregate([ticket], now=NOW).resolved_today == 0


def test_aggregate_is_idempotent(make_ticket):
    tickets = [
        make_ticket(),
        make_ticket(status=TicketStatus.RESOLVED, assigned_to="R123", history=[_resolved_event(NOW)]),
    ]
    aggregator = StatisticsAggregator()

    assert aggregator.aggregate(tickets, now=NOW) == aggregator.aggregate(tickets, now=NOW)


def test_representative_rollup(make_ticket):
    tickets = [
        make_ticket(status=TicketStatus.ASSIGNED, assigned_to="R123", submitted_by="farmer-1"),
        make_ticket(status=TicketStatus.WAITING_CUSTOMER, assigned_to="R123", submitted_by="farmer-2"),
        make_ticket(
            status=TicketStatus.RESOLVED,
            assigned_to="R123",
            submitted_by="farmer-1",
            history=[_resolved_event(NOW - timedelta(hours=1))],
        ),
        make_ticket(status=TicketStatus.CLOSED, assigned_to="R123", submitted_by="farmer-3"),
        make_ticket(status=TicketStatus.IN_PROGRESS, assigned_to="R456", submitted_by="farmer-4"),
    ]

    stats = StatisticsAggregator().aggregate_for_representative(tickets, "R123", now=NOW)

    assert stats.representative_id == "R123"
    assert stats.total_assigned == 4
    assert stats.active == 2
    assert stats.resolved == 2
    assert stats.resolved_today == 1
    assert stats.customers_served == 3
    assert stats.by_status["closed"] == 1
    assert stats.by_status["in_progress"] == 0
