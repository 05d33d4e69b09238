from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from helpdesk.tickets import (
    Actor,
    AssignmentPolicy,
    AuditTrail,
    InMemoryTicketRepository,
    InMemoryUserDirectory,
    IssueType,
    Role,
    Ticket,
    TicketPriority,
    TicketService,
    TicketStateMachine,
    TicketStatus,
    UserRecord,
)


class FixedClock:
    """Controllable clock handed to the audit trail."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current = self.current + timedelta(**delta)
        return self.current


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 3, 15, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def audit(clock) -> AuditTrail:
    return AuditTrail(clock=clock)


@pytest.fixture
def state_machine(audit) -> TicketStateMachine:
    return TicketStateMachine(audit)


@pytest.fixture
def assignment(state_machine, audit) -> AssignmentPolicy:
    return AssignmentPolicy(state_machine, audit)


@pytest.fixture
def farmer() -> Actor:
    return Actor(id="farmer-1", role=Role.FARMER)


@pytest.fixture
def other_farmer() -> Actor:
    return Actor(id="farmer-2", role=Role.FARMER)


@pytest.fixture
def csr() -> Actor:
    return Actor(id="R123", role=Role.CUSTOMER_SERVICE_REP)


@pytest.fixture
def second_csr() -> Actor:
    return Actor(id="R456", role=Role.CUSTOMER_SERVICE_REP)


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin-1", role=Role.ADMIN)


@pytest.fixture
def users() -> InMemoryUserDirectory:
    return InMemoryUserDirectory(
        [
            UserRecord(id="R123", role=Role.CUSTOMER_SERVICE_REP, display_name="Rita"),
            UserRecord(id="R456", role=Role.CUSTOMER_SERVICE_REP),
            UserRecord(id="admin-1", role=Role.ADMIN),
            UserRecord(id="R999", role=Role.CUSTOMER_SERVICE_REP, is_active=False),
            UserRecord(id="farmer-1", role=Role.FARMER),
        ]
    )


@pytest.fixture
def repository() -> InMemoryTicketRepository:
    return InMemoryTicketRepository()


@pytest.fixture
def service(repository, users, audit) -> TicketService:
    return TicketService(repository, users, audit=audit)


@pytest.fixture
def make_ticket(clock):
    def factory(**overrides) -> Ticket:
        now = clock()
        values = {
            "id": str(uuid4()),
            "ticket_number": "TK000001",
            "title": "Irrigation pump offline",
            "description": "The pump stopped responding after the firmware update.",
            "issue_type": IssueType.TECHNICAL_ISSUE,
            "priority": TicketPriority.MEDIUM,
            "status": TicketStatus.OPEN,
            "submitted_by": "farmer-1",
            "created_at": now,
            "last_activity": now,
        }
        values.update(overrides)
        return Ticket(**values)

    return factory
