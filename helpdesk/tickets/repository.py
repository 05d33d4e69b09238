from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timezone
from typing import Any, Protocol, Sequence

from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from helpdesk.db.models import TicketCommentTable, TicketHistoryTable, TicketSequenceTable, TicketTable

from .errors import TicketNotFoundError, VersionConflictError
from .models import (
    Attachment,
    Comment,
    CustomerSatisfaction,
    HistoryAction,
    HistoryEvent,
    IssueType,
    Pagination,
    SortField,
    Ticket,
    TicketFilter,
    TicketPriority,
)
from .state import TicketStatus


def format_ticket_number(prefix: str, sequence: int) -> str:
    return f"{prefix}{sequence:06d}"


class TicketRepository(Protocol):
    """Persistence contract the ticket service relies on.

    ``save`` only succeeds when the stored version still equals
    ``expected_version``; it then bumps the version by one. Loaded tickets are
    private copies, so callers may mutate them freely before saving.
    """

    async def next_ticket_number(self) -> str:
        ...

    async def add(self, ticket: Ticket) -> Ticket:
        ...

    async def load(self, ticket_id: str) -> Ticket:
        ...

    async def save(self, ticket: Ticket, expected_version: int) -> Ticket:
        ...

    async def query(
        self, ticket_filter: TicketFilter, pagination: Pagination | None = None
    ) -> tuple[list[Ticket], int]:
        ...

    async def delete(self, ticket_id: str, expected_version: int) -> None:
        ...


def _sort_key(field: SortField):
    if field is SortField.LAST_ACTIVITY:
        return lambda ticket: ticket.last_activity
    if field is SortField.TICKET_NUMBER:
        return lambda ticket: ticket.ticket_number
    return lambda ticket: ticket.created_at


class InMemoryTicketRepository:
    """Dictionary backed repository used for development and tests."""

    def __init__(self, *, number_prefix: str = "TK") -> None:
        self._tickets: dict[str, Ticket] = {}
        self._sequence = 0
        self._number_prefix = number_prefix
        self._lock = asyncio.Lock()

    async def next_ticket_number(self) -> str:
        async with self._lock:
            self._sequence += 1
            return format_ticket_number(self._number_prefix, self._sequence)

    async def add(self, ticket: Ticket) -> Ticket:
        async with self._lock:
            if ticket.id in self._tickets:
                raise VersionConflictError(ticket.id, 0, self._tickets[ticket.id].version)
            stored = copy.deepcopy(ticket)
            stored.version = 1
            self._tickets[stored.id] = stored
            return copy.deepcopy(stored)

    async def load(self, ticket_id: str) -> Ticket:
        stored = self._tickets.get(ticket_id)
        if stored is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return copy.deepcopy(stored)

    async def save(self, ticket: Ticket, expected_version: int) -> Ticket:
        async with self._lock:
            stored = self._tickets.get(ticket.id)
            if stored is None:
                raise TicketNotFoundError(f"Ticket {ticket.id} not found")
            if stored.version != expected_version:
                raise VersionConflictError(ticket.id, expected_version, stored.version)
            updated = copy.deepcopy(ticket)
            updated.version = expected_version + 1
            self._tickets[updated.id] = updated
            return copy.deepcopy(updated)

    async def query(
        self, ticket_filter: TicketFilter, pagination: Pagination | None = None
    ) -> tuple[list[Ticket], int]:
        matches = [ticket for ticket in self._tickets.values() if ticket_filter.matches(ticket)]
        total = len(matches)
        if pagination is None:
            return [copy.deepcopy(ticket) for ticket in matches], total
        matches.sort(key=_sort_key(pagination.sort_by), reverse=pagination.descending)
        window = matches[pagination.offset : pagination.offset + pagination.limit]
        return [copy.deepcopy(ticket) for ticket in window], total

    async def delete(self, ticket_id: str, expected_version: int) -> None:
        async with self._lock:
            stored = self._tickets.get(ticket_id)
            if stored is None:
                raise TicketNotFoundError(f"Ticket {ticket_id} not found")
            if stored.version != expected_version:
                raise VersionConflictError(ticket_id, expected_version, stored.version)
            del self._tickets[ticket_id]


class SQLTicketRepository:
    """Persistence helper wrapping `tickets`, `ticket_comments` and `ticket_history`."""

    _SORT_COLUMNS = {
        SortField.CREATED_AT: TicketTable.created_at,
        SortField.LAST_ACTIVITY: TicketTable.last_activity,
        SortField.TICKET_NUMBER: TicketTable.ticket_number,
    }

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
        number_prefix: str = "TK",
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine
        self._number_prefix = number_prefix

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    async def next_ticket_number(self) -> str:
        prefix = self._number_prefix
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    bumped = await session.execute(
                        update(TicketSequenceTable)
                        .where(TicketSequenceTable.prefix == prefix)
                        .values(value=TicketSequenceTable.value + 1)
                    )
                    if bumped.rowcount == 0:
                        # First number for this prefix: continue after any stored tickets.
                        highest = await session.execute(
                            select(func.max(TicketTable.ticket_number)).where(
                                TicketTable.ticket_number.like(f"{prefix}%")
                            )
                        )
                        start = _sequence_of(highest.scalar_one_or_none(), prefix) + 1
                        session.add(TicketSequenceTable(prefix=prefix, value=start))
                        await session.flush()
                    current = await session.execute(
                        select(TicketSequenceTable.value).where(TicketSequenceTable.prefix == prefix)
                    )
                    sequence = int(current.scalar_one())
        except IntegrityError:
            # Another writer created the sequence row first.
            return await self.next_ticket_number()
        return format_ticket_number(prefix, sequence)

    async def add(self, ticket: Ticket) -> Ticket:
        stored = copy.deepcopy(ticket)
        stored.version = 1
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(self._ticket_to_table(stored))
                    # Parent row must exist before children for FK enforcing backends.
                    await session.flush()
                    for position, comment in enumerate(stored.comments):
                        session.add(self._comment_to_table(stored.id, position, comment))
                    for position, event in enumerate(stored.history):
                        session.add(self._event_to_table(stored.id, position, event))
        except IntegrityError as exc:
            raise VersionConflictError(stored.id, 0) from exc
        return stored

    async def load(self, ticket_id: str) -> Ticket:
        async with self._session_factory() as session:
            row = await session.get(TicketTable, ticket_id)
            if row is None:
                raise TicketNotFoundError(f"Ticket {ticket_id} not found")
            tickets = await self._hydrate(session, [row])
        return tickets[0]

    async def save(self, ticket: Ticket, expected_version: int) -> Ticket:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(TicketTable)
                    .where(TicketTable.id == ticket.id, TicketTable.version == expected_version)
                    .values(**self._mutable_columns(ticket), version=expected_version + 1)
                )
                if result.rowcount == 0:
                    current = await session.get(TicketTable, ticket.id)
                    if current is None:
                        raise TicketNotFoundError(f"Ticket {ticket.id} not found")
                    raise VersionConflictError(ticket.id, expected_version, current.version)

                history_count = await session.execute(
                    select(func.count())
                    .select_from(TicketHistoryTable)
                    .where(TicketHistoryTable.ticket_id == ticket.id)
                )
                persisted = int(history_count.scalar_one())
                for position, event in enumerate(ticket.history[persisted:], start=persisted):
                    session.add(self._event_to_table(ticket.id, position, event))
                for position, comment in enumerate(ticket.comments):
                    await session.merge(self._comment_to_table(ticket.id, position, comment))

        saved = copy.deepcopy(ticket)
        saved.version = expected_version + 1
        return saved

    async def query(
        self, ticket_filter: TicketFilter, pagination: Pagination | None = None
    ) -> tuple[list[Ticket], int]:
        conditions = self._filter_conditions(ticket_filter)
        statement = select(TicketTable).where(*conditions)
        if pagination is not None:
            column = self._SORT_COLUMNS[pagination.sort_by]
            statement = (
                statement.order_by(column.desc() if pagination.descending else column.asc())
                .offset(pagination.offset)
                .limit(pagination.limit)
            )

        async with self._session_factory() as session:
            count_result = await session.execute(
                select(func.count()).select_from(TicketTable).where(*conditions)
            )
            total = int(count_result.scalar_one())
            result = await session.execute(statement)
            tickets = await self._hydrate(session, list(result.scalars().all()))
        return tickets, total

    async def delete(self, ticket_id: str, expected_version: int) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(TicketTable).where(
                        TicketTable.id == ticket_id, TicketTable.version == expected_version
                    )
                )
                if result.rowcount == 0:
                    current = await session.get(TicketTable, ticket_id)
                    if current is None:
                        raise TicketNotFoundError(f"Ticket {ticket_id} not found")
                    raise VersionConflictError(ticket_id, expected_version, current.version)
                await session.execute(
                    delete(TicketCommentTable).where(TicketCommentTable.ticket_id == ticket_id)
                )
                await session.execute(
                    delete(TicketHistoryTable).where(TicketHistoryTable.ticket_id == ticket_id)
                )

    @staticmethod
    def _filter_conditions(ticket_filter: TicketFilter) -> list[Any]:
        conditions: list[Any] = []
        if ticket_filter.status is not None:
            conditions.append(TicketTable.status == ticket_filter.status.value)
        if ticket_filter.priority is not None:
            conditions.append(TicketTable.priority == ticket_filter.priority.value)
        if ticket_filter.issue_type is not None:
            conditions.append(TicketTable.issue_type == ticket_filter.issue_type.value)
        if ticket_filter.assigned_to is not None:
            conditions.append(TicketTable.assigned_to == ticket_filter.assigned_to)
        if ticket_filter.submitted_by is not None:
            conditions.append(TicketTable.submitted_by == ticket_filter.submitted_by)
        if ticket_filter.unassigned_only:
            conditions.append(TicketTable.assigned_to.is_(None))
        return conditions

    async def _hydrate(self, session: AsyncSession, rows: Sequence[TicketTable]) -> list[Ticket]:
        if not rows:
            return []
        ids = [row.id for row in rows]
        comment_result = await session.execute(
            select(TicketCommentTable)
            .where(TicketCommentTable.ticket_id.in_(ids))
            .order_by(TicketCommentTable.position.asc())
        )
        history_result = await session.execute(
            select(TicketHistoryTable)
            .where(TicketHistoryTable.ticket_id.in_(ids))
            .order_by(TicketHistoryTable.position.asc())
        )
        comments: dict[str, list[Comment]] = {ticket_id: [] for ticket_id in ids}
        for comment_row in comment_result.scalars().all():
            comments[comment_row.ticket_id].append(self._table_to_comment(comment_row))
        history: dict[str, list[HistoryEvent]] = {ticket_id: [] for ticket_id in ids}
        for event_row in history_result.scalars().all():
            history[event_row.ticket_id].append(self._table_to_event(event_row))
        return [self._table_to_ticket(row, comments[row.id], history[row.id]) for row in rows]

    @staticmethod
    def _mutable_columns(ticket: Ticket) -> dict[str, Any]:
        satisfaction = ticket.customer_satisfaction
        return {
            "status": ticket.status.value,
            "assigned_to": ticket.assigned_to,
            "tags": list(ticket.tags),
            "resolution": ticket.resolution,
            "resolved_at": ticket.resolved_at,
            "closed_at": ticket.closed_at,
            "customer_satisfaction": None
            if satisfaction is None
            else {
                "rating": satisfaction.rating,
                "feedback": satisfaction.feedback,
                "submitted_at": satisfaction.submitted_at.isoformat(),
            },
            "last_activity": ticket.last_activity,
        }

    @classmethod
    def _ticket_to_table(cls, ticket: Ticket) -> TicketTable:
        return TicketTable(
            id=ticket.id,
            ticket_number=ticket.ticket_number,
            title=ticket.title,
            description=ticket.description,
            issue_type=ticket.issue_type.value,
            priority=ticket.priority.value,
            submitted_by=ticket.submitted_by,
            related_order=ticket.related_order,
            related_service=ticket.related_service,
            attachments=[
                {
                    "filename": item.filename,
                    "original_name": item.original_name,
                    "content_type": item.content_type,
                    "size": item.size,
                    "uploaded_at": item.uploaded_at.isoformat(),
                }
                for item in ticket.attachments
            ],
            version=ticket.version,
            created_at=ticket.created_at,
            **cls._mutable_columns(ticket),
        )

    @staticmethod
    def _comment_to_table(ticket_id: str, position: int, comment: Comment) -> TicketCommentTable:
        return TicketCommentTable(
            id=comment.id,
            ticket_id=ticket_id,
            position=position,
            author=comment.author,
            message=comment.message,
            is_internal=comment.is_internal,
            is_deleted=comment.is_deleted,
            timestamp=comment.timestamp,
            edited_at=comment.edited_at,
        )

    @staticmethod
    def _event_to_table(ticket_id: str, position: int, event: HistoryEvent) -> TicketHistoryTable:
        return TicketHistoryTable(
            ticket_id=ticket_id,
            position=position,
            action=event.action.value,
            description=event.description,
            performed_by=event.performed_by,
            previous_value=event.previous_value,
            new_value=event.new_value,
            notes=event.notes,
            timestamp=event.timestamp,
        )

    @staticmethod
    def _table_to_ticket(
        row: TicketTable, comments: list[Comment], history: list[HistoryEvent]
    ) -> Ticket:
        satisfaction = row.customer_satisfaction
        return Ticket(
            id=row.id,
            ticket_number=row.ticket_number,
            title=row.title,
            description=row.description,
            issue_type=IssueType(row.issue_type),
            priority=TicketPriority(row.priority),
            status=TicketStatus(row.status),
            submitted_by=row.submitted_by,
            assigned_to=row.assigned_to,
            related_order=row.related_order,
            related_service=row.related_service,
            attachments=[
                Attachment(
                    filename=str(item["filename"]),
                    original_name=str(item["original_name"]),
                    content_type=str(item["content_type"]),
                    size=int(item["size"]),
                    uploaded_at=_ensure_datetime(item["uploaded_at"]),
                )
                for item in row.attachments or []
            ],
            tags=list(row.tags or []),
            comments=comments,
            history=history,
            resolution=row.resolution,
            resolved_at=_optional_datetime(row.resolved_at),
            closed_at=_optional_datetime(row.closed_at),
            customer_satisfaction=None
            if not satisfaction
            else CustomerSatisfaction(
                rating=int(satisfaction["rating"]),
                feedback=str(satisfaction.get("feedback") or ""),
                submitted_at=_ensure_datetime(satisfaction["submitted_at"]),
            ),
            version=row.version,
            created_at=_ensure_datetime(row.created_at),
            last_activity=_ensure_datetime(row.last_activity),
        )

    @staticmethod
    def _table_to_comment(row: TicketCommentTable) -> Comment:
        return Comment(
            id=row.id,
            author=row.author,
            message=row.message,
            is_internal=row.is_internal,
            timestamp=_ensure_datetime(row.timestamp),
            edited_at=_optional_datetime(row.edited_at),
            is_deleted=row.is_deleted,
        )

    @staticmethod
    def _table_to_event(row: TicketHistoryTable) -> HistoryEvent:
        return HistoryEvent(
            action=HistoryAction(row.action),
            description=row.description,
            performed_by=row.performed_by,
            timestamp=_ensure_datetime(row.timestamp),
            previous_value=row.previous_value,
            new_value=row.new_value,
            notes=row.notes,
        )


def _ensure_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return _ensure_datetime(datetime.fromisoformat(str(value)))


def _optional_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    return _ensure_datetime(value)


def _sequence_of(ticket_number: str | None, prefix: str) -> int:
    if not ticket_number:
        return 0
    suffix = ticket_number[len(prefix) :]
    return int(suffix) if suffix.isdigit() else 0
