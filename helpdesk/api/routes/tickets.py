from __future__ import annotations

from datetime import datetime, timezone
from typing import Generic, Literal, TypeVar

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, ConfigDict, Field

from helpdesk.dependencies.auth import CurrentUser
from helpdesk.dependencies.tickets import AdminUser, StaffUser, TicketServiceDep
from helpdesk.tickets.models import (
    Attachment,
    HistoryAction,
    IssueType,
    Pagination,
    SortField,
    Ticket,
    TicketFilter,
    TicketPriority,
)
from helpdesk.tickets.state import TicketStateMachine, TicketStatus

router = APIRouter(prefix="/tickets", tags=["tickets"])

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    message: str | None = None
    data: T


class AttachmentModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    filename: str = Field(..., min_length=1, max_length=255)
    original_name: str = Field(..., min_length=1, max_length=255)
    content_type: str = Field(..., min_length=1, max_length=100)
    size: int = Field(..., ge=0)
    uploaded_at: datetime | None = None

    def to_entity(self) -> Attachment:
        return Attachment(
            filename=self.filename,
            original_name=self.original_name,
            content_type=self.content_type,
            size=self.size,
            uploaded_at=self.uploaded_at or datetime.now(timezone.utc),
        )


class CommentModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    author: str
    message: str
    is_internal: bool
    is_deleted: bool
    timestamp: datetime
    edited_at: datetime | None = None


class HistoryEventModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    action: HistoryAction
    description: str
    performed_by: str | None = None
    previous_value: str | None = None
    new_value: str | None = None
    notes: str | None = None
    timestamp: datetime


class CustomerSatisfactionModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rating: int
    feedback: str
    submitted_at: datetime


class TicketSummaryModel(BaseModel):
    id: str
    ticket_number: str
    title: str
    issue_type: IssueType
    priority: TicketPriority
    status: TicketStatus
    submitted_by: str
    assigned_to: str | None = None
    created_at: datetime
    last_activity: datetime
    version: int

    @classmethod
    def from_entity(cls, ticket: Ticket) -> "TicketSummaryModel":
        return cls(**_summary_fields(ticket))


class TicketDetailModel(TicketSummaryModel):
    description: str
    related_order: str | None = None
    related_service: str | None = None
    attachments: list[AttachmentModel]
    tags: list[str]
    comments: list[CommentModel]
    history: list[HistoryEventModel]
    resolution: str | None = None
    resolved_at: datetime | None = None
    closed_at: datetime | None = None
    customer_satisfaction: CustomerSatisfactionModel | None = None
    allowed_transitions: list[TicketStatus]

    @classmethod
    def from_entity(cls, ticket: Ticket) -> "TicketDetailModel":
        satisfaction = ticket.customer_satisfaction
        return cls(
            **_summary_fields(ticket),
            description=ticket.description,
            related_order=ticket.related_order,
            related_service=ticket.related_service,
            attachments=[AttachmentModel.model_validate(item) for item in ticket.attachments],
            tags=list(ticket.tags),
            comments=[CommentModel.model_validate(comment) for comment in ticket.comments],
            history=[HistoryEventModel.model_validate(event) for event in ticket.history],
            resolution=ticket.resolution,
            resolved_at=ticket.resolved_at,
            closed_at=ticket.closed_at,
            customer_satisfaction=None
            if satisfaction is None
            else CustomerSatisfactionModel.model_validate(satisfaction),
            allowed_transitions=TicketStateMachine.allowed_transitions(ticket.status),
        )


class PaginationModel(BaseModel):
    current: int
    pages: int
    total: int
    limit: int


class TicketListModel(BaseModel):
    tickets: list[TicketSummaryModel]
    pagination: PaginationModel


class TicketStatisticsModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    by_status: dict[str, int]
    by_priority: dict[str, int]
    by_issue_type: dict[str, int]
    unassigned_tickets: int
    resolved_today: int


class RepresentativeStatisticsModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    representative_id: str
    total_assigned: int
    active: int
    resolved: int
    resolved_today: int
    customers_served: int
    by_status: dict[str, int]


class TicketCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    issue_type: IssueType
    priority: TicketPriority = TicketPriority.MEDIUM
    related_order: str | None = None
    related_service: str | None = None
    attachments: list[AttachmentModel] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


class TicketStatusChangeRequest(BaseModel):
    status: TicketStatus
    notes: str | None = Field(default=None, max_length=500)


class TicketAssignRequest(BaseModel):
    representative_id: str = Field(..., min_length=1)
    notes: str | None = Field(default=None, max_length=500)


class TicketCloseRequest(BaseModel):
    resolution: str | None = Field(default=None, max_length=2000)
    rating: int | None = Field(default=None, ge=1, le=5)
    feedback: str | None = Field(default=None, max_length=1000)


class CommentCreateRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000)
    is_internal: bool = False


class CommentUpdateRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000)


def _summary_fields(ticket: Ticket) -> dict[str, object]:
    return {
        "id": ticket.id,
        "ticket_number": ticket.ticket_number,
        "title": ticket.title,
        "issue_type": ticket.issue_type,
        "priority": ticket.priority,
        "status": ticket.status,
        "submitted_by": ticket.submitted_by,
        "assigned_to": ticket.assigned_to,
        "created_at": ticket.created_at,
        "last_activity": ticket.last_activity,
        "version": ticket.version,
    }


def _detail(ticket: Ticket, message: str | None = None) -> Envelope[TicketDetailModel]:
    return Envelope[TicketDetailModel](message=message, data=TicketDetailModel.from_entity(ticket))


@router.post(
    "",
    response_model=Envelope[TicketDetailModel],
    status_code=status.HTTP_201_CREATED,
    summary="Submit a new support ticket",
)
async def create_ticket(
    payload: TicketCreateRequest,
    service: TicketServiceDep,
    user: CurrentUser,
) -> Envelope[TicketDetailModel]:
    ticket = await service.create_ticket(
        user,
        title=payload.title,
        description=payload.description,
        issue_type=payload.issue_type,
        priority=payload.priority,
        related_order=payload.related_order,
        related_service=payload.related_service,
        attachments=[item.to_entity() for item in payload.attachments],
        tags=payload.tags,
    )
    return _detail(ticket, "Ticket created successfully")


@router.get("", response_model=Envelope[TicketListModel], summary="List tickets visible to the caller")
async def list_tickets(
    service: TicketServiceDep,
    user: CurrentUser,
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
    priority: TicketPriority | None = Query(default=None),
    issue_type: IssueType | None = Query(default=None),
    assigned_to: str | None = Query(default=None, description="Representative id, or 'me'"),
    submitted_by: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    sort_by: SortField = Query(default=SortField.CREATED_AT),
    sort_order: Literal["asc", "desc"] = Query(default="desc"),
) -> Envelope[TicketListModel]:
    ticket_filter = TicketFilter(
        status=status_filter,
        priority=priority,
        issue_type=issue_type,
        assigned_to=user.id if assigned_to == "me" else assigned_to,
        submitted_by=submitted_by,
    )
    pagination = Pagination(page=page, limit=limit, sort_by=sort_by, descending=sort_order == "desc")
    result = await service.list_tickets(user, ticket_filter, pagination)
    return Envelope[TicketListModel](
        data=TicketListModel(
            tickets=[TicketSummaryModel.from_entity(ticket) for ticket in result.items],
            pagination=PaginationModel(
                current=result.page,
                pages=result.pages,
                total=result.total,
                limit=result.limit,
            ),
        )
    )


@router.get("/stats", response_model=Envelope[TicketStatisticsModel], summary="Global ticket rollup")
async def get_ticket_statistics(
    service: TicketServiceDep, user: AdminUser
) -> Envelope[TicketStatisticsModel]:
    stats = await service.get_statistics(user)
    return Envelope[TicketStatisticsModel](data=TicketStatisticsModel.model_validate(stats))


@router.get("/stats/me", response_model=Envelope[RepresentativeStatisticsModel])
async def get_my_statistics(
    service: TicketServiceDep, user: StaffUser
) -> Envelope[RepresentativeStatisticsModel]:
    stats = await service.get_representative_statistics(user)
    return Envelope[RepresentativeStatisticsModel](data=RepresentativeStatisticsModel.model_validate(stats))


@router.get(
    "/stats/representatives/{representative_id}",
    response_model=Envelope[RepresentativeStatisticsModel],
)
async def get_representative_statistics(
    representative_id: str, service: TicketServiceDep, user: StaffUser
) -> Envelope[RepresentativeStatisticsModel]:
    stats = await service.get_representative_statistics(user, representative_id)
    return Envelope[RepresentativeStatisticsModel](data=RepresentativeStatisticsModel.model_validate(stats))


@router.get("/{ticket_id}", response_model=Envelope[TicketDetailModel])
async def get_ticket(ticket_id: str, service: TicketServiceDep, user: CurrentUser) -> Envelope[TicketDetailModel]:
    ticket = await service.get_ticket(ticket_id, user)
    return _detail(ticket)


@router.patch("/{ticket_id}/status", response_model=Envelope[TicketDetailModel])
async def change_ticket_status(
    ticket_id: str,
    payload: TicketStatusChangeRequest,
    service: TicketServiceDep,
    user: CurrentUser,
) -> Envelope[TicketDetailModel]:
    ticket = await service.transition_status(ticket_id, payload.status, user, notes=payload.notes)
    return _detail(ticket, "Ticket status updated successfully")


@router.patch("/{ticket_id}/assign", response_model=Envelope[TicketDetailModel])
async def assign_ticket(
    ticket_id: str,
    payload: TicketAssignRequest,
    service: TicketServiceDep,
    user: CurrentUser,
) -> Envelope[TicketDetailModel]:
    ticket = await service.assign_ticket(ticket_id, payload.representative_id, user, notes=payload.notes)
    return _detail(ticket, "Ticket assigned successfully")


@router.patch("/{ticket_id}/close", response_model=Envelope[TicketDetailModel])
async def close_ticket(
    ticket_id: str,
    payload: TicketCloseRequest,
    service: TicketServiceDep,
    user: CurrentUser,
) -> Envelope[TicketDetailModel]:
    ticket = await service.close_ticket(
        ticket_id,
        user,
        resolution=payload.resolution,
        rating=payload.rating,
        feedback=payload.feedback,
    )
    return _detail(ticket, "Ticket closed successfully")


@router.post(
    "/{ticket_id}/comments",
    response_model=Envelope[TicketDetailModel],
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(
    ticket_id: str,
    payload: CommentCreateRequest,
    service: TicketServiceDep,
    user: CurrentUser,
) -> Envelope[TicketDetailModel]:
    ticket = await service.add_comment(ticket_id, user, payload.message, is_internal=payload.is_internal)
    return _detail(ticket, "Comment added successfully")


@router.patch("/{ticket_id}/comments/{comment_id}", response_model=Envelope[TicketDetailModel])
async def edit_comment(
    ticket_id: str,
    comment_id: str,
    payload: CommentUpdateRequest,
    service: TicketServiceDep,
    user: CurrentUser,
) -> Envelope[TicketDetailModel]:
    ticket = await service.edit_comment(ticket_id, comment_id, user, payload.message)
    return _detail(ticket, "Comment updated successfully")


@router.delete("/{ticket_id}/comments/{comment_id}", response_model=Envelope[TicketDetailModel])
async def delete_comment(
    ticket_id: str,
    comment_id: str,
    service: TicketServiceDep,
    user: CurrentUser,
) -> Envelope[TicketDetailModel]:
    ticket = await service.delete_comment(ticket_id, comment_id, user)
    return _detail(ticket, "Comment deleted successfully")


@router.delete("/{ticket_id}", response_model=Envelope[None])
async def delete_ticket(ticket_id: str, service: TicketServiceDep, user: CurrentUser) -> Envelope[None]:
    await service.delete_ticket(ticket_id, user)
    return Envelope[None](message="Ticket deleted successfully", data=None)
