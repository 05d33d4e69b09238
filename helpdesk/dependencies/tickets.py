from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from helpdesk.dependencies.auth import role_required
from helpdesk.tickets.models import Actor, Role
from helpdesk.tickets.service import TicketService

require_staff = role_required(Role.CUSTOMER_SERVICE_REP, Role.ADMIN)
require_admin = role_required(Role.ADMIN)

StaffUser = Annotated[Actor, Depends(require_staff)]
AdminUser = Annotated[Actor, Depends(require_admin)]


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not configured")
    return service


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
