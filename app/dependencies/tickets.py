from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from app.dependencies.auth import role_required
from app.tickets.models import Actor
from app.tickets.service import TicketService
from app.tickets.state import ActorRole

require_privileged = role_required(ActorRole.PM_OPS, ActorRole.ADMIN)

PrivilegedUser = Annotated[Actor, Depends(require_privileged)]


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not configured")
    return service
