from __future__ import annotations

import logging
from typing import Protocol

from .models import Actor, Ticket
from .state import TicketStatus

logger = logging.getLogger(__name__)


class StatusChangeNotifier(Protocol):
    async def notify_status_change(
        self,
        ticket: Ticket,
        previous: TicketStatus,
        new: TicketStatus,
        actor: Actor,
    ) -> None:
        ...


class LoggingStatusNotifier:
    """Notifier that records status changes in the application log."""

    async def notify_status_change(
        self,
        ticket: Ticket,
        previous: TicketStatus,
        new: TicketStatus,
        actor: Actor,
    ) -> None:
        logger.info(
            "Ticket %s (%s) moved %s -> %s by %s; originator: %s",
            ticket.ticket_number,
            ticket.id,
            previous.value,
            new.value,
            actor.email,
            ticket.created_by or "unknown",
        )
