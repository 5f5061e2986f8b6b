"""NPDI initiation and completion.

Initiating NPDI hands the ticket over to the external NPDI system: the ticket
takes the NPDI tracking number as its ticket number and is locked for good.
Both operations here compute the complete new record from a snapshot and
leave the snapshot untouched, so the caller can persist the result as a
single write.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone

from .errors import PreconditionViolation, ValidationFailure
from .history import build_entry, status_change_entry
from .models import Actor, HistoryAction, NpdiTracking, Ticket
from .state import TicketStatus

logger = logging.getLogger(__name__)


def normalize_tracking_number(tracking_number: str | None) -> str:
    """Trim a tracking number, rejecting empty input."""

    normalized = (tracking_number or "").strip()
    if not normalized:
        raise ValidationFailure("NPDI tracking number must not be empty")
    return normalized


def assert_not_handed_over(ticket: Ticket) -> None:
    """Reject any change to a ticket already handed over to the NPDI system."""

    if ticket.handed_over:
        raise PreconditionViolation(
            f"Ticket {ticket.ticket_number} was handed over to NPDI and can no longer be changed"
        )


def check_npdi_preconditions(ticket: Ticket, actor: Actor) -> None:
    if not actor.is_privileged:
        raise PreconditionViolation("Only PM-Ops or administrators can initiate NPDI")
    if ticket.handed_over:
        raise PreconditionViolation(
            f"NPDI was already initiated for this ticket (tracking number {ticket.npdi_tracking.tracking_number})"
        )
    if ticket.status != TicketStatus.IN_PROCESS:
        raise PreconditionViolation(
            f"NPDI can only be initiated for tickets in IN_PROCESS (ticket is {ticket.status.value})"
        )
    if not ticket.has_part_number:
        raise PreconditionViolation("A part number must be assigned before NPDI can be initiated")


def initiate_npdi(
    ticket: Ticket,
    actor: Actor,
    tracking_number: str,
    *,
    now: datetime | None = None,
) -> Ticket:
    """Return ``ticket`` renamed to ``tracking_number`` and locked in NPDI_INITIATED."""

    new_number = normalize_tracking_number(tracking_number)
    check_npdi_preconditions(ticket, actor)

    initiated_at = now or datetime.now(timezone.utc)
    previous_number = ticket.ticket_number
    entry = build_entry(
        HistoryAction.NPDI_INITIATED,
        TicketStatus.NPDI_INITIATED,
        actor,
        reason=(
            f"NPDI initiated by {actor.display_name}. Ticket number changed from "
            f'"{previous_number}" to "{new_number}". NPDI Tracking: {new_number}'
        ),
        changed_at=initiated_at,
        details={
            "previousTicketNumber": previous_number,
            "newTicketNumber": new_number,
            "npdiTrackingNumber": new_number,
            "initiatedAt": initiated_at.isoformat(),
        },
    )
    logger.info("NPDI initiated for ticket %s: %s -> %s", ticket.id, previous_number, new_number)
    return replace(
        ticket,
        ticket_number=new_number,
        status=TicketStatus.NPDI_INITIATED,
        npdi_tracking=NpdiTracking(
            tracking_number=new_number,
            initiated_by=actor.email,
            initiated_at=initiated_at,
        ),
        status_history=[*ticket.status_history, entry],
        updated_at=initiated_at,
    )


def mark_completed(
    ticket: Ticket,
    actor: Actor,
    *,
    confirmed: bool,
    now: datetime | None = None,
) -> Ticket:
    """Close an NPDI-initiated ticket. Requires an explicit confirmation."""

    if confirmed is not True:
        raise ValidationFailure("Marking a ticket as completed requires explicit confirmation")
    if not actor.is_privileged:
        raise PreconditionViolation("Only PM-Ops or administrators can mark a ticket as completed")
    if ticket.status != TicketStatus.NPDI_INITIATED:
        raise PreconditionViolation(
            f"Only NPDI-initiated tickets can be marked completed (ticket is {ticket.status.value})"
        )

    completed_at = now or datetime.now(timezone.utc)
    entry = status_change_entry(
        actor,
        ticket.status,
        TicketStatus.COMPLETED,
        changed_at=completed_at,
        reason="Ticket marked as completed",
        change_type="completion",
    )
    return replace(
        ticket,
        status=TicketStatus.COMPLETED,
        status_history=[*ticket.status_history, entry],
        updated_at=completed_at,
    )
