"""Builders for status history entries."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Mapping

from .models import Actor, HistoryAction, StatusHistoryEntry, Ticket
from .state import TicketStatus

COMMENT_PREVIEW_LENGTH = 50


def build_entry(
    action: HistoryAction,
    status: TicketStatus,
    actor: Actor,
    *,
    reason: str,
    changed_at: datetime,
    details: Mapping[str, Any] | None = None,
) -> StatusHistoryEntry:
    return StatusHistoryEntry(
        id=str(uuid.uuid4()),
        action=action,
        status=status,
        changed_at=changed_at,
        actor=actor.to_info(),
        reason=reason,
        details=dict(details or {}),
    )


def created_entry(actor: Actor, status: TicketStatus, *, changed_at: datetime) -> StatusHistoryEntry:
    if status == TicketStatus.DRAFT:
        reason = f"Draft ticket created by {actor.display_name}"
    else:
        reason = f"Ticket created with status: {status.value} by {actor.display_name}"
    return build_entry(HistoryAction.TICKET_CREATED, status, actor, reason=reason, changed_at=changed_at)


def status_change_entry(
    actor: Actor,
    previous: TicketStatus,
    new: TicketStatus,
    *,
    changed_at: datetime,
    reason: str | None = None,
    change_type: str = "manual",
) -> StatusHistoryEntry:
    base_reason = reason or f"Status changed from {previous.value} to {new.value}"
    return build_entry(
        HistoryAction.STATUS_CHANGE,
        new,
        actor,
        reason=f"{base_reason} by {actor.display_name}",
        changed_at=changed_at,
        details={"previousStatus": previous.value, "newStatus": new.value, "changeType": change_type},
    )


def sku_assignment_entry(
    actor: Actor,
    status: TicketStatus,
    previous: str | None,
    new: str,
    *,
    changed_at: datetime,
) -> StatusHistoryEntry:
    if previous:
        reason = f'SKU base number changed from "{previous}" to "{new}" by {actor.display_name}'
    else:
        reason = f'SKU base number assigned: "{new}" by {actor.display_name}'
    return build_entry(
        HistoryAction.SKU_ASSIGNMENT,
        status,
        actor,
        reason=reason,
        changed_at=changed_at,
        details={"previousBaseNumber": previous, "newBaseNumber": new},
    )


def significant_changes(ticket: Ticket, patch: Mapping[str, Any]) -> list[str]:
    """Describe the user-visible changes ``patch`` makes to ``ticket``."""

    changes: list[str] = []
    product_name = patch.get("product_name")
    if product_name and product_name != ticket.product_name:
        changes.append(f'Product name changed from "{ticket.product_name}" to "{product_name}"')
    sbu = patch.get("sbu")
    if sbu and sbu != ticket.sbu:
        changes.append(f'SBU changed from "{ticket.sbu}" to "{sbu}"')
    priority = patch.get("priority")
    if priority and priority != ticket.priority:
        old = ticket.priority.value
        new = getattr(priority, "value", priority)
        changes.append(f'Priority changed from "{old}" to "{new}"')
    cas_number = (patch.get("chemical_properties") or {}).get("casNumber")
    current_cas = ticket.chemical_properties.get("casNumber")
    if cas_number and cas_number != current_cas:
        changes.append(f'CAS number changed from "{current_cas}" to "{cas_number}"')
    return changes


def edit_entry(
    actor: Actor,
    status: TicketStatus,
    changes: list[str],
    *,
    changed_at: datetime,
) -> StatusHistoryEntry:
    return build_entry(
        HistoryAction.TICKET_EDIT,
        status,
        actor,
        reason=f"Ticket edited by {actor.display_name}: {', '.join(changes)}",
        changed_at=changed_at,
    )


def comment_entry(actor: Actor, status: TicketStatus, content: str, *, changed_at: datetime) -> StatusHistoryEntry:
    preview = content[:COMMENT_PREVIEW_LENGTH]
    if len(content) > COMMENT_PREVIEW_LENGTH:
        preview += "..."
    return build_entry(
        HistoryAction.COMMENT_ADDED,
        status,
        actor,
        reason=f'Comment added by {actor.display_name}: "{preview}"',
        changed_at=changed_at,
    )
