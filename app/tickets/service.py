from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Sequence

from opentelemetry import trace

from . import history, npdi
from .errors import (
    DuplicateTicketNumberError,
    PreconditionViolation,
    TicketNotFoundError,
    ValidationFailure,
)
from .models import SBU_CODES, Actor, Comment, PartNumber, StatusHistoryEntry, Ticket
from .notifications import LoggingStatusNotifier, StatusChangeNotifier
from .permissions import (
    FIELD_SECTIONS,
    QUALITY_ATTRIBUTES_EDITABLE,
    EditPermissions,
    FormSection,
    TicketReminders,
    derive_reminders,
    resolve_permissions,
)
from .repository import TicketPage, TicketRepository
from .skus import build_bulk_sku, ensure_single_bulk
from .state import TicketPriority, TicketStateMachine, TicketStatus
from .submission import ensure_submittable

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_REQUIRED_FIELDS: tuple[str, ...] = ("product_line", "chemical_properties.casNumber")

# Fields callers may set when creating a ticket or patching it.
EDITABLE_FIELDS: frozenset[str] = frozenset(FIELD_SECTIONS)
# Fields owned by the lifecycle; they change only through dedicated operations.
PROTECTED_FIELDS: frozenset[str] = frozenset(
    {"id", "ticket_number", "status", "npdi_tracking", "created_by", "status_history", "comments", "version"}
)


class TicketService:
    """High level orchestration for ticket lifecycle operations.

    Every mutating operation reads a fresh snapshot by internal id, re-checks
    the lifecycle guards for the acting user and persists the complete new
    record as one write.
    """

    def __init__(
        self,
        repository: TicketRepository,
        *,
        state_machine: TicketStateMachine | None = None,
        notifier: StatusChangeNotifier | None = None,
        required_fields: Sequence[str] = DEFAULT_REQUIRED_FIELDS,
        default_sbu: str = "P90",
        ticket_number_prefix: str = "NPDI",
    ) -> None:
        self._repository = repository
        self._state_machine = state_machine or TicketStateMachine()
        self._notifier = notifier or LoggingStatusNotifier()
        self._required_fields = tuple(required_fields)
        self._default_sbu = default_sbu
        self._ticket_number_prefix = ticket_number_prefix

    @property
    def state_machine(self) -> TicketStateMachine:
        return self._state_machine

    async def ensure_schema(self) -> None:
        await self._repository.ensure_schema()

    async def create_ticket(
        self,
        actor: Actor,
        fields: Mapping[str, Any],
        *,
        draft: bool = False,
    ) -> Ticket:
        self._reject_unknown_fields(fields)
        now = _utcnow()
        status = self._state_machine.initial_state(draft=draft)
        if "part_number" in fields and not actor.is_privileged:
            raise PreconditionViolation("Only PM-Ops or administrators can assign part numbers")
        pricing_fields = [name for name in fields if FIELD_SECTIONS[name] == FormSection.PRICING]
        if pricing_fields and not self._state_machine.can_edit_pricing(actor.role, status, True):
            raise PreconditionViolation(f"Pricing cannot be set by {actor.role.value} on a new ticket")

        ticket = Ticket(
            id=str(uuid.uuid4()),
            ticket_number=await self._next_ticket_number(now),
            status=status,
            product_line=str(fields.get("product_line") or ""),
            sbu=fields.get("sbu") or self._default_sbu,
            created_at=now,
            updated_at=now,
            created_by=actor.email,
        )
        ticket = self._apply_fields(ticket, fields, actor, now)
        ensure_single_bulk(ticket.sku_variants)
        if not draft:
            ensure_submittable(ticket, self._required_fields)
        ticket.status_history = [history.created_entry(actor, status, changed_at=now)]

        created = await self._repository.create_ticket(ticket)
        logger.info("Ticket %s created as %s by %s", created.ticket_number, status.value, actor.email)
        return created

    async def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._repository.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def get_ticket_by_number(self, ticket_number: str) -> Ticket:
        ticket = await self._repository.get_by_ticket_number(ticket_number)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_number} not found")
        return ticket

    async def list_tickets(
        self,
        *,
        statuses: Sequence[TicketStatus] | None = None,
        priority: TicketPriority | None = None,
        sbu: str | None = None,
        search: str | None = None,
        created_by: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> TicketPage:
        return await self._repository.list_tickets(
            statuses=statuses,
            priority=priority,
            sbu=sbu,
            search=search,
            created_by=created_by,
            page=page,
            limit=limit,
        )

    async def list_archived_tickets(
        self,
        *,
        priority: TicketPriority | None = None,
        sbu: str | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> TicketPage:
        return await self._repository.list_tickets(
            archived=True,
            priority=priority,
            sbu=sbu,
            search=search,
            page=page,
            limit=limit,
        )

    async def update_ticket(
        self,
        ticket_id: str,
        actor: Actor,
        fields: Mapping[str, Any],
        *,
        edit_mode: bool = True,
    ) -> Ticket:
        if not fields:
            raise ValidationFailure("No fields provided for update")
        self._reject_unknown_fields(fields)

        current = await self.get_ticket(ticket_id)
        npdi.assert_not_handed_over(current)
        self._state_machine.assert_can_edit(actor.role, current.status)
        permissions = self.resolve_permissions(current, actor, edit_mode=edit_mode)
        self._check_field_permissions(current, actor, fields, permissions)

        now = _utcnow()
        updated = self._apply_fields(current, fields, actor, now)
        ensure_single_bulk(updated.sku_variants)

        entries: list[StatusHistoryEntry] = []
        previous_base = current.part_number.base_number if current.has_part_number else None
        new_base = updated.part_number.base_number if updated.has_part_number else None
        if new_base and new_base != previous_base:
            entries.append(history.sku_assignment_entry(actor, current.status, previous_base, new_base, changed_at=now))
        changes = history.significant_changes(current, fields)
        if changes:
            entries.append(history.edit_entry(actor, current.status, changes, changed_at=now))

        updated = replace(updated, status_history=[*current.status_history, *entries], updated_at=now)
        return await self._persist(current, updated)

    async def submit_ticket(self, ticket_id: str, actor: Actor) -> Ticket:
        current = await self.get_ticket(ticket_id)
        if not self._state_machine.can_submit(actor.role, current.status):
            raise PreconditionViolation(f"Only draft tickets can be submitted (ticket is {current.status.value})")
        ensure_submittable(current, self._required_fields)

        now = _utcnow()
        entry = history.status_change_entry(
            actor,
            current.status,
            TicketStatus.SUBMITTED,
            changed_at=now,
            reason="Draft submitted",
            change_type="submission",
        )
        updated = replace(
            current,
            status=TicketStatus.SUBMITTED,
            status_history=[*current.status_history, entry],
            updated_at=now,
        )
        saved = await self._persist(current, updated)
        await self._notify(saved, current.status, actor)
        return saved

    async def change_status(
        self,
        ticket_id: str,
        actor: Actor,
        new_status: TicketStatus,
        *,
        reason: str | None = None,
    ) -> Ticket:
        with tracer.start_as_current_span("tickets.change_status") as span:
            span.set_attribute("ticket.id", ticket_id)
            span.set_attribute("ticket.target_status", new_status.value)
            current = await self.get_ticket(ticket_id)
            try:
                npdi.assert_not_handed_over(current)
                self._state_machine.assert_transition(actor.role, current.status, new_status)
            except PreconditionViolation:
                logger.warning(
                    "Rejected status change %s -> %s on %s by %s (%s)",
                    current.status.value,
                    new_status.value,
                    ticket_id,
                    actor.email,
                    actor.role.value,
                )
                raise
            if new_status == current.status:
                return current

            now = _utcnow()
            entry = history.status_change_entry(
                actor,
                current.status,
                new_status,
                changed_at=now,
                reason=reason or f"Status manually changed from {current.status.value} to {new_status.value}",
            )
            updated = replace(
                current,
                status=new_status,
                status_history=[*current.status_history, entry],
                updated_at=now,
            )
            saved = await self._persist(current, updated)
        await self._notify(saved, current.status, actor)
        return saved

    async def initiate_npdi(self, ticket_id: str, actor: Actor, tracking_number: str) -> Ticket:
        with tracer.start_as_current_span("tickets.initiate_npdi") as span:
            span.set_attribute("ticket.id", ticket_id)
            new_number = npdi.normalize_tracking_number(tracking_number)
            current = await self.get_ticket(ticket_id)
            try:
                updated = npdi.initiate_npdi(current, actor, new_number)
            except PreconditionViolation as exc:
                logger.warning("NPDI initiation rejected for %s: %s", ticket_id, exc)
                raise
            if await self._repository.ticket_number_in_use(new_number, exclude_id=current.id):
                raise DuplicateTicketNumberError(
                    f'Ticket number "{new_number}" is already in use by another ticket. '
                    "Please use a unique NPDI tracking number."
                )
            saved = await self._persist(current, updated)
            span.set_attribute("ticket.number", saved.ticket_number)
        await self._notify(saved, current.status, actor)
        return saved

    async def mark_completed(self, ticket_id: str, actor: Actor, *, confirmed: bool) -> Ticket:
        with tracer.start_as_current_span("tickets.mark_completed") as span:
            span.set_attribute("ticket.id", ticket_id)
            current = await self.get_ticket(ticket_id)
            try:
                updated = npdi.mark_completed(current, actor, confirmed=confirmed)
            except (PreconditionViolation, ValidationFailure) as exc:
                logger.warning("Completion rejected for %s by %s: %s", ticket_id, actor.email, exc)
                raise
            saved = await self._persist(current, updated)
        await self._notify(saved, current.status, actor)
        return saved

    async def add_bulk_sku(self, ticket_id: str, actor: Actor) -> Ticket:
        current = await self.get_ticket(ticket_id)
        if not actor.is_privileged:
            raise PreconditionViolation("Only PM-Ops or administrators can add SKU variants")
        npdi.assert_not_handed_over(current)
        self._state_machine.assert_can_edit(actor.role, current.status)

        variant = build_bulk_sku(current)
        updated = replace(current, sku_variants=[*current.sku_variants, variant], updated_at=_utcnow())
        return await self._persist(current, updated)

    async def add_comment(self, ticket_id: str, actor: Actor, content: str) -> Comment:
        text = (content or "").strip()
        if not text:
            raise ValidationFailure("Comment content is required")

        current = await self.get_ticket(ticket_id)
        now = _utcnow()
        comment = Comment(id=str(uuid.uuid4()), author=actor.to_info(), content=text, created_at=now)
        updated = replace(
            current,
            comments=[*current.comments, comment],
            status_history=[*current.status_history, history.comment_entry(actor, current.status, text, changed_at=now)],
            updated_at=now,
        )
        await self._persist(current, updated)
        return comment

    async def get_history(self, ticket_id: str) -> list[StatusHistoryEntry]:
        ticket = await self.get_ticket(ticket_id)
        return list(ticket.status_history)

    def resolve_permissions(self, ticket: Ticket, actor: Actor, *, edit_mode: bool) -> EditPermissions:
        return resolve_permissions(
            actor.role,
            ticket.status,
            edit_mode,
            policy=self._state_machine.policy,
            handed_over=ticket.handed_over,
        )

    async def get_permissions(
        self, ticket_id: str, actor: Actor, *, edit_mode: bool
    ) -> tuple[Ticket, EditPermissions, TicketReminders]:
        ticket = await self.get_ticket(ticket_id)
        permissions = self.resolve_permissions(ticket, actor, edit_mode=edit_mode)
        return ticket, permissions, derive_reminders(ticket, actor.role, edit_mode)

    async def _persist(self, current: Ticket, updated: Ticket) -> Ticket:
        saved = await self._repository.save_ticket(updated, expected_version=current.version)
        if saved is None:
            raise TicketNotFoundError(f"Ticket {current.id} not found")
        return saved

    async def _notify(self, ticket: Ticket, previous: TicketStatus, actor: Actor) -> None:
        if ticket.status == previous:
            return
        try:
            await self._notifier.notify_status_change(ticket, previous, ticket.status, actor)
        except Exception:  # notification delivery never fails the request
            logger.exception("Failed to send status change notification for %s", ticket.id)

    async def _next_ticket_number(self, now: datetime) -> str:
        sequence = await self._repository.count_tickets() + 1
        while True:
            candidate = f"{self._ticket_number_prefix}-{now.year}-{sequence:04d}"
            if not await self._repository.ticket_number_in_use(candidate):
                return candidate
            sequence += 1

    @staticmethod
    def _reject_unknown_fields(fields: Iterable[str]) -> None:
        protected = sorted(PROTECTED_FIELDS.intersection(fields))
        if protected:
            raise ValidationFailure(f"Fields cannot be set directly: {', '.join(protected)}")
        unknown = sorted(set(fields) - EDITABLE_FIELDS)
        if unknown:
            raise ValidationFailure(f"Unknown ticket fields: {', '.join(unknown)}")

    @staticmethod
    def _check_field_permissions(
        ticket: Ticket,
        actor: Actor,
        fields: Mapping[str, Any],
        permissions: EditPermissions,
    ) -> None:
        for field_name in fields:
            section = FIELD_SECTIONS[field_name]
            if permissions.section_editable(section):
                continue
            if section == FormSection.PRICING:
                raise PreconditionViolation(
                    f"Pricing cannot be edited by {actor.role.value} while the ticket is {ticket.status.value}"
                )
            raise PreconditionViolation(f"Section {section.value} is not editable; enable edit mode first")

        if "part_number" in fields and not actor.is_privileged:
            raise PreconditionViolation("Only PM-Ops or administrators can assign part numbers")

        if "quality" in fields and not QUALITY_ATTRIBUTES_EDITABLE:
            new_attributes = (fields["quality"] or {}).get("attributes", ticket.quality.get("attributes"))
            if new_attributes != ticket.quality.get("attributes"):
                raise PreconditionViolation("Quality attributes are fixed once the ticket is created")

    @staticmethod
    def _apply_fields(ticket: Ticket, fields: Mapping[str, Any], actor: Actor, now: datetime) -> Ticket:
        values: dict[str, Any] = {}
        for field_name, value in fields.items():
            if field_name == "sbu":
                if value not in SBU_CODES:
                    raise ValidationFailure(f"Unknown SBU: {value}")
                values["sbu"] = value
            elif field_name == "priority":
                values["priority"] = TicketPriority(value) if value else ticket.priority
            elif field_name == "sku_variants":
                values["sku_variants"] = list(value or [])
            elif field_name == "part_number":
                values["part_number"] = _assign_part_number(ticket.part_number, value, actor, now)
            elif field_name == "product_line":
                if not str(value or "").strip():
                    raise ValidationFailure("Product line must not be empty")
                values["product_line"] = str(value).strip()
            elif field_name == "quality":
                values["quality"] = {**ticket.quality, **(value or {})}
            elif field_name in {
                "pricing_data",
                "chemical_properties",
                "composition",
                "corpbase_data",
                "hazard_classification",
            }:
                values[field_name] = dict(value or {})
            else:
                values[field_name] = value
        return replace(ticket, **values)


def _assign_part_number(
    current: PartNumber | None,
    requested: PartNumber | None,
    actor: Actor,
    now: datetime,
) -> PartNumber | None:
    if requested is None or not requested.base_number.strip():
        return None
    base_number = requested.base_number.strip()
    if current is not None and current.base_number == base_number:
        return current
    return PartNumber(base_number=base_number, assigned_by=actor.email, assigned_at=now)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
