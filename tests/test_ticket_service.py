from __future__ import annotations

import logging
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from app.tickets.errors import (
    DuplicateTicketNumberError,
    PreconditionViolation,
    TicketNotFoundError,
    ValidationFailure,
)
from app.tickets.models import HistoryAction, PackageSize, PartNumber, SkuType
from app.tickets.service import TicketService
from app.tickets.state import LockoutPolicy, TicketPriority, TicketStateMachine, TicketStatus

TRACKING_NUMBER = "100000000000000778902025"

BASIC_FIELDS = {
    "product_name": "Acetonitrile",
    "product_line": "Chromatography",
    "sbu": "775",
    "chemical_properties": {"casNumber": "75-05-8"},
    "quality": {"mqQualityLevel": "MQ200", "attributes": [{"name": "Purity", "value": ">99.9%"}]},
}


async def _ticket_in_process(service, creator, ops, *, part_number="775-0001"):
    ticket = await service.create_ticket(creator, BASIC_FIELDS)
    ticket = await service.change_status(ticket.id, ops, TicketStatus.IN_PROCESS)
    if part_number:
        ticket = await service.update_ticket(ticket.id, ops, {"part_number": PartNumber(base_number=part_number)})
    return ticket


@pytest.mark.asyncio
async def test_create_ticket_assigns_number_and_history(ticket_service, product_manager):
    ticket = await ticket_service.create_ticket(product_manager, {**BASIC_FIELDS, "priority": "HIGH"})

    year = datetime.now(timezone.utc).year
    assert ticket.ticket_number == f"NPDI-{year}-0001"
    assert ticket.status == TicketStatus.SUBMITTED
    assert ticket.priority == TicketPriority.HIGH
    assert ticket.created_by == product_manager.email
    assert ticket.status_history[0].action == HistoryAction.TICKET_CREATED

    second = await ticket_service.create_ticket(product_manager, BASIC_FIELDS)
    assert second.ticket_number == f"NPDI-{year}-0002"


@pytest.mark.asyncio
async def test_create_requires_submission_fields_but_drafts_do_not(ticket_service, product_manager):
    with pytest.raises(ValidationFailure, match="casNumber"):
        await ticket_service.create_ticket(product_manager, {"product_line": "Chromatography"})

    draft = await ticket_service.create_ticket(product_manager, {"product_name": "Unnamed"}, draft=True)
    assert draft.status == TicketStatus.DRAFT
    assert draft.sbu == "P90"


@pytest.mark.asyncio
async def test_create_rejects_protected_and_unknown_fields(ticket_service, product_manager):
    with pytest.raises(ValidationFailure, match="status"):
        await ticket_service.create_ticket(product_manager, {**BASIC_FIELDS, "status": "COMPLETED"})
    with pytest.raises(ValidationFailure, match="colour"):
        await ticket_service.create_ticket(product_manager, {**BASIC_FIELDS, "colour": "blue"})


@pytest.mark.asyncio
async def test_product_manager_cannot_assign_part_number(ticket_service, product_manager):
    with pytest.raises(PreconditionViolation):
        await ticket_service.create_ticket(
            product_manager, {**BASIC_FIELDS, "part_number": PartNumber(base_number="775-0001")}
        )


@pytest.mark.asyncio
async def test_submit_draft(ticket_service, product_manager):
    draft = await ticket_service.create_ticket(product_manager, BASIC_FIELDS, draft=True)

    submitted = await ticket_service.submit_ticket(draft.id, product_manager)

    assert submitted.status == TicketStatus.SUBMITTED
    assert submitted.status_history[-1].details["changeType"] == "submission"
    with pytest.raises(PreconditionViolation):
        await ticket_service.submit_ticket(draft.id, product_manager)


@pytest.mark.asyncio
async def test_product_manager_locked_out_after_submission_window(ticket_service, product_manager, pm_ops):
    ticket = await ticket_service.create_ticket(product_manager, BASIC_FIELDS)
    edited = await ticket_service.update_ticket(ticket.id, product_manager, {"product_name": "Acetonitrile HPLC"})
    assert edited.status_history[-1].action == HistoryAction.TICKET_EDIT

    await ticket_service.change_status(ticket.id, pm_ops, TicketStatus.IN_PROCESS)

    with pytest.raises(PreconditionViolation):
        await ticket_service.update_ticket(ticket.id, product_manager, {"product_name": "Too late"})


@pytest.mark.asyncio
async def test_product_manager_cannot_change_status(ticket_service, product_manager):
    ticket = await ticket_service.create_ticket(product_manager, BASIC_FIELDS)

    with pytest.raises(PreconditionViolation):
        await ticket_service.change_status(ticket.id, product_manager, TicketStatus.IN_PROCESS)


@pytest.mark.asyncio
async def test_pricing_edit_requires_edit_mode_for_pm_ops(ticket_service, product_manager, pm_ops):
    ticket = await _ticket_in_process(ticket_service, product_manager, pm_ops)

    with pytest.raises(PreconditionViolation, match="Pricing"):
        await ticket_service.update_ticket(ticket.id, pm_ops, {"pricing_data": {"margin": 45}}, edit_mode=False)

    updated = await ticket_service.update_ticket(ticket.id, pm_ops, {"pricing_data": {"margin": 45}})
    assert updated.pricing_data == {"margin": 45}


@pytest.mark.asyncio
async def test_quality_attributes_are_fixed_but_level_is_editable(ticket_service, product_manager):
    ticket = await ticket_service.create_ticket(product_manager, BASIC_FIELDS)

    updated = await ticket_service.update_ticket(ticket.id, product_manager, {"quality": {"mqQualityLevel": "MQ300"}})
    assert updated.quality["mqQualityLevel"] == "MQ300"
    assert updated.quality["attributes"] == BASIC_FIELDS["quality"]["attributes"]

    with pytest.raises(PreconditionViolation):
        await ticket_service.update_ticket(ticket.id, product_manager, {"quality": {"attributes": []}})


@pytest.mark.asyncio
async def test_part_number_assignment_is_recorded(ticket_service, product_manager, pm_ops):
    ticket = await _ticket_in_process(ticket_service, product_manager, pm_ops)

    assert ticket.part_number.base_number == "775-0001"
    assert ticket.part_number.assigned_by == pm_ops.email
    assert ticket.status_history[-1].action == HistoryAction.SKU_ASSIGNMENT


@pytest.mark.asyncio
async def test_npdi_initiation_end_to_end(ticket_service, product_manager, pm_ops):
    ticket = await _ticket_in_process(ticket_service, product_manager, pm_ops)
    original_number = ticket.ticket_number

    initiated = await ticket_service.initiate_npdi(ticket.id, pm_ops, TRACKING_NUMBER)

    assert initiated.ticket_number == TRACKING_NUMBER
    assert initiated.status == TicketStatus.NPDI_INITIATED
    assert (await ticket_service.get_ticket_by_number(TRACKING_NUMBER)).id == ticket.id
    with pytest.raises(TicketNotFoundError):
        await ticket_service.get_ticket_by_number(original_number)

    with pytest.raises(PreconditionViolation):
        await ticket_service.update_ticket(ticket.id, pm_ops, {"product_name": "Locked"})
    with pytest.raises(PreconditionViolation):
        await ticket_service.change_status(ticket.id, pm_ops, TicketStatus.IN_PROCESS)
    with pytest.raises(PreconditionViolation):
        await ticket_service.initiate_npdi(ticket.id, pm_ops, "another")

    completed = await ticket_service.mark_completed(ticket.id, pm_ops, confirmed=True)
    assert completed.status == TicketStatus.COMPLETED
    assert completed.ticket_number == TRACKING_NUMBER


@pytest.mark.asyncio
async def test_npdi_initiation_rejects_whitespace_before_lookup(ticket_service, pm_ops):
    with pytest.raises(ValidationFailure):
        await ticket_service.initiate_npdi("missing", pm_ops, "   ")


@pytest.mark.asyncio
async def test_npdi_tracking_number_must_be_unique(ticket_service, product_manager, pm_ops):
    other = await ticket_service.create_ticket(product_manager, BASIC_FIELDS)
    ticket = await _ticket_in_process(ticket_service, product_manager, pm_ops)

    with pytest.raises(DuplicateTicketNumberError):
        await ticket_service.initiate_npdi(ticket.id, pm_ops, other.ticket_number)

    unchanged = await ticket_service.get_ticket(ticket.id)
    assert unchanged.status == TicketStatus.IN_PROCESS


@pytest.mark.asyncio
async def test_add_bulk_sku(ticket_service, product_manager, pm_ops):
    ticket = await _ticket_in_process(ticket_service, product_manager, pm_ops)
    ticket = await ticket_service.update_ticket(ticket.id, pm_ops, {"base_unit": PackageSize(value=1, unit="kg")})

    updated = await ticket_service.add_bulk_sku(ticket.id, pm_ops)

    assert [variant.type for variant in updated.sku_variants] == [SkuType.BULK]
    assert updated.sku_variants[0].sku == "775-0001-BULK"
    with pytest.raises(ValidationFailure):
        await ticket_service.add_bulk_sku(ticket.id, pm_ops)
    with pytest.raises(PreconditionViolation):
        await ticket_service.add_bulk_sku(ticket.id, product_manager)


@pytest.mark.asyncio
async def test_comments_are_appended_with_history(ticket_service, product_manager, pm_ops):
    ticket = await ticket_service.create_ticket(product_manager, BASIC_FIELDS)

    comment = await ticket_service.add_comment(ticket.id, pm_ops, "  Please confirm the CAS number  ")

    assert comment.content == "Please confirm the CAS number"
    history = await ticket_service.get_history(ticket.id)
    assert history[-1].action == HistoryAction.COMMENT_ADDED
    with pytest.raises(ValidationFailure):
        await ticket_service.add_comment(ticket.id, pm_ops, "   ")


@pytest.mark.asyncio
async def test_comments_allowed_after_npdi_lock(ticket_service, product_manager, pm_ops):
    ticket = await _ticket_in_process(ticket_service, product_manager, pm_ops)
    await ticket_service.initiate_npdi(ticket.id, pm_ops, TRACKING_NUMBER)

    await ticket_service.add_comment(ticket.id, product_manager, "Thanks")

    assert len((await ticket_service.get_ticket(ticket.id)).comments) == 1


@pytest.mark.asyncio
async def test_get_permissions_matches_guards(ticket_service, product_manager, pm_ops):
    ticket = await _ticket_in_process(ticket_service, product_manager, pm_ops)

    _, permissions, reminders = await ticket_service.get_permissions(ticket.id, pm_ops, edit_mode=False)

    assert permissions.can_edit_ticket
    assert not permissions.can_edit_pricing
    assert reminders.npdi_ready


@pytest.mark.asyncio
async def test_npdi_only_policy_allows_editing_completed_tickets(repository, product_manager, pm_ops):
    service = TicketService(repository, state_machine=TicketStateMachine(LockoutPolicy.NPDI_ONLY))
    ticket = await service.create_ticket(product_manager, BASIC_FIELDS)
    await service.change_status(ticket.id, pm_ops, TicketStatus.COMPLETED)

    updated = await service.update_ticket(ticket.id, pm_ops, {"product_name": "Reopened"})

    assert updated.product_name == "Reopened"


@pytest.mark.asyncio
async def test_notifier_failures_do_not_fail_status_change(repository, product_manager, pm_ops):
    notifier = AsyncMock()
    notifier.notify_status_change = AsyncMock(side_effect=RuntimeError("smtp down"))
    service = TicketService(repository, notifier=notifier)
    ticket = await service.create_ticket(product_manager, BASIC_FIELDS)

    updated = await service.change_status(ticket.id, pm_ops, TicketStatus.IN_PROCESS, reason="Picked up")

    assert updated.status == TicketStatus.IN_PROCESS
    assert "Picked up" in updated.status_history[-1].reason
    notifier.notify_status_change.assert_awaited_once()


@pytest.mark.asyncio
async def test_missing_ticket_raises_not_found():
    repository = AsyncMock()
    repository.get_ticket = AsyncMock(return_value=None)
    service = TicketService(repository)

    with pytest.raises(TicketNotFoundError):
        await service.get_ticket("missing")
    repository.get_ticket.assert_awaited_with("missing")


@pytest.mark.asyncio
async def test_completed_npdi_ticket_cannot_be_reopened_or_renamed(ticket_service, product_manager, pm_ops, admin):
    ticket = await _ticket_in_process(ticket_service, product_manager, pm_ops)
    await ticket_service.initiate_npdi(ticket.id, pm_ops, TRACKING_NUMBER)
    await ticket_service.mark_completed(ticket.id, pm_ops, confirmed=True)

    with pytest.raises(PreconditionViolation):
        await ticket_service.change_status(ticket.id, admin, TicketStatus.IN_PROCESS)
    with pytest.raises(PreconditionViolation):
        await ticket_service.update_ticket(ticket.id, admin, {"product_name": "Renamed"})
    with pytest.raises(PreconditionViolation):
        await ticket_service.add_bulk_sku(ticket.id, admin)
    with pytest.raises(PreconditionViolation):
        await ticket_service.initiate_npdi(ticket.id, admin, "NPDI-2025-0099")

    stored = await ticket_service.get_ticket(ticket.id)
    assert stored.status == TicketStatus.COMPLETED
    assert stored.ticket_number == TRACKING_NUMBER
    assert stored.product_name == BASIC_FIELDS["product_name"]
    npdi_entries = [entry for entry in stored.status_history if entry.action == HistoryAction.NPDI_INITIATED]
    assert len(npdi_entries) == 1


@pytest.mark.asyncio
async def test_handed_over_ticket_stays_locked_under_npdi_only_policy(repository, product_manager, pm_ops):
    service = TicketService(repository, state_machine=TicketStateMachine(LockoutPolicy.NPDI_ONLY))
    ticket = await _ticket_in_process(service, product_manager, pm_ops)
    await service.initiate_npdi(ticket.id, pm_ops, TRACKING_NUMBER)
    await service.mark_completed(ticket.id, pm_ops, confirmed=True)

    _, permissions, reminders = await service.get_permissions(ticket.id, pm_ops, edit_mode=True)

    assert not permissions.can_edit_ticket
    assert not any(permissions.sections.values())
    assert reminders.npdi_locked
    with pytest.raises(PreconditionViolation):
        await service.update_ticket(ticket.id, pm_ops, {"product_name": "Reopened"})


@pytest.mark.asyncio
async def test_rejected_completion_is_logged(ticket_service, product_manager, pm_ops, caplog):
    ticket = await ticket_service.create_ticket(product_manager, BASIC_FIELDS)
    caplog.set_level(logging.WARNING, logger="app.tickets.service")

    with pytest.raises(ValidationFailure):
        await ticket_service.mark_completed(ticket.id, pm_ops, confirmed=False)
    with pytest.raises(PreconditionViolation):
        await ticket_service.mark_completed(ticket.id, pm_ops, confirmed=True)

    messages = [record.getMessage() for record in caplog.records if record.name == "app.tickets.service"]
    assert len(messages) == 2
    assert all(message.startswith(f"Completion rejected for {ticket.id}") for message in messages)


@pytest.mark.asyncio
async def test_quality_attribute_lock_follows_module_flag(ticket_service, product_manager, monkeypatch):
    ticket = await ticket_service.create_ticket(product_manager, BASIC_FIELDS)
    monkeypatch.setattr("app.tickets.service.QUALITY_ATTRIBUTES_EDITABLE", True)

    updated = await ticket_service.update_ticket(ticket.id, product_manager, {"quality": {"attributes": []}})

    assert updated.quality["attributes"] == []
