from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from app.tickets.errors import ConflictOnApply, DuplicateTicketNumberError
from app.tickets.history import comment_entry, created_entry
from app.tickets.models import Comment, PackageSize, SkuType, SkuVariant
from app.tickets.state import TicketPriority, TicketStatus


@pytest.mark.asyncio
async def test_create_and_get_ticket_round_trips_aggregate(repository, ticket_factory, product_manager):
    ticket = ticket_factory(
        part_number="775-0001",
        sku_variants=[SkuVariant(type=SkuType.BULK, package_size=PackageSize(value=1, unit="kg"), sku="775-0001-BULK")],
        pricing_data={"margin": 50},
    )
    ticket.status_history = [created_entry(product_manager, ticket.status, changed_at=ticket.created_at)]

    await repository.create_ticket(ticket)
    loaded = await repository.get_ticket(ticket.id)

    assert loaded is not None
    assert loaded.ticket_number == ticket.ticket_number
    assert loaded.part_number.base_number == "775-0001"
    assert loaded.sku_variants[0].type == SkuType.BULK
    assert loaded.base_unit == PackageSize(value=1, unit="kg")
    assert loaded.chemical_properties == {"casNumber": "75-05-8"}
    assert loaded.status_history[0].actor.email == product_manager.email
    assert loaded.created_at.tzinfo is not None
    assert loaded.version == 1


@pytest.mark.asyncio
async def test_missing_ticket_returns_none(repository):
    assert await repository.get_ticket("missing") is None
    assert await repository.get_by_ticket_number("NPDI-0000") is None


@pytest.mark.asyncio
async def test_duplicate_ticket_number_is_rejected(repository, ticket_factory):
    await repository.create_ticket(ticket_factory(ticket_number="NPDI-2025-0007"))

    with pytest.raises(DuplicateTicketNumberError):
        await repository.create_ticket(ticket_factory(ticket_number="NPDI-2025-0007"))


@pytest.mark.asyncio
async def test_ticket_number_in_use_excludes_own_id(repository, ticket_factory):
    ticket = ticket_factory(ticket_number="NPDI-2025-0009")
    await repository.create_ticket(ticket)

    assert await repository.ticket_number_in_use("NPDI-2025-0009")
    assert not await repository.ticket_number_in_use("NPDI-2025-0009", exclude_id=ticket.id)
    assert await repository.count_tickets() == 1


@pytest.mark.asyncio
async def test_save_ticket_bumps_version_and_appends_history(repository, ticket_factory, pm_ops):
    ticket = ticket_factory()
    ticket.status_history = [created_entry(pm_ops, ticket.status, changed_at=ticket.created_at)]
    await repository.create_ticket(ticket)

    now = datetime.now(timezone.utc)
    comment = Comment(id="c-1", author=pm_ops.to_info(), content="Looks good", created_at=now)
    updated = replace(
        ticket,
        status=TicketStatus.IN_PROCESS,
        comments=[comment],
        status_history=[*ticket.status_history, comment_entry(pm_ops, ticket.status, "Looks good", changed_at=now)],
    )

    saved = await repository.save_ticket(updated, expected_version=1)
    loaded = await repository.get_ticket(ticket.id)

    assert saved.version == 2
    assert loaded.version == 2
    assert loaded.status == TicketStatus.IN_PROCESS
    assert [entry.id for entry in loaded.status_history] == [entry.id for entry in updated.status_history]
    assert loaded.comments[0].content == "Looks good"
    assert len(await repository.get_history(ticket.id)) == 2


@pytest.mark.asyncio
async def test_stale_save_raises_conflict(repository, ticket_factory):
    ticket = ticket_factory()
    await repository.create_ticket(ticket)
    first = await repository.get_ticket(ticket.id)
    second = await repository.get_ticket(ticket.id)

    await repository.save_ticket(replace(first, product_name="First"), expected_version=first.version)

    with pytest.raises(ConflictOnApply):
        await repository.save_ticket(replace(second, product_name="Second"), expected_version=second.version)
    assert (await repository.get_ticket(ticket.id)).product_name == "First"


@pytest.mark.asyncio
async def test_save_missing_ticket_returns_none(repository, ticket_factory):
    assert await repository.save_ticket(ticket_factory(), expected_version=1) is None


@pytest.mark.asyncio
async def test_rename_is_visible_by_new_number_only(repository, ticket_factory):
    ticket = ticket_factory(ticket_number="NPDI-2025-0001")
    await repository.create_ticket(ticket)

    await repository.save_ticket(replace(ticket, ticket_number="100000000000000778902025"), expected_version=1)

    assert await repository.get_by_ticket_number("NPDI-2025-0001") is None
    renamed = await repository.get_by_ticket_number("100000000000000778902025")
    assert renamed.id == ticket.id


@pytest.mark.asyncio
async def test_list_tickets_filters_and_paginates(repository, ticket_factory):
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)
    for index in range(3):
        await repository.create_ticket(
            ticket_factory(
                ticket_number=f"NPDI-2025-000{index + 1}",
                created_at=base + timedelta(days=index),
                updated_at=base + timedelta(days=index),
                priority=TicketPriority.HIGH if index == 0 else TicketPriority.LOW,
            )
        )
    await repository.create_ticket(ticket_factory(ticket_number="NPDI-2025-0099", status=TicketStatus.COMPLETED))

    page = await repository.list_tickets(page=1, limit=2)
    assert page.total == 3
    assert page.pages == 2
    assert [ticket.ticket_number for ticket in page.tickets] == ["NPDI-2025-0003", "NPDI-2025-0002"]

    high = await repository.list_tickets(priority=TicketPriority.HIGH)
    assert [ticket.ticket_number for ticket in high.tickets] == ["NPDI-2025-0001"]

    archived = await repository.list_tickets(archived=True)
    assert [ticket.ticket_number for ticket in archived.tickets] == ["NPDI-2025-0099"]

    explicit = await repository.list_tickets(statuses=[TicketStatus.COMPLETED])
    assert explicit.total == 1


@pytest.mark.asyncio
async def test_list_tickets_search_matches_name_and_number(repository, ticket_factory):
    await repository.create_ticket(ticket_factory(ticket_number="NPDI-2025-0001", product_name="Methanol"))
    await repository.create_ticket(ticket_factory(ticket_number="NPDI-2025-0002", product_name="Ethanol"))

    by_name = await repository.list_tickets(search="ethanol")
    assert by_name.total == 2

    by_number = await repository.list_tickets(search="0002")
    assert [ticket.product_name for ticket in by_number.tickets] == ["Ethanol"]
