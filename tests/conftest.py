from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.tickets.models import Actor, PackageSize, PartNumber, Ticket
from app.tickets.repository import TicketRepository
from app.tickets.service import TicketService
from app.tickets.state import ActorRole, TicketStatus


@pytest.fixture(autouse=True)
def _restore_logging_state():
    """Undo global logging changes (e.g. ``configure_logging``) between tests."""

    root = logging.getLogger()
    root_level, root_handlers = root.level, list(root.handlers)
    levels = {
        name: logger.level
        for name, logger in logging.Logger.manager.loggerDict.items()
        if isinstance(logger, logging.Logger)
    }
    try:
        yield
    finally:
        root.setLevel(root_level)
        root.handlers[:] = root_handlers
        for name, logger in logging.Logger.manager.loggerDict.items():
            if isinstance(logger, logging.Logger):
                logger.setLevel(levels.get(name, logging.NOTSET))


@pytest.fixture
def product_manager() -> Actor:
    return Actor(email="pm@example.com", role=ActorRole.PRODUCT_MANAGER, first_name="Pat", last_name="Manager")


@pytest.fixture
def pm_ops() -> Actor:
    return Actor(email="ops@example.com", role=ActorRole.PM_OPS, first_name="Olive", last_name="Ops")


@pytest.fixture
def admin() -> Actor:
    return Actor(email="admin@example.com", role=ActorRole.ADMIN, first_name="Ada", last_name="Admin")


def make_ticket(
    *,
    status: TicketStatus = TicketStatus.SUBMITTED,
    ticket_number: str = "NPDI-2025-0001",
    part_number: str | None = None,
    **overrides,
) -> Ticket:
    now = datetime.now(timezone.utc)
    values = {
        "id": str(uuid4()),
        "ticket_number": ticket_number,
        "status": status,
        "product_line": "Chromatography",
        "sbu": "P90",
        "created_at": now,
        "updated_at": now,
        "product_name": "Acetonitrile",
        "created_by": "pm@example.com",
        "chemical_properties": {"casNumber": "75-05-8"},
        "base_unit": PackageSize(value=1, unit="kg"),
    }
    if part_number is not None:
        values["part_number"] = PartNumber(base_number=part_number, assigned_by="ops@example.com", assigned_at=now)
    values.update(overrides)
    return Ticket(**values)


@pytest.fixture
def ticket_factory():
    return make_ticket


@pytest_asyncio.fixture
async def repository(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tickets.db'}", future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    repo = TicketRepository(session_factory, engine=engine)
    await repo.ensure_schema()
    try:
        yield repo
    finally:
        await engine.dispose()


@pytest.fixture
def ticket_service(repository) -> TicketService:
    return TicketService(repository)
