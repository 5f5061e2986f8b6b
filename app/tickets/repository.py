from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from packages.db.models import ProductTicketTable, TicketCommentTable, TicketStatusHistoryTable

from .errors import ConflictOnApply, DuplicateTicketNumberError
from .models import (
    ActorInfo,
    Comment,
    HistoryAction,
    NpdiTracking,
    PackageSize,
    PartNumber,
    SkuVariant,
    StatusHistoryEntry,
    Ticket,
)
from .state import ARCHIVED_STATUSES, TicketPriority, TicketStatus


@dataclass(slots=True)
class TicketPage:
    """One page of a ticket listing."""

    tickets: list[Ticket]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit


class TicketRepository:
    """Persistence helper wrapping `product_tickets`, history and comments.

    Tickets are written whole: :meth:`save_ticket` applies the complete new
    record in one transaction, conditioned on the version the change was
    computed from.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    async def count_tickets(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(select(func.count()).select_from(ProductTicketTable))
            return int(result.scalar_one())

    async def create_ticket(self, ticket: Ticket) -> Ticket:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(ProductTicketTable(id=ticket.id, version=ticket.version, **self._ticket_values(ticket)))
                    for position, entry in enumerate(ticket.status_history):
                        session.add(self._history_to_table(ticket.id, position, entry))
                    for position, comment in enumerate(ticket.comments):
                        session.add(self._comment_to_table(ticket.id, position, comment))
        except IntegrityError as exc:
            raise DuplicateTicketNumberError(f"Ticket number {ticket.ticket_number} is already in use") from exc
        return ticket

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        async with self._session_factory() as session:
            row = await session.get(ProductTicketTable, ticket_id)
            if row is None:
                return None
            return await self._load_aggregate(session, row)

    async def get_by_ticket_number(self, ticket_number: str) -> Ticket | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ProductTicketTable).where(ProductTicketTable.ticket_number == ticket_number)
            )
            row = result.scalars().first()
            if row is None:
                return None
            return await self._load_aggregate(session, row)

    async def ticket_number_in_use(self, ticket_number: str, *, exclude_id: str | None = None) -> bool:
        statement = select(ProductTicketTable.id).where(ProductTicketTable.ticket_number == ticket_number)
        if exclude_id is not None:
            statement = statement.where(ProductTicketTable.id != exclude_id)
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return result.first() is not None

    async def list_tickets(
        self,
        *,
        statuses: Sequence[TicketStatus] | None = None,
        archived: bool = False,
        priority: TicketPriority | None = None,
        sbu: str | None = None,
        search: str | None = None,
        created_by: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> TicketPage:
        archived_values = [status.value for status in ARCHIVED_STATUSES]
        conditions: list[Any] = []
        if archived:
            conditions.append(ProductTicketTable.status.in_(archived_values))
        elif statuses:
            conditions.append(ProductTicketTable.status.in_([status.value for status in statuses]))
        else:
            conditions.append(ProductTicketTable.status.not_in(archived_values))
        if priority is not None:
            conditions.append(ProductTicketTable.priority == priority.value)
        if sbu:
            conditions.append(ProductTicketTable.sbu == sbu)
        if created_by:
            conditions.append(ProductTicketTable.created_by == created_by)
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(
                    ProductTicketTable.product_name.ilike(pattern),
                    ProductTicketTable.ticket_number.ilike(pattern),
                    ProductTicketTable.chemical_properties["casNumber"].as_string().ilike(pattern),
                )
            )

        order = ProductTicketTable.updated_at.desc() if archived else ProductTicketTable.created_at.desc()
        page = max(page, 1)
        limit = max(limit, 1)
        async with self._session_factory() as session:
            count_result = await session.execute(
                select(func.count()).select_from(ProductTicketTable).where(*conditions)
            )
            result = await session.execute(
                select(ProductTicketTable)
                .where(*conditions)
                .order_by(order)
                .offset((page - 1) * limit)
                .limit(limit)
            )
            tickets = [await self._load_aggregate(session, row) for row in result.scalars().all()]
            return TicketPage(tickets=tickets, total=int(count_result.scalar_one()), page=page, limit=limit)

    async def save_ticket(self, ticket: Ticket, *, expected_version: int) -> Ticket | None:
        """Persist ``ticket`` if the stored version still equals ``expected_version``.

        Returns ``None`` when the ticket no longer exists. History entries and
        comments are append-only: only the ones beyond the stored count are
        inserted.
        """

        new_version = expected_version + 1
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(ProductTicketTable)
                        .where(
                            ProductTicketTable.id == ticket.id,
                            ProductTicketTable.version == expected_version,
                        )
                        .values(version=new_version, **self._ticket_values(ticket))
                    )
                    if result.rowcount == 0:
                        exists = await session.get(ProductTicketTable, ticket.id)
                        if exists is None:
                            return None
                        raise ConflictOnApply(
                            f"Ticket {ticket.id} was modified concurrently "
                            f"(expected version {expected_version}, found {exists.version})"
                        )

                    stored_history = await self._count_rows(session, TicketStatusHistoryTable, ticket.id)
                    for position, entry in enumerate(ticket.status_history[stored_history:], start=stored_history):
                        session.add(self._history_to_table(ticket.id, position, entry))
                    stored_comments = await self._count_rows(session, TicketCommentTable, ticket.id)
                    for position, comment in enumerate(ticket.comments[stored_comments:], start=stored_comments):
                        session.add(self._comment_to_table(ticket.id, position, comment))
        except IntegrityError as exc:
            raise DuplicateTicketNumberError(f"Ticket number {ticket.ticket_number} is already in use") from exc
        return replace(ticket, version=new_version)

    async def get_history(self, ticket_id: str) -> list[StatusHistoryEntry]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketStatusHistoryTable)
                .where(TicketStatusHistoryTable.ticket_id == ticket_id)
                .order_by(TicketStatusHistoryTable.position.asc())
            )
            return [self._table_to_history(row) for row in result.scalars().all()]

    @staticmethod
    async def _count_rows(session: AsyncSession, table: Any, ticket_id: str) -> int:
        result = await session.execute(select(func.count()).select_from(table).where(table.ticket_id == ticket_id))
        return int(result.scalar_one())

    async def _load_aggregate(self, session: AsyncSession, row: ProductTicketTable) -> Ticket:
        history_result = await session.execute(
            select(TicketStatusHistoryTable)
            .where(TicketStatusHistoryTable.ticket_id == row.id)
            .order_by(TicketStatusHistoryTable.position.asc())
        )
        comment_result = await session.execute(
            select(TicketCommentTable)
            .where(TicketCommentTable.ticket_id == row.id)
            .order_by(TicketCommentTable.position.asc())
        )
        history = [self._table_to_history(entry) for entry in history_result.scalars().all()]
        comments = [self._table_to_comment(comment) for comment in comment_result.scalars().all()]
        return self._table_to_ticket(row, history, comments)

    @staticmethod
    def _ticket_values(ticket: Ticket) -> dict[str, Any]:
        return {
            "ticket_number": ticket.ticket_number,
            "product_name": ticket.product_name,
            "product_line": ticket.product_line,
            "sbu": ticket.sbu,
            "status": ticket.status.value,
            "priority": ticket.priority.value,
            "created_by": ticket.created_by,
            "assigned_to": ticket.assigned_to,
            "part_number": ticket.part_number.to_payload() if ticket.part_number else None,
            "npdi_tracking": ticket.npdi_tracking.to_payload() if ticket.npdi_tracking else None,
            "base_unit": ticket.base_unit.to_payload() if ticket.base_unit else None,
            "sku_variants": [variant.to_payload() for variant in ticket.sku_variants],
            "pricing_data": dict(ticket.pricing_data),
            "chemical_properties": dict(ticket.chemical_properties),
            "quality": dict(ticket.quality),
            "composition": dict(ticket.composition),
            "corpbase_data": dict(ticket.corpbase_data),
            "hazard_classification": dict(ticket.hazard_classification),
            "created_at": ticket.created_at,
            "updated_at": ticket.updated_at,
        }

    @staticmethod
    def _history_to_table(ticket_id: str, position: int, entry: StatusHistoryEntry) -> TicketStatusHistoryTable:
        return TicketStatusHistoryTable(
            id=entry.id,
            ticket_id=ticket_id,
            position=position,
            action=entry.action.value,
            status=entry.status.value,
            actor=entry.actor.to_payload() if entry.actor else None,
            reason=entry.reason,
            details=dict(entry.details),
            changed_at=entry.changed_at,
        )

    @staticmethod
    def _comment_to_table(ticket_id: str, position: int, comment: Comment) -> TicketCommentTable:
        return TicketCommentTable(
            id=comment.id,
            ticket_id=ticket_id,
            position=position,
            author=comment.author.to_payload(),
            content=comment.content,
            created_at=comment.created_at,
        )

    @staticmethod
    def _table_to_ticket(
        row: ProductTicketTable,
        history: list[StatusHistoryEntry],
        comments: list[Comment],
    ) -> Ticket:
        return Ticket(
            id=row.id,
            ticket_number=row.ticket_number,
            status=TicketStatus(row.status),
            product_line=row.product_line,
            sbu=row.sbu,
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
            priority=TicketPriority(row.priority),
            product_name=row.product_name,
            created_by=row.created_by,
            assigned_to=row.assigned_to,
            part_number=PartNumber.from_payload(row.part_number),
            npdi_tracking=NpdiTracking.from_payload(row.npdi_tracking),
            base_unit=PackageSize.from_payload(row.base_unit),
            sku_variants=[SkuVariant.from_payload(variant) for variant in row.sku_variants or []],
            status_history=history,
            comments=comments,
            pricing_data=dict(row.pricing_data or {}),
            chemical_properties=dict(row.chemical_properties or {}),
            quality=dict(row.quality or {}),
            composition=dict(row.composition or {}),
            corpbase_data=dict(row.corpbase_data or {}),
            hazard_classification=dict(row.hazard_classification or {}),
            version=row.version,
        )

    @staticmethod
    def _table_to_history(row: TicketStatusHistoryTable) -> StatusHistoryEntry:
        return StatusHistoryEntry(
            id=row.id,
            action=HistoryAction(row.action),
            status=TicketStatus(row.status),
            changed_at=_ensure_datetime(row.changed_at),
            actor=ActorInfo.from_payload(row.actor),
            reason=row.reason,
            details=dict(row.details or {}),
        )

    @staticmethod
    def _table_to_comment(row: TicketCommentTable) -> Comment:
        author = ActorInfo.from_payload(row.author) or ActorInfo(email="", first_name="", last_name="", role="")
        return Comment(
            id=row.id,
            author=author,
            content=row.content,
            created_at=_ensure_datetime(row.created_at),
        )


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")
