"""SQLModel table definitions for the NPDI portal data layer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


class ProductTicketTable(SQLModel, table=True):
    """Product introduction tickets."""

    __tablename__ = "product_tickets"

    id: str = Field(primary_key=True, index=True)
    ticket_number: str = Field(sa_column=Column(String(100), nullable=False, unique=True, index=True))
    product_name: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    product_line: str = Field(sa_column=Column(String(255), nullable=False))
    sbu: str = Field(sa_column=Column(String(10), nullable=False))
    status: str = Field(sa_column=Column(String(50), nullable=False, index=True))
    priority: str = Field(sa_column=Column(String(20), nullable=False))
    created_by: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    assigned_to: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    part_number: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    npdi_tracking: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    base_unit: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    sku_variants: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    pricing_data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    chemical_properties: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    quality: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    composition: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    corpbase_data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    hazard_classification: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    version: int = Field(default=1, sa_column=Column(Integer, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketStatusHistoryTable(SQLModel, table=True):
    """Append-only activity history of a ticket."""

    __tablename__ = "ticket_status_history"

    id: str = Field(primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("product_tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    position: int = Field(sa_column=Column(Integer, nullable=False))
    action: str = Field(sa_column=Column(String(50), nullable=False))
    status: str = Field(sa_column=Column(String(50), nullable=False))
    actor: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    reason: str = Field(default="", sa_column=Column(Text, nullable=False))
    details: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    changed_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketCommentTable(SQLModel, table=True):
    """Comments left on a ticket."""

    __tablename__ = "ticket_comments"

    id: str = Field(primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("product_tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    position: int = Field(sa_column=Column(Integer, nullable=False))
    author: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    content: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
