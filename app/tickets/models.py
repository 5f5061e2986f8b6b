from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from .state import ActorRole, TicketPriority, TicketStatus, is_privileged

SBU_CODES: tuple[str, ...] = ("775", "P90", "440", "P87", "P89", "P85")
PACKAGE_UNITS: tuple[str, ...] = ("mg", "g", "kg", "mL", "L", "units", "vials", "plates", "bulk")

_ROLE_DISPLAY_NAMES: Mapping[ActorRole, str] = {
    ActorRole.PRODUCT_MANAGER: "Product Manager",
    ActorRole.PM_OPS: "PMOps",
    ActorRole.ADMIN: "Administrator",
}


class HistoryAction(str, Enum):
    """Kinds of entries recorded in a ticket's status history."""

    TICKET_CREATED = "TICKET_CREATED"
    STATUS_CHANGE = "STATUS_CHANGE"
    SKU_ASSIGNMENT = "SKU_ASSIGNMENT"
    TICKET_EDIT = "TICKET_EDIT"
    COMMENT_ADDED = "COMMENT_ADDED"
    NPDI_INITIATED = "NPDI_INITIATED"


class SkuType(str, Enum):
    BULK = "BULK"
    CONF = "CONF"
    SPEC = "SPEC"
    VAR = "VAR"
    PREPACK = "PREPACK"


@dataclass(frozen=True, slots=True)
class ActorInfo:
    """Snapshot of the acting user stored alongside history entries."""

    email: str
    first_name: str
    last_name: str
    role: str

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_payload(self) -> dict[str, str]:
        return {
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "role": self.role,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "ActorInfo | None":
        if not payload:
            return None
        return cls(
            email=str(payload.get("email", "")),
            first_name=str(payload.get("firstName", "")),
            last_name=str(payload.get("lastName", "")),
            role=str(payload.get("role", "")),
        )


@dataclass(frozen=True, slots=True)
class Actor:
    """The authenticated user performing an action."""

    email: str
    role: ActorRole
    first_name: str = "Unknown"
    last_name: str = "User"
    sbu: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN

    @property
    def is_pm_ops(self) -> bool:
        return self.role == ActorRole.PM_OPS

    @property
    def is_product_manager(self) -> bool:
        return self.role == ActorRole.PRODUCT_MANAGER

    @property
    def is_privileged(self) -> bool:
        return is_privileged(self.role)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_info(self) -> ActorInfo:
        return ActorInfo(
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
            role=_ROLE_DISPLAY_NAMES.get(self.role, self.role.value),
        )


@dataclass(frozen=True, slots=True)
class PackageSize:
    value: float
    unit: str

    def to_payload(self) -> dict[str, Any]:
        return {"value": self.value, "unit": self.unit}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "PackageSize | None":
        if not payload or payload.get("value") is None:
            return None
        return cls(value=float(payload["value"]), unit=str(payload.get("unit") or "g"))


@dataclass(frozen=True, slots=True)
class PartNumber:
    base_number: str
    assigned_by: str | None = None
    assigned_at: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "baseNumber": self.base_number,
            "assignedBy": self.assigned_by,
            "assignedAt": self.assigned_at.isoformat() if self.assigned_at else None,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "PartNumber | None":
        if not payload or not payload.get("baseNumber"):
            return None
        return cls(
            base_number=str(payload["baseNumber"]),
            assigned_by=payload.get("assignedBy"),
            assigned_at=_parse_datetime(payload.get("assignedAt")),
        )


@dataclass(frozen=True, slots=True)
class NpdiTracking:
    """Link to the external NPDI record, present only after initiation."""

    tracking_number: str
    initiated_by: str
    initiated_at: datetime

    def to_payload(self) -> dict[str, Any]:
        return {
            "trackingNumber": self.tracking_number,
            "initiatedBy": self.initiated_by,
            "initiatedAt": self.initiated_at.isoformat(),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "NpdiTracking | None":
        if not payload or not payload.get("trackingNumber"):
            return None
        initiated_at = _parse_datetime(payload.get("initiatedAt"))
        if initiated_at is None:
            raise ValueError("NPDI tracking record is missing initiatedAt")
        return cls(
            tracking_number=str(payload["trackingNumber"]),
            initiated_by=str(payload.get("initiatedBy") or ""),
            initiated_at=initiated_at,
        )


@dataclass(frozen=True, slots=True)
class SkuVariant:
    """A packaging/pricing configuration attached to a ticket."""

    type: SkuType
    package_size: PackageSize
    sku: str | None = None
    description: str | None = None
    pricing: Mapping[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "sku": self.sku,
            "description": self.description,
            "packageSize": self.package_size.to_payload(),
            "pricing": dict(self.pricing),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SkuVariant":
        package_size = PackageSize.from_payload(payload.get("packageSize"))
        if package_size is None:
            raise ValueError("SKU variant requires a package size value")
        return cls(
            type=SkuType(str(payload["type"])),
            package_size=package_size,
            sku=payload.get("sku") or None,
            description=payload.get("description") or None,
            pricing=dict(payload.get("pricing") or {}),
        )


@dataclass(frozen=True, slots=True)
class StatusHistoryEntry:
    """Immutable entry in a ticket's activity history."""

    id: str
    action: HistoryAction
    status: TicketStatus
    changed_at: datetime
    actor: ActorInfo | None = None
    reason: str = ""
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Comment:
    id: str
    author: ActorInfo
    content: str
    created_at: datetime


@dataclass(slots=True)
class Ticket:
    """Aggregate representing a product introduction request."""

    id: str
    ticket_number: str
    status: TicketStatus
    product_line: str
    sbu: str
    created_at: datetime
    updated_at: datetime
    priority: TicketPriority = TicketPriority.MEDIUM
    product_name: str | None = None
    created_by: str | None = None
    assigned_to: str | None = None
    part_number: PartNumber | None = None
    npdi_tracking: NpdiTracking | None = None
    base_unit: PackageSize | None = None
    sku_variants: list[SkuVariant] = field(default_factory=list)
    status_history: list[StatusHistoryEntry] = field(default_factory=list)
    comments: list[Comment] = field(default_factory=list)
    pricing_data: dict[str, Any] = field(default_factory=dict)
    chemical_properties: dict[str, Any] = field(default_factory=dict)
    quality: dict[str, Any] = field(default_factory=dict)
    composition: dict[str, Any] = field(default_factory=dict)
    corpbase_data: dict[str, Any] = field(default_factory=dict)
    hazard_classification: dict[str, Any] = field(default_factory=dict)
    version: int = 1

    @property
    def has_part_number(self) -> bool:
        return self.part_number is not None and bool(self.part_number.base_number.strip())

    @property
    def handed_over(self) -> bool:
        """True once NPDI has been initiated; the ticket number is final from then on."""
        return self.npdi_tracking is not None

    @property
    def has_bulk_sku(self) -> bool:
        return any(variant.type == SkuType.BULK for variant in self.sku_variants)


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))
