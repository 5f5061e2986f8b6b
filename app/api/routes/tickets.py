from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from app.dependencies.auth import CurrentUser
from app.dependencies.tickets import PrivilegedUser, get_ticket_service
from app.tickets.errors import (
    ConflictOnApply,
    PreconditionViolation,
    TicketError,
    TicketNotFoundError,
    ValidationFailure,
)
from app.tickets.models import (
    PACKAGE_UNITS,
    Comment,
    PackageSize,
    PartNumber,
    SkuType,
    SkuVariant,
    StatusHistoryEntry,
    Ticket,
)
from app.tickets.permissions import EditPermissions, TicketReminders
from app.tickets.repository import TicketPage
from app.tickets.service import TicketService
from app.tickets.state import RULESET_VERSION, TicketPriority, TicketStatus

router = APIRouter(prefix="/tickets", tags=["tickets"])

TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]


class PackageSizeModel(BaseModel):
    value: float = Field(..., gt=0)
    unit: str = Field(default="g")

    def to_entity(self) -> PackageSize:
        if self.unit not in PACKAGE_UNITS:
            raise HTTPException(status_code=400, detail=f"Unknown package unit: {self.unit}")
        return PackageSize(value=self.value, unit=self.unit)


class PartNumberModel(BaseModel):
    base_number: str = Field(..., min_length=1, max_length=100)


class SkuVariantModel(BaseModel):
    type: SkuType
    package_size: PackageSizeModel
    sku: str | None = None
    description: str | None = None
    pricing: dict[str, Any] = Field(default_factory=dict)

    def to_entity(self) -> SkuVariant:
        return SkuVariant(
            type=self.type,
            package_size=self.package_size.to_entity(),
            sku=self.sku,
            description=self.description,
            pricing=dict(self.pricing),
        )

    @classmethod
    def from_entity(cls, entity: SkuVariant) -> "SkuVariantModel":
        return cls(
            type=entity.type,
            package_size=PackageSizeModel(value=entity.package_size.value, unit=entity.package_size.unit),
            sku=entity.sku,
            description=entity.description,
            pricing=dict(entity.pricing),
        )


class TicketFieldsRequest(BaseModel):
    product_name: str | None = Field(default=None, max_length=255)
    product_line: str | None = Field(default=None, max_length=255)
    sbu: str | None = None
    priority: TicketPriority | None = None
    assigned_to: str | None = None
    part_number: PartNumberModel | None = None
    base_unit: PackageSizeModel | None = None
    sku_variants: list[SkuVariantModel] | None = None
    pricing_data: dict[str, Any] | None = None
    chemical_properties: dict[str, Any] | None = None
    quality: dict[str, Any] | None = None
    composition: dict[str, Any] | None = None
    corpbase_data: dict[str, Any] | None = None
    hazard_classification: dict[str, Any] | None = None

    def to_fields(self) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if name == "part_number":
                value = PartNumber(base_number=value.base_number) if value is not None else None
            elif name == "base_unit":
                value = value.to_entity() if value is not None else None
            elif name == "sku_variants":
                value = [variant.to_entity() for variant in value or []]
            fields[name] = value
        return fields


class TicketStatusChangeRequest(BaseModel):
    status: TicketStatus
    reason: str | None = Field(default=None, max_length=500)


class NpdiInitiationRequest(BaseModel):
    tracking_number: str = Field(..., max_length=100)


class CompletionRequest(BaseModel):
    confirmed: bool = False


class CommentRequest(BaseModel):
    content: str = Field(..., max_length=5000)


class ActorInfoModel(BaseModel):
    email: str
    first_name: str
    last_name: str
    role: str


class StatusHistoryModel(BaseModel):
    id: str
    action: str
    status: TicketStatus
    changed_at: datetime
    actor: ActorInfoModel | None = None
    reason: str
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_entity(cls, entity: StatusHistoryEntry) -> "StatusHistoryModel":
        return cls(
            id=entity.id,
            action=entity.action.value,
            status=entity.status,
            changed_at=entity.changed_at,
            actor=_actor_model(entity.actor),
            reason=entity.reason,
            details=dict(entity.details),
        )


class CommentModel(BaseModel):
    id: str
    author: ActorInfoModel
    content: str
    created_at: datetime

    @classmethod
    def from_entity(cls, entity: Comment) -> "CommentModel":
        author = entity.author
        return cls(
            id=entity.id,
            author=ActorInfoModel(
                email=author.email,
                first_name=author.first_name,
                last_name=author.last_name,
                role=author.role,
            ),
            content=entity.content,
            created_at=entity.created_at,
        )


class NpdiTrackingModel(BaseModel):
    tracking_number: str
    initiated_by: str
    initiated_at: datetime


class PartNumberResponse(BaseModel):
    base_number: str
    assigned_by: str | None = None
    assigned_at: datetime | None = None


class TicketResponse(BaseModel):
    id: str
    ticket_number: str
    status: TicketStatus
    priority: TicketPriority
    product_name: str | None
    product_line: str
    sbu: str
    created_by: str | None
    assigned_to: str | None
    part_number: PartNumberResponse | None
    npdi_tracking: NpdiTrackingModel | None
    base_unit: PackageSizeModel | None
    sku_variants: list[SkuVariantModel]
    pricing_data: dict[str, Any]
    chemical_properties: dict[str, Any]
    quality: dict[str, Any]
    composition: dict[str, Any]
    corpbase_data: dict[str, Any]
    hazard_classification: dict[str, Any]
    status_history: list[StatusHistoryModel]
    comments: list[CommentModel]
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, ticket: Ticket) -> "TicketResponse":
        part_number = ticket.part_number
        tracking = ticket.npdi_tracking
        base_unit = ticket.base_unit
        return cls(
            id=ticket.id,
            ticket_number=ticket.ticket_number,
            status=ticket.status,
            priority=ticket.priority,
            product_name=ticket.product_name,
            product_line=ticket.product_line,
            sbu=ticket.sbu,
            created_by=ticket.created_by,
            assigned_to=ticket.assigned_to,
            part_number=(
                PartNumberResponse(
                    base_number=part_number.base_number,
                    assigned_by=part_number.assigned_by,
                    assigned_at=part_number.assigned_at,
                )
                if part_number
                else None
            ),
            npdi_tracking=(
                NpdiTrackingModel(
                    tracking_number=tracking.tracking_number,
                    initiated_by=tracking.initiated_by,
                    initiated_at=tracking.initiated_at,
                )
                if tracking
                else None
            ),
            base_unit=PackageSizeModel(value=base_unit.value, unit=base_unit.unit) if base_unit else None,
            sku_variants=[SkuVariantModel.from_entity(variant) for variant in ticket.sku_variants],
            pricing_data=dict(ticket.pricing_data),
            chemical_properties=dict(ticket.chemical_properties),
            quality=dict(ticket.quality),
            composition=dict(ticket.composition),
            corpbase_data=dict(ticket.corpbase_data),
            hazard_classification=dict(ticket.hazard_classification),
            status_history=[StatusHistoryModel.from_entity(entry) for entry in ticket.status_history],
            comments=[CommentModel.from_entity(comment) for comment in ticket.comments],
            version=ticket.version,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
        )


class PaginationModel(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class TicketListResponse(BaseModel):
    tickets: list[TicketResponse]
    pagination: PaginationModel

    @classmethod
    def from_page(cls, page: TicketPage) -> "TicketListResponse":
        return cls(
            tickets=[TicketResponse.from_entity(ticket) for ticket in page.tickets],
            pagination=PaginationModel(page=page.page, limit=page.limit, total=page.total, pages=page.pages),
        )


class RemindersModel(BaseModel):
    part_number_required: bool
    missing_bulk_sku: bool
    npdi_ready: bool
    npdi_locked: bool
    can_mark_completed: bool


class PermissionsResponse(BaseModel):
    ticket_id: str
    status: TicketStatus
    edit_mode: bool
    ruleset_version: str
    can_edit_ticket: bool
    can_edit_pricing: bool
    can_edit_quality: bool
    sections: dict[str, bool]
    reminders: RemindersModel

    @classmethod
    def build(
        cls,
        ticket: Ticket,
        permissions: EditPermissions,
        reminders: TicketReminders,
        *,
        edit_mode: bool,
    ) -> "PermissionsResponse":
        return cls(
            ticket_id=ticket.id,
            status=ticket.status,
            edit_mode=edit_mode,
            ruleset_version=RULESET_VERSION,
            can_edit_ticket=permissions.can_edit_ticket,
            can_edit_pricing=permissions.can_edit_pricing,
            can_edit_quality=permissions.can_edit_quality,
            sections={section.value: editable for section, editable in permissions.sections.items()},
            reminders=RemindersModel(
                part_number_required=reminders.part_number_required,
                missing_bulk_sku=reminders.missing_bulk_sku,
                npdi_ready=reminders.npdi_ready,
                npdi_locked=reminders.npdi_locked,
                can_mark_completed=reminders.can_mark_completed,
            ),
        )


def _actor_model(info: Any) -> ActorInfoModel | None:
    if info is None:
        return None
    return ActorInfoModel(
        email=info.email,
        first_name=info.first_name,
        last_name=info.last_name,
        role=info.role,
    )


def _to_http_error(exc: TicketError) -> HTTPException:
    if isinstance(exc, TicketNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ValidationFailure):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, (PreconditionViolation, ConflictOnApply)):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=500, detail="Unexpected ticket error")


def _parse_statuses(raw: str | None) -> list[TicketStatus] | None:
    if not raw:
        return None
    try:
        return [TicketStatus(value.strip()) for value in raw.split(",") if value.strip()]
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid status filter") from exc


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(payload: TicketFieldsRequest, service: TicketServiceDep, user: CurrentUser) -> TicketResponse:
    try:
        ticket = await service.create_ticket(user, payload.to_fields())
    except TicketError as exc:
        raise _to_http_error(exc) from exc
    return TicketResponse.from_entity(ticket)


@router.post("/draft", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def save_draft(payload: TicketFieldsRequest, service: TicketServiceDep, user: CurrentUser) -> TicketResponse:
    try:
        ticket = await service.create_ticket(user, payload.to_fields(), draft=True)
    except TicketError as exc:
        raise _to_http_error(exc) from exc
    return TicketResponse.from_entity(ticket)


@router.get("", response_model=TicketListResponse)
async def list_tickets(
    service: TicketServiceDep,
    _: CurrentUser,
    status_filter: str | None = Query(default=None, alias="status"),
    priority: TicketPriority | None = None,
    sbu: str | None = None,
    search: str | None = None,
    created_by: str | None = Query(default=None, alias="createdBy"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
) -> TicketListResponse:
    result = await service.list_tickets(
        statuses=_parse_statuses(status_filter),
        priority=priority,
        sbu=sbu,
        search=search,
        created_by=created_by,
        page=page,
        limit=limit,
    )
    return TicketListResponse.from_page(result)


@router.get("/archived", response_model=TicketListResponse)
async def list_archived_tickets(
    service: TicketServiceDep,
    _: CurrentUser,
    priority: TicketPriority | None = None,
    sbu: str | None = None,
    search: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
) -> TicketListResponse:
    result = await service.list_archived_tickets(priority=priority, sbu=sbu, search=search, page=page, limit=limit)
    return TicketListResponse.from_page(result)


@router.get("/by-number/{ticket_number}", response_model=TicketResponse)
async def get_ticket_by_number(ticket_number: str, service: TicketServiceDep, _: CurrentUser) -> TicketResponse:
    try:
        ticket = await service.get_ticket_by_number(ticket_number)
    except TicketError as exc:
        raise _to_http_error(exc) from exc
    return TicketResponse.from_entity(ticket)


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: str, service: TicketServiceDep, _: CurrentUser) -> TicketResponse:
    try:
        ticket = await service.get_ticket(ticket_id)
    except TicketError as exc:
        raise _to_http_error(exc) from exc
    return TicketResponse.from_entity(ticket)


@router.patch("/{ticket_id}", response_model=TicketResponse)
async def update_ticket(
    ticket_id: str,
    payload: TicketFieldsRequest,
    service: TicketServiceDep,
    user: CurrentUser,
    edit_mode: bool = Query(default=False),
) -> TicketResponse:
    fields = payload.to_fields()
    if not fields:
        raise HTTPException(status_code=400, detail="No fields provided for update")
    try:
        ticket = await service.update_ticket(ticket_id, user, fields, edit_mode=edit_mode)
    except TicketError as exc:
        raise _to_http_error(exc) from exc
    return TicketResponse.from_entity(ticket)


@router.post("/{ticket_id}/submit", response_model=TicketResponse)
async def submit_ticket(ticket_id: str, service: TicketServiceDep, user: CurrentUser) -> TicketResponse:
    try:
        ticket = await service.submit_ticket(ticket_id, user)
    except TicketError as exc:
        raise _to_http_error(exc) from exc
    return TicketResponse.from_entity(ticket)


@router.patch("/{ticket_id}/status", response_model=TicketResponse)
async def change_ticket_status(
    ticket_id: str,
    payload: TicketStatusChangeRequest,
    service: TicketServiceDep,
    user: PrivilegedUser,
) -> TicketResponse:
    try:
        ticket = await service.change_status(ticket_id, user, payload.status, reason=payload.reason)
    except TicketError as exc:
        raise _to_http_error(exc) from exc
    return TicketResponse.from_entity(ticket)


@router.post("/{ticket_id}/npdi", response_model=TicketResponse)
async def initiate_npdi(
    ticket_id: str,
    payload: NpdiInitiationRequest,
    service: TicketServiceDep,
    user: PrivilegedUser,
) -> TicketResponse:
    try:
        ticket = await service.initiate_npdi(ticket_id, user, payload.tracking_number)
    except TicketError as exc:
        raise _to_http_error(exc) from exc
    return TicketResponse.from_entity(ticket)


@router.post("/{ticket_id}/complete", response_model=TicketResponse)
async def mark_completed(
    ticket_id: str,
    payload: CompletionRequest,
    service: TicketServiceDep,
    user: PrivilegedUser,
) -> TicketResponse:
    try:
        ticket = await service.mark_completed(ticket_id, user, confirmed=payload.confirmed)
    except TicketError as exc:
        raise _to_http_error(exc) from exc
    return TicketResponse.from_entity(ticket)


@router.post("/{ticket_id}/bulk-sku", response_model=TicketResponse)
async def add_bulk_sku(ticket_id: str, service: TicketServiceDep, user: PrivilegedUser) -> TicketResponse:
    try:
        ticket = await service.add_bulk_sku(ticket_id, user)
    except TicketError as exc:
        raise _to_http_error(exc) from exc
    return TicketResponse.from_entity(ticket)


@router.post("/{ticket_id}/comments", response_model=CommentModel, status_code=status.HTTP_201_CREATED)
async def add_comment(
    ticket_id: str,
    payload: CommentRequest,
    service: TicketServiceDep,
    user: CurrentUser,
) -> CommentModel:
    try:
        comment = await service.add_comment(ticket_id, user, payload.content)
    except TicketError as exc:
        raise _to_http_error(exc) from exc
    return CommentModel.from_entity(comment)


@router.get("/{ticket_id}/history", response_model=list[StatusHistoryModel])
async def get_ticket_history(ticket_id: str, service: TicketServiceDep, _: CurrentUser) -> list[StatusHistoryModel]:
    try:
        entries = await service.get_history(ticket_id)
    except TicketError as exc:
        raise _to_http_error(exc) from exc
    return [StatusHistoryModel.from_entity(entry) for entry in entries]


@router.get("/{ticket_id}/permissions", response_model=PermissionsResponse)
async def get_ticket_permissions(
    ticket_id: str,
    service: TicketServiceDep,
    user: CurrentUser,
    edit_mode: bool = Query(default=False),
) -> PermissionsResponse:
    try:
        ticket, permissions, reminders = await service.get_permissions(ticket_id, user, edit_mode=edit_mode)
    except TicketError as exc:
        raise _to_http_error(exc) from exc
    return PermissionsResponse.build(ticket, permissions, reminders, edit_mode=edit_mode)
