"""Per-section edit permissions and derived ticket reminders."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from .models import Ticket
from .state import ActorRole, LockoutPolicy, TicketStateMachine, TicketStatus, is_privileged

# Quality attribute rows are fixed once the ticket is created; only the MQ
# quality level stays editable.
QUALITY_ATTRIBUTES_EDITABLE = False


class FormSection(str, Enum):
    BASIC_INFO = "basic_info"
    CHEMICAL_PROPERTIES = "chemical_properties"
    QUALITY = "quality"
    COMPOSITION = "composition"
    PRICING = "pricing"
    CORPBASE = "corpbase"
    SKU_VARIANTS = "sku_variants"


# Ticket fields editable through a section.
SECTION_FIELDS: Mapping[FormSection, tuple[str, ...]] = {
    FormSection.BASIC_INFO: ("product_name", "product_line", "sbu", "priority", "assigned_to", "hazard_classification"),
    FormSection.CHEMICAL_PROPERTIES: ("chemical_properties",),
    FormSection.QUALITY: ("quality",),
    FormSection.COMPOSITION: ("composition",),
    FormSection.PRICING: ("pricing_data", "base_unit"),
    FormSection.CORPBASE: ("corpbase_data",),
    FormSection.SKU_VARIANTS: ("sku_variants", "part_number"),
}

FIELD_SECTIONS: Mapping[str, FormSection] = {
    field_name: section for section, fields in SECTION_FIELDS.items() for field_name in fields
}


@dataclass(frozen=True, slots=True)
class EditPermissions:
    """Resolved permissions for one actor looking at one ticket."""

    can_edit_ticket: bool
    can_edit_pricing: bool
    can_edit_quality: bool
    sections: Mapping[FormSection, bool]

    def section_editable(self, section: FormSection) -> bool:
        return self.sections.get(section, False)


@dataclass(frozen=True, slots=True)
class TicketReminders:
    """Banners shown on a ticket, projected from its current state."""

    part_number_required: bool
    missing_bulk_sku: bool
    npdi_ready: bool
    npdi_locked: bool
    can_mark_completed: bool


def resolve_permissions(
    role: ActorRole,
    status: TicketStatus,
    edit_mode: bool,
    *,
    policy: LockoutPolicy = LockoutPolicy.STRICT,
    handed_over: bool = False,
) -> EditPermissions:
    """Resolve section editability. A ticket handed over to NPDI is read-only in every status."""

    machine = TicketStateMachine(policy)
    can_edit = machine.can_edit(role, status) and not handed_over
    can_edit_pricing = machine.can_edit_pricing(role, status, edit_mode)
    base = can_edit and edit_mode

    sections: dict[FormSection, bool] = {}
    for section in FormSection:
        rule = can_edit_pricing if section == FormSection.PRICING else True
        sections[section] = base and rule

    return EditPermissions(
        can_edit_ticket=can_edit,
        can_edit_pricing=base and can_edit_pricing,
        can_edit_quality=sections[FormSection.QUALITY],
        sections=sections,
    )


def derive_reminders(ticket: Ticket, role: ActorRole, edit_mode: bool) -> TicketReminders:
    privileged_view = is_privileged(role) and not edit_mode
    return TicketReminders(
        part_number_required=(
            privileged_view and ticket.status == TicketStatus.SUBMITTED and not ticket.has_part_number
        ),
        missing_bulk_sku=privileged_view and bool(ticket.sku_variants) and not ticket.has_bulk_sku,
        npdi_ready=privileged_view and ticket.status == TicketStatus.IN_PROCESS and ticket.has_part_number,
        npdi_locked=ticket.status == TicketStatus.NPDI_INITIATED or ticket.handed_over,
        can_mark_completed=is_privileged(role) and ticket.status == TicketStatus.NPDI_INITIATED,
    )
