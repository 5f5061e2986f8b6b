"""Product ticket lifecycle: rules, records and services."""

from .errors import (
    ConflictOnApply,
    DuplicateTicketNumberError,
    PreconditionViolation,
    TicketError,
    TicketNotFoundError,
    ValidationFailure,
)
from .models import Actor, SkuType, SkuVariant, StatusHistoryEntry, Ticket
from .npdi import initiate_npdi, mark_completed
from .permissions import EditPermissions, FormSection, derive_reminders, resolve_permissions
from .service import TicketService
from .state import (
    ActorRole,
    LockoutPolicy,
    TicketPriority,
    TicketStateMachine,
    TicketStatus,
    can_edit,
    can_edit_pricing,
    can_transition,
)

__all__ = [
    "Actor",
    "ActorRole",
    "ConflictOnApply",
    "DuplicateTicketNumberError",
    "EditPermissions",
    "FormSection",
    "LockoutPolicy",
    "PreconditionViolation",
    "SkuType",
    "SkuVariant",
    "StatusHistoryEntry",
    "Ticket",
    "TicketError",
    "TicketNotFoundError",
    "TicketPriority",
    "TicketService",
    "TicketStateMachine",
    "TicketStatus",
    "ValidationFailure",
    "can_edit",
    "can_edit_pricing",
    "can_transition",
    "derive_reminders",
    "initiate_npdi",
    "mark_completed",
    "resolve_permissions",
]
