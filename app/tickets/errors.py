from __future__ import annotations


class TicketError(RuntimeError):
    """Base error for ticket lifecycle issues."""


class TicketNotFoundError(TicketError):
    """Raised when a ticket could not be located."""


class PreconditionViolation(TicketError):
    """The request is well formed but a business rule forbids it."""


class ValidationFailure(TicketError):
    """The request carries malformed input and was rejected before any change."""


class ConflictOnApply(TicketError):
    """The stored ticket changed since the snapshot the change was computed from."""


class DuplicateTicketNumberError(ConflictOnApply):
    """Raised when a ticket number is already used by another ticket."""
