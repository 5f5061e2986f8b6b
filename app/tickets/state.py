"""Ticket lifecycle rules.

Every guard in this module is a pure function of role, status and edit mode.
The same rules are evaluated by the HTTP layer before rendering permissions
and by :class:`~app.tickets.service.TicketService` before applying a change,
so a client hiding a control is never the only thing standing between a user
and a locked ticket.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from .errors import PreconditionViolation

RULESET_VERSION = "2025.1"


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    IN_PROCESS = "IN_PROCESS"
    NPDI_INITIATED = "NPDI_INITIATED"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"


class TicketPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class ActorRole(str, Enum):
    """Roles that can act on a ticket."""

    PRODUCT_MANAGER = "PRODUCT_MANAGER"
    PM_OPS = "PM_OPS"
    ADMIN = "ADMIN"


class LockoutPolicy(str, Enum):
    """Which statuses lock a ticket against edits for privileged roles."""

    STRICT = "strict"
    NPDI_ONLY = "npdi_only"


PRIVILEGED_ROLES: frozenset[ActorRole] = frozenset({ActorRole.PM_OPS, ActorRole.ADMIN})
ARCHIVED_STATUSES: frozenset[TicketStatus] = frozenset({TicketStatus.COMPLETED, TicketStatus.CANCELED})
_AUTHORING_STATUSES: frozenset[TicketStatus] = frozenset({TicketStatus.DRAFT, TicketStatus.SUBMITTED})
_ALL_STATUSES: frozenset[TicketStatus] = frozenset(TicketStatus)


@dataclass(frozen=True, slots=True)
class PricingRule:
    statuses: frozenset[TicketStatus]
    requires_edit_mode: bool


# role -> statuses in which the role may edit ticket content
EDIT_RULES: Mapping[LockoutPolicy, Mapping[ActorRole, frozenset[TicketStatus]]] = {
    LockoutPolicy.STRICT: {
        ActorRole.PRODUCT_MANAGER: _AUTHORING_STATUSES,
        ActorRole.PM_OPS: _ALL_STATUSES - {TicketStatus.NPDI_INITIATED} - ARCHIVED_STATUSES,
        ActorRole.ADMIN: _ALL_STATUSES - {TicketStatus.NPDI_INITIATED} - ARCHIVED_STATUSES,
    },
    LockoutPolicy.NPDI_ONLY: {
        ActorRole.PRODUCT_MANAGER: _AUTHORING_STATUSES,
        ActorRole.PM_OPS: _ALL_STATUSES - {TicketStatus.NPDI_INITIATED},
        ActorRole.ADMIN: _ALL_STATUSES - {TicketStatus.NPDI_INITIATED},
    },
}

PRICING_RULES: Mapping[ActorRole, PricingRule] = {
    ActorRole.PRODUCT_MANAGER: PricingRule(statuses=_AUTHORING_STATUSES, requires_edit_mode=False),
    ActorRole.PM_OPS: PricingRule(statuses=frozenset({TicketStatus.IN_PROCESS}), requires_edit_mode=True),
    ActorRole.ADMIN: PricingRule(statuses=frozenset({TicketStatus.IN_PROCESS}), requires_edit_mode=True),
}


def is_privileged(role: ActorRole) -> bool:
    return role in PRIVILEGED_ROLES


def is_archived(status: TicketStatus) -> bool:
    return status in ARCHIVED_STATUSES


class TicketStateMachine:
    """Validate ticket lifecycle transitions and edit permissions."""

    def __init__(self, policy: LockoutPolicy = LockoutPolicy.STRICT) -> None:
        self._policy = LockoutPolicy(policy)

    @property
    def policy(self) -> LockoutPolicy:
        return self._policy

    @staticmethod
    def initial_state(*, draft: bool = False) -> TicketStatus:
        return TicketStatus.DRAFT if draft else TicketStatus.SUBMITTED

    @staticmethod
    def can_transition(
        role: ActorRole,
        current: TicketStatus,
        target: TicketStatus,
        *,
        via_completion: bool = False,
    ) -> bool:
        """Return whether ``role`` may move a ticket from ``current`` to ``target``.

        ``via_completion`` marks the dedicated "mark completed" action, the
        only way out of ``NPDI_INITIATED``.
        """

        if not is_privileged(role):
            return False
        if current == TicketStatus.NPDI_INITIATED:
            return via_completion and target == TicketStatus.COMPLETED
        if via_completion:
            return False
        return target in _ALL_STATUSES

    @staticmethod
    def can_submit(role: ActorRole, current: TicketStatus) -> bool:
        return role in ActorRole and current == TicketStatus.DRAFT

    def can_edit(self, role: ActorRole, status: TicketStatus) -> bool:
        if status == TicketStatus.NPDI_INITIATED:
            return False
        return status in EDIT_RULES[self._policy].get(role, frozenset())

    @staticmethod
    def can_edit_pricing(role: ActorRole, status: TicketStatus, edit_mode: bool) -> bool:
        rule = PRICING_RULES.get(role)
        if rule is None or status not in rule.statuses:
            return False
        return edit_mode or not rule.requires_edit_mode

    def assert_transition(
        self,
        role: ActorRole,
        current: TicketStatus,
        target: TicketStatus,
        *,
        via_completion: bool = False,
    ) -> None:
        if not self.can_transition(role, current, target, via_completion=via_completion):
            raise PreconditionViolation(
                f"Role {role.value} cannot move ticket from {current.value} to {target.value}"
            )

    def assert_can_edit(self, role: ActorRole, status: TicketStatus) -> None:
        if not self.can_edit(role, status):
            raise PreconditionViolation(f"Role {role.value} cannot edit a ticket in {status.value}")

    def assert_can_edit_pricing(self, role: ActorRole, status: TicketStatus, edit_mode: bool) -> None:
        if not self.can_edit_pricing(role, status, edit_mode):
            raise PreconditionViolation(
                f"Role {role.value} cannot edit pricing for a ticket in {status.value}"
            )


_DEFAULT_MACHINE = TicketStateMachine()


def can_transition(role: ActorRole, current: TicketStatus, target: TicketStatus) -> bool:
    return _DEFAULT_MACHINE.can_transition(role, current, target)


def can_edit(role: ActorRole, status: TicketStatus, *, policy: LockoutPolicy = LockoutPolicy.STRICT) -> bool:
    if policy == _DEFAULT_MACHINE.policy:
        return _DEFAULT_MACHINE.can_edit(role, status)
    return TicketStateMachine(policy).can_edit(role, status)


def can_edit_pricing(role: ActorRole, status: TicketStatus, edit_mode: bool) -> bool:
    return TicketStateMachine.can_edit_pricing(role, status, edit_mode)
