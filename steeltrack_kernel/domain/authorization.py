"""
Transition Authorizer -- pure role policy.

Responsibility:
    Decide whether an actor's role may perform an action against a resource
    in its current state.  One table, consulted by every write service
    before any row is touched; no per-route checks elsewhere.

Architecture position:
    Kernel > Domain -- pure, zero I/O, deterministic.  Testable without a
    database.

Policy (piece-mark lifecycle, deliveries, crews):

    Role             | advance            | rollback          | location            | receive | crews
    -----------------+--------------------+-------------------+---------------------+---------+---------
    admin            | any                | any               | any                 | yes     | yes
    project_manager  | any                | any               | yes                 | yes     | yes
    shop             | from not_started / | own prior action  | no                  | no      | no
                     | fabricating only   |                   |                     |         |
    field            | no                 | no                | only while shipped  | yes     | own crew
    client           | no                 | no                | no                  | no      | no

    Registry maintenance (create / edit / archive piece marks): admin and
    project_manager.  Delivery maintenance (create, add items, progress,
    reject): admin, project_manager and field.

Failure modes:
    ``authorize`` raises ForbiddenError carrying the name of the rule that
    denied the request.  ``decide`` returns the same verdict as a value.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from steeltrack_kernel.domain.identity import Actor
from steeltrack_kernel.domain.values import PieceMarkStatus, Role
from steeltrack_kernel.exceptions import ForbiddenError


class Action(str, Enum):
    ADVANCE_STATUS = "advance_status"
    ROLLBACK_STATUS = "rollback_status"
    UPDATE_LOCATION = "update_location"
    RECEIVE_DELIVERY = "receive_delivery"
    MANAGE_CREW = "manage_crew"
    MANAGE_PIECE_MARKS = "manage_piece_marks"
    MANAGE_DELIVERIES = "manage_deliveries"


@dataclass(frozen=True)
class ResourceState:
    """
    The slice of resource state the policy looks at.

    Only the fields relevant to the action need to be set:
    ``status`` for status and location actions, ``last_status_actor_id`` for
    rollbacks, ``crew_foreman_id`` for crew management.
    """

    status: PieceMarkStatus | None = None
    last_status_actor_id: UUID | None = None
    crew_foreman_id: UUID | None = None


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    rule: str

    @classmethod
    def allow(cls, rule: str) -> AuthorizationDecision:
        return cls(True, rule)

    @classmethod
    def deny(cls, rule: str) -> AuthorizationDecision:
        return cls(False, rule)


SHOP_ADVANCEABLE_STATUSES = frozenset(
    {PieceMarkStatus.NOT_STARTED, PieceMarkStatus.FABRICATING}
)

_FULL_ACCESS = frozenset({Role.ADMIN, Role.PROJECT_MANAGER})

# Actions where the whole decision is role membership.
_ROLE_ONLY: dict[Action, frozenset[Role]] = {
    Action.RECEIVE_DELIVERY: _FULL_ACCESS | {Role.FIELD},
    Action.MANAGE_PIECE_MARKS: _FULL_ACCESS,
    Action.MANAGE_DELIVERIES: _FULL_ACCESS | {Role.FIELD},
}


def decide(
    actor: Actor,
    action: Action,
    state: ResourceState | None = None,
) -> AuthorizationDecision:
    """Evaluate the policy table.  Never raises, never performs I/O."""
    state = state or ResourceState()
    role = actor.role

    if role == Role.CLIENT:
        return AuthorizationDecision.deny("client_is_read_only")

    if action in _ROLE_ONLY:
        if role in _ROLE_ONLY[action]:
            return AuthorizationDecision.allow(f"{role.value}_may_{action.value}")
        return AuthorizationDecision.deny(f"{role.value}_cannot_{action.value}")

    if role in _FULL_ACCESS:
        return AuthorizationDecision.allow(f"{role.value}_full_access")

    if action == Action.ADVANCE_STATUS:
        if role == Role.SHOP:
            if state.status in SHOP_ADVANCEABLE_STATUSES:
                return AuthorizationDecision.allow("shop_advance_before_completed")
            return AuthorizationDecision.deny("shop_advance_only_from_not_started_or_fabricating")
        return AuthorizationDecision.deny(f"{role.value}_cannot_advance_status")

    if action == Action.ROLLBACK_STATUS:
        if role == Role.SHOP:
            if (
                state.last_status_actor_id is not None
                and state.last_status_actor_id == actor.actor_id
            ):
                return AuthorizationDecision.allow("shop_rollback_own_action")
            return AuthorizationDecision.deny("shop_rollback_only_own_prior_action")
        return AuthorizationDecision.deny(f"{role.value}_cannot_rollback_status")

    if action == Action.UPDATE_LOCATION:
        if role == Role.FIELD:
            if state.status == PieceMarkStatus.SHIPPED:
                return AuthorizationDecision.allow("field_location_while_shipped")
            return AuthorizationDecision.deny("field_location_only_when_shipped")
        return AuthorizationDecision.deny(f"{role.value}_cannot_update_location")

    if action == Action.MANAGE_CREW:
        if role == Role.FIELD:
            if state.crew_foreman_id is not None and state.crew_foreman_id == actor.actor_id:
                return AuthorizationDecision.allow("field_manages_own_crew")
            return AuthorizationDecision.deny("field_manages_own_crew_only")
        return AuthorizationDecision.deny(f"{role.value}_cannot_manage_crew")

    return AuthorizationDecision.deny(f"{role.value}_cannot_{action.value}")


def authorize(
    actor: Actor,
    action: Action,
    state: ResourceState | None = None,
) -> AuthorizationDecision:
    """
    Evaluate the policy and raise on denial.

    Raises:
        ForbiddenError: with ``rule`` set to the rule that denied.
    """
    decision = decide(actor, action, state)
    if not decision.allowed:
        raise ForbiddenError(actor.role.value, action.value, decision.rule)
    return decision


def is_allowed(actor: Actor, action: Action, state: ResourceState | None = None) -> bool:
    return decide(actor, action, state).allowed
