"""
Identity & Role Resolver.

Responsibility:
    Turns the (actor_id, role) pair handed over by the identity/session
    collaborator into a validated, immutable ``Actor``.  The kernel performs
    no credential verification; it only rejects malformed input.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Leaf dependency of the authorizer,
    the services and the facade.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from uuid import UUID

from steeltrack_kernel.domain.values import Role, parse_enum
from steeltrack_kernel.exceptions import ActorNotFoundError, InvalidValueError


@dataclass(frozen=True)
class Actor:
    """An authenticated actor: stable identity plus exactly one role."""

    actor_id: UUID
    role: Role
    display_name: str | None = None

    def __str__(self) -> str:
        return f"{self.display_name or self.actor_id} ({self.role.value})"


def _parse_actor_id(actor_id: UUID | str) -> UUID:
    if isinstance(actor_id, UUID):
        return actor_id
    try:
        return UUID(str(actor_id))
    except ValueError:
        raise InvalidValueError("actor_id", actor_id, "a UUID") from None


def resolve_actor(
    actor_id: UUID | str,
    role: Role | str,
    display_name: str | None = None,
) -> Actor:
    """
    Validate a verified (actor_id, role) pair at the boundary.

    Raises:
        InvalidValueError: role is not one of the fixed roles, or actor_id
            is not a UUID.
    """
    return Actor(
        actor_id=_parse_actor_id(actor_id),
        role=parse_enum(Role, role, "role"),
        display_name=display_name,
    )


class StaticRoleResolver:
    """
    Resolve actors from a fixed id -> role mapping.

    For callers that carry only an actor id (operator scripts, tests).
    """

    def __init__(self, roles: Mapping[UUID | str, Role | str]):
        self._roles: dict[UUID, Role] = {
            _parse_actor_id(actor_id): parse_enum(Role, role, "role")
            for actor_id, role in roles.items()
        }

    def resolve(self, actor_id: UUID | str) -> Actor:
        """Return the Actor for ``actor_id`` or raise ActorNotFoundError."""
        parsed = _parse_actor_id(actor_id)
        role = self._roles.get(parsed)
        if role is None:
            raise ActorNotFoundError(str(parsed))
        return Actor(actor_id=parsed, role=role)

    def __contains__(self, actor_id: object) -> bool:
        try:
            return _parse_actor_id(actor_id) in self._roles  # type: ignore[arg-type]
        except InvalidValueError:
            return False
