"""
Role hierarchy.

Four roles, totally ordered by rank:

    superadmin (4) > admin (3) > csm (2) > user (1)

A higher rank implies every permission of the lower ranks, with one
exception: impersonation. Who may impersonate whom comes from the
IMPERSONATION_TARGETS table, never from rank comparisons (an admin
outranks a csm but may not impersonate another admin).
"""

from __future__ import annotations

from enum import Enum

__all__ = [
    "IMPERSONATION_TARGETS",
    "ROLE_RANK",
    "Role",
    "can_impersonate",
    "has_minimum_role",
    "rank",
]


class Role(str, Enum):
    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    CSM = "csm"
    USER = "user"

    @property
    def rank(self) -> int:
        return ROLE_RANK[self]


ROLE_RANK: dict[Role, int] = {
    Role.SUPERADMIN: 4,
    Role.ADMIN: 3,
    Role.CSM: 2,
    Role.USER: 1,
}

# impersonator role -> roles it may impersonate
IMPERSONATION_TARGETS: dict[Role, frozenset[Role]] = {
    Role.SUPERADMIN: frozenset(Role),
    Role.ADMIN: frozenset({Role.CSM, Role.USER}),
    Role.CSM: frozenset(),
    Role.USER: frozenset(),
}


def rank(role: Role | str) -> int:
    """Integer rank of a role. Raises ValueError for unknown roles."""
    return ROLE_RANK[Role(role)]


def has_minimum_role(actor_role: Role | str, required_role: Role | str) -> bool:
    """True iff actor_role ranks at least as high as required_role."""
    return rank(actor_role) >= rank(required_role)


def can_impersonate(
    actor_role: Role | str,
    target_role: Role | str,
    *,
    actor_id: str | None = None,
    target_id: str | None = None,
) -> bool:
    """
    Check whether a role may impersonate another role.

    Args:
        actor_role: Role of the would-be impersonator
        target_role: Role of the user to impersonate
        actor_id: Optional impersonator id; when given together with
            target_id, self-impersonation is rejected
        target_id: Optional target id

    Returns:
        True only for (superadmin, any) and (admin, csm|user)
    """
    if actor_id is not None and actor_id == target_id:
        return False
    return Role(target_role) in IMPERSONATION_TARGETS[Role(actor_role)]
