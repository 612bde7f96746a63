"""
Access scope resolution.

Which accounts and users an actor may act on:

    superadmin, admin   every entity
    csm                 accounts from its csm assignments
    user                itself, plus the accounts it is a member of

Scope is resolved from the assignment repository on every call, so removing
an assignment takes effect on the next request.

Usage:
    scope = resolver.resolve_scope(actor)
    visible = scope.filter(accounts)                 # listing: may be empty
    resolver.require_account(actor, "acc_1")         # by id: raises OutOfScope
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, Optional

from fleetaccess.errors import (
    InsufficientRole,
    NotFoundError,
    OutOfScope,
    Unauthenticated,
)

from .roles import Role, has_minimum_role

if TYPE_CHECKING:
    from fleetaccess.context import Actor
    from fleetaccess.models import User
    from fleetaccess.repositories.base import AssignmentRepository, UserRepository

log = logging.getLogger(__name__)


class ScopeKind(str, Enum):
    ALL = "all"
    ASSIGNED = "assigned"
    SELF = "self"


@dataclass(frozen=True)
class ScopeFilter:
    kind: ScopeKind
    account_ids: frozenset[str] = field(default_factory=frozenset)
    user_id: Optional[str] = None

    @property
    def unrestricted(self) -> bool:
        return self.kind == ScopeKind.ALL

    @property
    def is_empty(self) -> bool:
        return not self.unrestricted and not self.account_ids

    def allows_account(self, account_id: str) -> bool:
        return self.unrestricted or account_id in self.account_ids

    def filter(self, rows: Iterable[Any], key: str = "account_id") -> list[Any]:
        """Keep rows whose `key` (dict item or attribute) is in scope."""
        if self.unrestricted:
            return list(rows)
        return [r for r in rows if self.allows_account(_get(r, key))]


def _get(row: Any, key: str) -> Any:
    if isinstance(row, dict):
        return row.get(key)
    return getattr(row, key, None)


class ScopeResolver:
    """Resolves and enforces actor scope against live assignments."""

    def __init__(self, users: UserRepository, assignments: AssignmentRepository):
        self.users = users
        self.assignments = assignments

    def resolve_scope(self, actor: Actor) -> ScopeFilter:
        if has_minimum_role(actor.role, Role.ADMIN):
            return ScopeFilter(ScopeKind.ALL)
        account_ids = frozenset(self.assignments.get_assignments_for(actor.id))
        if actor.role == Role.CSM:
            return ScopeFilter(ScopeKind.ASSIGNED, account_ids)
        return ScopeFilter(ScopeKind.SELF, account_ids, user_id=actor.id)

    def require_role(self, actor: Optional[Actor], role: Role) -> Actor:
        """
        Ensure there is an actor and it ranks at least `role`.

        Raises:
            Unauthenticated: No actor
            InsufficientRole: Rank too low
        """
        if actor is None:
            raise Unauthenticated("authentication required")
        if not has_minimum_role(actor.role, role):
            log.warning(
                f"Role check failed: {actor.id} ({actor.role.value}) needs {role.value}"
            )
            raise InsufficientRole(f"requires role {role.value} or higher")
        return actor

    def require_account(self, actor: Actor, account_id: str) -> ScopeFilter:
        """Direct access to one account. Raises OutOfScope when not assigned."""
        scope = self.resolve_scope(actor)
        if not scope.allows_account(account_id):
            log.warning(f"Out of scope: {actor.id} -> account {account_id}")
            raise OutOfScope(f"account {account_id} is outside your assigned scope")
        return scope

    def require_user_access(self, actor: Actor, user_id: str) -> User:
        """
        Direct access to one user.

        Self is always allowed. Otherwise superadmin sees everyone, admin sees
        csm and user accounts, csm sees users sharing one of its accounts.

        Returns:
            The target user

        Raises:
            NotFoundError: Unknown user
            InsufficientRole: Target role is above what the actor may manage
            OutOfScope: Target is outside the actor's assignments
        """
        target = self.users.get(user_id)
        if target is None:
            raise NotFoundError(f"user {user_id} not found")
        if actor.id == user_id or actor.role == Role.SUPERADMIN:
            return target

        if actor.role == Role.ADMIN:
            if target.role in (Role.CSM, Role.USER):
                return target
            raise InsufficientRole(f"admin cannot manage {target.role.value} users")

        if actor.role == Role.CSM:
            if target.role != Role.USER:
                raise InsufficientRole(f"csm cannot manage {target.role.value} users")
            shared = self.assignments.get_assignments_for(
                actor.id
            ) & self.assignments.get_assignments_for(user_id)
            if shared:
                return target

        log.warning(f"Out of scope: {actor.id} -> user {user_id}")
        raise OutOfScope(f"user {user_id} is outside your assigned scope")

    def filter_accounts(
        self, actor: Actor, rows: Iterable[Any], key: str = "account_id"
    ) -> list[Any]:
        """Listing filter. An empty scope yields an empty list, never an error."""
        return self.resolve_scope(actor).filter(rows, key)
