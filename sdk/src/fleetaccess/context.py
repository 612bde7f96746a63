"""
Actor and request metadata - who is making a request, and from where.

Usage:
    from fleetaccess.context import Actor

    actor = access.authenticate(token)
    print(actor.id)             # Identity whose role and scope apply
    print(actor.principal_id)   # Who's actually doing it (for audit)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fleetaccess.authz.roles import Role


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RequestMeta:
    """Request metadata recorded on audit records and sessions."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None


@dataclass(frozen=True)
class Actor:
    """
    Immutable principal performing a request.

    impersonator_id is present if and only if the presenting token is an
    impersonation token. While impersonating, role and scope are those of the
    impersonated user (id/role); the impersonator is kept for audit.
    """

    id: str
    role: Role

    # Impersonation (set only for impersonation tokens)
    impersonator_id: Optional[str] = None
    impersonator_role: Optional[Role] = None
    session_id: Optional[str] = None

    # jti of the presenting token, used for logout
    token_id: Optional[str] = None

    @property
    def is_impersonating(self) -> bool:
        return self.impersonator_id is not None

    @property
    def principal_id(self) -> str:
        """Who is actually performing the action."""
        return self.impersonator_id if self.impersonator_id else self.id

    @property
    def principal_role(self) -> Role:
        if self.impersonator_id and self.impersonator_role:
            return self.impersonator_role
        return self.role
