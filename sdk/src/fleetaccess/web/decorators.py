"""
Authentication decorator.

Usage:
    from fleetaccess.web import authenticated

    @authenticated                       # any valid token
    def me(actor: Actor):
        ...

    @authenticated(role=Role.ADMIN)      # admin or superadmin
    def list_accounts(actor: Actor):
        ...

    @authenticated(role=Role.ADMIN, allow_impersonation=False)
    def change_role(actor: Actor, user_id: str):
        ...
"""

from __future__ import annotations

from functools import wraps
from typing import Callable, Optional, TypeVar, Union

from flask import g, request

from fleetaccess.authz.roles import Role
from fleetaccess.errors import InvalidImpersonationState, Unauthenticated

from .db import get_access

F = TypeVar("F", bound=Callable)


def bearer_token() -> Optional[str]:
    """Token from `Authorization: Bearer <token>`, or None."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def authenticated(
    f: Optional[F] = None,
    *,
    role: Optional[Role] = None,
    allow_impersonation: bool = True,
) -> Union[F, Callable[[F], F]]:
    """
    Authenticate the bearer token and pass the Actor as first argument.

    Args:
        role: Minimum role required (checked against the acting identity,
            which is the impersonated user while impersonating)
        allow_impersonation: Reject impersonation tokens when False

    Failures raise taxonomy errors; the handlers registered by init_app turn
    them into JSON responses.
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args, **kwargs):
            access = get_access()
            token = bearer_token()
            if token is None:
                raise Unauthenticated("missing bearer token")

            actor = access.authenticate(token)
            g.actor = actor
            g.token = token

            if not allow_impersonation and actor.is_impersonating:
                raise InvalidImpersonationState("not allowed while impersonating")
            if role is not None:
                access.require_role(actor, role)

            return func(actor, *args, **kwargs)

        return wrapper

    if f is not None:
        return decorator(f)
    return decorator
