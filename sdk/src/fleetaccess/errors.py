"""Error taxonomy surfaced to the CRUD layer.

Each class maps to one HTTP-equivalent status:

    Unauthenticated / InvalidToken          401
    InsufficientRole / OutOfScope           403
    InvalidImpersonationState               403
    ConflictError / ConflictingTransition   409
    NotFoundError                           404
    InvalidRequestError                     400
"""

from __future__ import annotations

from fleetaccess.base import FleetAccessError

__all__ = [
    "AuthorizationError",
    "ConflictError",
    "ConflictingTransition",
    "FleetAccessError",
    "InsufficientRole",
    "InvalidImpersonationState",
    "InvalidRequestError",
    "InvalidToken",
    "NotFoundError",
    "OutOfScope",
    "Unauthenticated",
]


class Unauthenticated(FleetAccessError):
    """No token, or a token that cannot be verified."""

    status_code = 401
    code = "unauthenticated"


class InvalidToken(Unauthenticated):
    """Token decoded but is expired, revoked, malformed or of the wrong type."""

    code = "invalid_token"


class AuthorizationError(FleetAccessError):
    """Authenticated, but not allowed."""

    status_code = 403
    code = "forbidden"


class InsufficientRole(AuthorizationError):
    """Role rank too low for the requested operation."""

    code = "insufficient_role"


class OutOfScope(AuthorizationError):
    """Role rank is sufficient but the entity is outside the actor's assignments."""

    code = "out_of_scope"


class InvalidImpersonationState(AuthorizationError):
    """Impersonation request that can never succeed (self-target, chaining)."""

    code = "invalid_impersonation_state"


class ConflictError(FleetAccessError):
    status_code = 409
    code = "conflict"


class ConflictingTransition(ConflictError):
    """Illegal session state transition, e.g. ending an already-ended session."""

    code = "conflicting_transition"


class NotFoundError(FleetAccessError):
    status_code = 404
    code = "not_found"


class InvalidRequestError(FleetAccessError):
    status_code = 400
    code = "invalid_request"
