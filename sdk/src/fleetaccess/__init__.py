"""
fleetaccess - role hierarchy, account scope and impersonation sessions.

Usage:
    from fleetaccess import AccessControl, Config

    access = AccessControl.in_memory(Config(JWT_SECRET="..."), users=users)
    token, user = access.login("admin@fleetrent.com", "secret")
    actor = access.authenticate(token)
"""

from fleetaccess.audit import AuditAction, AuditTrail
from fleetaccess.authz.roles import Role, can_impersonate, has_minimum_role
from fleetaccess.authz.scope import ScopeFilter, ScopeKind
from fleetaccess.base import (
    CheckViolationError,
    FleetAccessError,
    ForeignKeyViolationError,
    UniqueViolationError,
)
from fleetaccess.config import Config
from fleetaccess.context import Actor, RequestMeta
from fleetaccess.core import AccessControl
from fleetaccess.errors import (
    AuthorizationError,
    ConflictError,
    ConflictingTransition,
    InsufficientRole,
    InvalidImpersonationState,
    InvalidRequestError,
    InvalidToken,
    NotFoundError,
    OutOfScope,
    Unauthenticated,
)
from fleetaccess.models import (
    Assignment,
    AssignmentKind,
    AuditRecord,
    ImpersonationSession,
    SessionStatus,
    User,
    UserStatus,
)

__all__ = [
    "AccessControl",
    "Actor",
    "Assignment",
    "AssignmentKind",
    "AuditAction",
    "AuditRecord",
    "AuditTrail",
    "AuthorizationError",
    "CheckViolationError",
    "Config",
    "ConflictError",
    "ConflictingTransition",
    "FleetAccessError",
    "ForeignKeyViolationError",
    "ImpersonationSession",
    "InsufficientRole",
    "InvalidImpersonationState",
    "InvalidRequestError",
    "InvalidToken",
    "NotFoundError",
    "OutOfScope",
    "RequestMeta",
    "Role",
    "ScopeFilter",
    "ScopeKind",
    "SessionStatus",
    "Unauthenticated",
    "UniqueViolationError",
    "User",
    "UserStatus",
    "can_impersonate",
    "has_minimum_role",
]
