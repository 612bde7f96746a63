"""fleetaccess.authz - role hierarchy and access scope."""

from fleetaccess.authz.roles import (
    IMPERSONATION_TARGETS,
    ROLE_RANK,
    Role,
    can_impersonate,
    has_minimum_role,
    rank,
)
from fleetaccess.authz.scope import ScopeFilter, ScopeKind, ScopeResolver

__all__ = [
    "IMPERSONATION_TARGETS",
    "ROLE_RANK",
    "Role",
    "ScopeFilter",
    "ScopeKind",
    "ScopeResolver",
    "can_impersonate",
    "has_minimum_role",
    "rank",
]
