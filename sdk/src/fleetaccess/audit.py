"""
Audit trail.

Every mutation appends one AuditRecord. Recording is best effort: a sink
failure is logged here and never reaches the caller, so an audit outage
cannot roll back or block the operation being audited.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Optional

from fleetaccess.authz.roles import Role, has_minimum_role
from fleetaccess.context import Actor, RequestMeta, utcnow
from fleetaccess.errors import InsufficientRole, InvalidRequestError, Unauthenticated
from fleetaccess.models import AuditRecord

if TYPE_CHECKING:
    from fleetaccess.repositories.base import AuditSink

log = logging.getLogger(__name__)

MAX_QUERY_LIMIT = 100


class AuditAction:
    LOGIN = "LOGIN"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    IMPERSONATION_STARTED = "IMPERSONATION_STARTED"
    IMPERSONATION_ENDED = "IMPERSONATION_ENDED"
    IMPERSONATION_TERMINATED = "IMPERSONATION_TERMINATED"
    IMPERSONATION_EXPIRED = "IMPERSONATION_EXPIRED"
    CSM_ASSIGNED_TO_ACCOUNT = "CSM_ASSIGNED_TO_ACCOUNT"
    CSM_REMOVED_FROM_ACCOUNT = "CSM_REMOVED_FROM_ACCOUNT"
    USER_ASSIGNED_TO_ACCOUNT = "USER_ASSIGNED_TO_ACCOUNT"
    USER_REMOVED_FROM_ACCOUNT = "USER_REMOVED_FROM_ACCOUNT"
    BULK_USER_ASSIGNMENT = "BULK_USER_ASSIGNMENT"
    ROLE_CHANGED = "ROLE_CHANGED"


class ResourceType:
    AUTH = "AUTH"
    IMPERSONATION = "IMPERSONATION"
    CSM_ASSIGNMENT = "CSM_ASSIGNMENT"
    USER_ACCOUNT_ASSIGNMENT = "USER_ACCOUNT_ASSIGNMENT"
    USER = "USER"


class AuditTrail:
    def __init__(self, sink: AuditSink, clock: Callable[[], datetime] = utcnow):
        self.sink = sink
        self.clock = clock

    def record(
        self,
        actor: Optional[Actor],
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        *,
        old_value: Optional[dict[str, Any]] = None,
        new_value: Optional[dict[str, Any]] = None,
        meta: Optional[RequestMeta] = None,
    ) -> AuditRecord:
        """
        Append a record for `actor`. Never raises.

        While impersonating, actor_id is the impersonated user and
        impersonator_id the person behind the session.
        """
        meta = meta or RequestMeta()
        entry = AuditRecord(
            actor_id=actor.id if actor else None,
            impersonator_id=actor.impersonator_id if actor else None,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            old_value=old_value,
            new_value=new_value,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            timestamp=self.clock(),
        )
        try:
            self.sink.log(entry)
        except Exception:
            log.exception(
                f"Failed to write audit record {action} {resource_type}/{resource_id}"
            )
        return entry

    def query(
        self,
        actor: Optional[Actor],
        *,
        actor_id: Optional[str] = None,
        action: Optional[str] = None,
        resource_type: Optional[str] = None,
        limit: int = MAX_QUERY_LIMIT,
        offset: int = 0,
    ) -> list[AuditRecord]:
        """Newest records first. Admin and above only."""
        if actor is None:
            raise Unauthenticated("authentication required")
        if not has_minimum_role(actor.role, Role.ADMIN):
            raise InsufficientRole("requires role admin or higher")
        if limit < 1 or offset < 0:
            raise InvalidRequestError("limit must be positive and offset non-negative")
        return self.sink.query(
            actor_id=actor_id,
            action=action,
            resource_type=resource_type,
            limit=min(limit, MAX_QUERY_LIMIT),
            offset=offset,
        )
