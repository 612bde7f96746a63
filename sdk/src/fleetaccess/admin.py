"""
Assignment and role administration.

Only admins and superadmins call these, and never from inside an
impersonation session: an impersonation token acts with the target's role,
and these operations change who can see what.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from fleetaccess.audit import AuditAction, AuditTrail, ResourceType
from fleetaccess.authz.roles import Role
from fleetaccess.authz.scope import ScopeResolver
from fleetaccess.base import FleetAccessError, UniqueViolationError
from fleetaccess.context import Actor, RequestMeta, utcnow
from fleetaccess.errors import (
    ConflictError,
    InsufficientRole,
    InvalidImpersonationState,
    InvalidRequestError,
    NotFoundError,
)
from fleetaccess.models import Assignment, AssignmentKind, User
from fleetaccess.repositories.base import AssignmentRepository, UserRepository
from fleetaccess.schemas import (
    BulkAssignmentRequest,
    ChangeRoleRequest,
    CsmAssignmentRequest,
    UserAssignmentRequest,
    parse,
)

log = logging.getLogger(__name__)

# Roles an admin (not superadmin) may move users between
ADMIN_ASSIGNABLE_ROLES = frozenset({Role.CSM, Role.USER})


class AdminService:
    def __init__(
        self,
        users: UserRepository,
        assignments: AssignmentRepository,
        scope: ScopeResolver,
        audit: AuditTrail,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.users = users
        self.assignments = assignments
        self.scope = scope
        self.audit = audit
        self.clock = clock

    def _require_admin(self, actor: Optional[Actor]) -> Actor:
        actor = self.scope.require_role(actor, Role.ADMIN)
        if actor.is_impersonating:
            raise InvalidImpersonationState("not allowed while impersonating")
        return actor

    def _require_user(self, user_id: str, role: Role) -> User:
        user = self.users.get(user_id)
        if user is None:
            raise NotFoundError(f"user {user_id} not found")
        if user.role != role:
            raise InvalidRequestError(
                f"user {user_id} has role {user.role.value}, expected {role.value}"
            )
        return user

    def _add(self, assignment: Assignment) -> Assignment:
        try:
            return self.assignments.add(assignment)
        except UniqueViolationError as e:
            raise ConflictError(
                f"{assignment.actor_id} is already assigned to {assignment.account_id}",
                e.sqlstate,
            ) from e

    # -- csm assignments ----------------------------------------------------

    def assign_csm(
        self,
        actor: Optional[Actor],
        csm_id: str,
        account_id: str,
        is_primary: bool = False,
        meta: Optional[RequestMeta] = None,
    ) -> Assignment:
        actor = self._require_admin(actor)
        req = parse(
            CsmAssignmentRequest, csm_id=csm_id, account_id=account_id, is_primary=is_primary
        )
        self._require_user(req.csm_id, Role.CSM)

        assignment = self._add(
            Assignment(
                actor_id=req.csm_id,
                account_id=req.account_id,
                kind=AssignmentKind.CSM,
                assigned_by=actor.id,
                is_primary=req.is_primary,
                assigned_at=self.clock(),
            )
        )
        self.audit.record(
            actor,
            AuditAction.CSM_ASSIGNED_TO_ACCOUNT,
            ResourceType.CSM_ASSIGNMENT,
            req.account_id,
            new_value=assignment.to_dict(),
            meta=meta,
        )
        log.info(f"CSM {req.csm_id} assigned to account {req.account_id} by {actor.id}")
        return assignment

    def remove_csm(
        self,
        actor: Optional[Actor],
        csm_id: str,
        account_id: str,
        meta: Optional[RequestMeta] = None,
    ) -> None:
        actor = self._require_admin(actor)
        self._remove(actor, csm_id, account_id, AssignmentKind.CSM, meta)

    # -- user (member) assignments ------------------------------------------

    def assign_user(
        self,
        actor: Optional[Actor],
        user_id: str,
        account_id: str,
        role_in_account: str = "member",
        meta: Optional[RequestMeta] = None,
    ) -> Assignment:
        actor = self._require_admin(actor)
        req = parse(
            UserAssignmentRequest,
            user_id=user_id,
            account_id=account_id,
            role_in_account=role_in_account,
        )
        assignment = self._assign_user(actor, req.user_id, req.account_id, req.role_in_account)
        self.audit.record(
            actor,
            AuditAction.USER_ASSIGNED_TO_ACCOUNT,
            ResourceType.USER_ACCOUNT_ASSIGNMENT,
            req.account_id,
            new_value=assignment.to_dict(),
            meta=meta,
        )
        log.info(f"User {req.user_id} assigned to account {req.account_id} by {actor.id}")
        return assignment

    def _assign_user(
        self, actor: Actor, user_id: str, account_id: str, role_in_account: str
    ) -> Assignment:
        self._require_user(user_id, Role.USER)
        return self._add(
            Assignment(
                actor_id=user_id,
                account_id=account_id,
                kind=AssignmentKind.MEMBER,
                assigned_by=actor.id,
                role_in_account=role_in_account,
                assigned_at=self.clock(),
            )
        )

    def remove_user(
        self,
        actor: Optional[Actor],
        user_id: str,
        account_id: str,
        meta: Optional[RequestMeta] = None,
    ) -> None:
        actor = self._require_admin(actor)
        self._remove(actor, user_id, account_id, AssignmentKind.MEMBER, meta)

    def bulk_assign_users(
        self,
        actor: Optional[Actor],
        account_id: str,
        user_ids: list[str],
        role_in_account: str = "member",
        meta: Optional[RequestMeta] = None,
    ) -> dict[str, Any]:
        """
        Assign several users to one account. Per-user failures are collected,
        not raised.

        Returns:
            {"assignments": [Assignment, ...], "errors": [{"user_id", "error"}, ...]}
        """
        actor = self._require_admin(actor)
        req = parse(
            BulkAssignmentRequest,
            account_id=account_id,
            user_ids=user_ids,
            role_in_account=role_in_account,
        )

        assignments: list[Assignment] = []
        errors: list[dict[str, str]] = []
        for user_id in req.user_ids:
            try:
                assignments.append(
                    self._assign_user(actor, user_id, req.account_id, req.role_in_account)
                )
            except FleetAccessError as e:
                errors.append({"user_id": user_id, "error": str(e)})

        self.audit.record(
            actor,
            AuditAction.BULK_USER_ASSIGNMENT,
            ResourceType.USER_ACCOUNT_ASSIGNMENT,
            req.account_id,
            new_value={
                "account_id": req.account_id,
                "user_ids": req.user_ids,
                "role_in_account": req.role_in_account,
                "success_count": len(assignments),
                "error_count": len(errors),
            },
            meta=meta,
        )
        log.info(
            f"Bulk assignment to {req.account_id} by {actor.id}: "
            f"{len(assignments)} ok, {len(errors)} failed"
        )
        return {"assignments": assignments, "errors": errors}

    def _remove(
        self,
        actor: Actor,
        actor_id: str,
        account_id: str,
        kind: AssignmentKind,
        meta: Optional[RequestMeta],
    ) -> None:
        existing = next(
            (
                a
                for a in self.assignments.list_for_actor(actor_id)
                if a.account_id == account_id and a.kind == kind
            ),
            None,
        )
        if existing is None or not self.assignments.remove(actor_id, account_id, kind):
            raise NotFoundError(f"{actor_id} is not assigned to {account_id}")

        csm = kind == AssignmentKind.CSM
        self.audit.record(
            actor,
            AuditAction.CSM_REMOVED_FROM_ACCOUNT if csm else AuditAction.USER_REMOVED_FROM_ACCOUNT,
            ResourceType.CSM_ASSIGNMENT if csm else ResourceType.USER_ACCOUNT_ASSIGNMENT,
            account_id,
            old_value=existing.to_dict(),
            meta=meta,
        )
        log.info(f"{kind.value} {actor_id} removed from account {account_id} by {actor.id}")

    # -- roles --------------------------------------------------------------

    def change_role(
        self,
        actor: Optional[Actor],
        user_id: str,
        role: Role | str,
        meta: Optional[RequestMeta] = None,
    ) -> User:
        """
        Change a user's role.

        Superadmins may assign any role to anyone else. Admins may only move
        users between csm and user.

        Raises:
            InvalidRequestError: Own role, or unknown role value
            InsufficientRole: Admin touching or granting admin/superadmin
            NotFoundError: Unknown user
        """
        actor = self._require_admin(actor)
        req = parse(ChangeRoleRequest, user_id=user_id, role=role)
        if req.user_id == actor.id:
            raise InvalidRequestError("cannot change your own role")

        user = self.users.get(req.user_id)
        if user is None:
            raise NotFoundError(f"user {req.user_id} not found")

        if actor.role != Role.SUPERADMIN and not (
            user.role in ADMIN_ASSIGNABLE_ROLES and req.role in ADMIN_ASSIGNABLE_ROLES
        ):
            log.warning(
                f"Privilege escalation attempt: {actor.id} tried to set "
                f"{user.id} from {user.role.value} to {req.role.value}"
            )
            raise InsufficientRole("only a superadmin can grant or revoke admin roles")

        if user.role == req.role:
            return user

        updated = self.users.update_role(user.id, req.role)
        if updated is None:
            raise NotFoundError(f"user {req.user_id} not found")
        self.audit.record(
            actor,
            AuditAction.ROLE_CHANGED,
            ResourceType.USER,
            user.id,
            old_value={"role": user.role.value},
            new_value={"role": updated.role.value},
            meta=meta,
        )
        log.info(
            f"Role of {user.id} changed {user.role.value} -> {updated.role.value} by {actor.id}"
        )
        return updated
