"""
Impersonation sessions.

A session lets a higher-privileged user act as a lower-privileged one for a
bounded time. Lifecycle:

    active --(impersonator ends it, or it expires)--> completed
    active --(another superadmin ends it)-----------> terminated

No transition leaves completed or terminated. Expiry is applied lazily: an
active session read after expires_at is finalized as completed with
end_time = expires_at. sweep_expired() applies the same rule in bulk.

Usage:
    session, token = manager.start_session(admin, "26", reason="ticket #812")
    claims = manager.validate_impersonation_token(token)
    manager.end_session(session.session_id, admin)
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from fleetaccess.audit import AuditAction, AuditTrail, ResourceType
from fleetaccess.authn.crypto import new_session_id
from fleetaccess.authz.roles import Role, can_impersonate, has_minimum_role
from fleetaccess.config import Config
from fleetaccess.context import Actor, RequestMeta, utcnow
from fleetaccess.errors import (
    ConflictingTransition,
    InsufficientRole,
    InvalidImpersonationState,
    InvalidToken,
    NotFoundError,
    Unauthenticated,
)
from fleetaccess.models import ImpersonationSession, SessionStatus
from fleetaccess.schemas import (
    EndImpersonationRequest,
    HistoryQuery,
    StartImpersonationRequest,
    parse,
)

if TYPE_CHECKING:
    from fleetaccess.authn.tokens import ImpersonationClaims, TokenService
    from fleetaccess.repositories.base import SessionRepository, UserRepository

log = logging.getLogger(__name__)


class ImpersonationManager:
    def __init__(
        self,
        config: Config,
        users: UserRepository,
        sessions: SessionRepository,
        tokens: TokenService,
        audit: AuditTrail,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.users = users
        self.sessions = sessions
        self.tokens = tokens
        self.audit = audit
        self.clock = clock

    # -- lifecycle --------------------------------------------------------

    def start_session(
        self,
        impersonator: Optional[Actor],
        target_id: str,
        reason: Optional[str] = None,
        meta: Optional[RequestMeta] = None,
    ) -> tuple[ImpersonationSession, str]:
        """
        Start impersonating `target_id`.

        Returns:
            (session, token) - the token authenticates as the target until the
            session ends or expires

        Raises:
            Unauthenticated: No impersonator
            InvalidImpersonationState: Self-target, or the impersonator is
                itself impersonating (no chaining)
            NotFoundError: Target missing or not active
            InsufficientRole: Role pair not allowed to impersonate
            ConflictingTransition: Pair already has an active session
        """
        if impersonator is None:
            raise Unauthenticated("authentication required")
        req = parse(StartImpersonationRequest, target_id=target_id, reason=reason)
        meta = meta or RequestMeta()

        if impersonator.is_impersonating:
            log.warning(
                f"Chained impersonation refused: {impersonator.principal_id} "
                f"is already impersonating {impersonator.id}"
            )
            raise InvalidImpersonationState(
                "cannot start an impersonation session while impersonating"
            )
        if req.target_id == impersonator.id:
            raise InvalidImpersonationState("cannot impersonate yourself")

        target = self.users.get(req.target_id)
        if target is None or not target.is_active:
            raise NotFoundError(f"user {req.target_id} not found or not active")

        if not can_impersonate(
            impersonator.role, target.role, actor_id=impersonator.id, target_id=target.id
        ):
            log.warning(
                f"Impersonation denied: {impersonator.id} ({impersonator.role.value}) "
                f"-> {target.id} ({target.role.value})"
            )
            raise InsufficientRole(
                f"{impersonator.role.value} cannot impersonate {target.role.value}"
            )

        # An expired session still marked active would block the pair
        for stale in self.sessions.find_active(
            impersonator_id=impersonator.id, impersonated_id=target.id
        ):
            self._expire_if_due(stale)

        now = self.clock()
        session = self.sessions.create(
            ImpersonationSession(
                session_id=new_session_id(),
                impersonator_id=impersonator.id,
                impersonator_role=impersonator.role,
                impersonated_id=target.id,
                impersonated_role=target.role,
                start_time=now,
                expires_at=now + self.config.IMPERSONATION_TOKEN_TTL,
                reason=req.reason,
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
            )
        )
        token = self.tokens.issue_impersonation_token(session)

        self.audit.record(
            impersonator,
            AuditAction.IMPERSONATION_STARTED,
            ResourceType.IMPERSONATION,
            session.session_id,
            new_value={
                "impersonated_id": target.id,
                "impersonated_role": target.role.value,
                "reason": req.reason,
                "expires_at": session.expires_at.isoformat(),
            },
            meta=meta,
        )
        log.info(
            f"Impersonation started: {impersonator.id} -> {target.id} "
            f"(session {session.session_id})"
        )
        return session, token

    def end_session(
        self,
        session_id: str,
        actor: Optional[Actor],
        reason: Optional[str] = None,
        meta: Optional[RequestMeta] = None,
    ) -> ImpersonationSession:
        """
        End an active session.

        The impersonator ends it as completed. Any other superadmin ends it
        as terminated, recording who and why.

        Raises:
            Unauthenticated: No actor
            NotFoundError: Unknown session
            InsufficientRole: Actor neither owns the session nor is a superadmin
            InvalidImpersonationState: Terminating someone else's session from
                inside an impersonation
            ConflictingTransition: Session already completed or terminated
        """
        if actor is None:
            raise Unauthenticated("authentication required")
        req = parse(EndImpersonationRequest, session_id=session_id, reason=reason)

        session = self.sessions.get(req.session_id)
        if session is None:
            raise NotFoundError(f"session {req.session_id} not found")

        principal = actor.principal_id
        if principal == session.impersonator_id:
            status = SessionStatus.COMPLETED
        elif actor.principal_role == Role.SUPERADMIN:
            if actor.is_impersonating:
                raise InvalidImpersonationState(
                    "cannot terminate another session while impersonating"
                )
            status = SessionStatus.TERMINATED
        else:
            log.warning(
                f"End session denied: {principal} does not own {session.session_id}"
            )
            raise InsufficientRole("only the impersonator or a superadmin can end a session")

        session = self._expire_if_due(session)
        if not session.can_transition(status):
            raise ConflictingTransition(
                f"session {session.session_id} is already {session.status.value}"
            )

        terminated = status == SessionStatus.TERMINATED
        updated = self.sessions.update_status(
            session.session_id,
            status,
            end_time=self.clock(),
            terminated_by=principal if terminated else None,
            termination_reason=req.reason if terminated else None,
        )
        if updated is None:
            # Lost a race with another end_session or the expiry sweep
            raise ConflictingTransition(
                f"session {session.session_id} is no longer active"
            )

        self.audit.record(
            actor,
            AuditAction.IMPERSONATION_TERMINATED
            if terminated
            else AuditAction.IMPERSONATION_ENDED,
            ResourceType.IMPERSONATION,
            updated.session_id,
            old_value={"status": SessionStatus.ACTIVE.value},
            new_value={
                "status": updated.status.value,
                "reason": req.reason,
                "duration_seconds": int(
                    (updated.end_time - updated.start_time).total_seconds()
                ),
            },
            meta=meta,
        )
        log.info(
            f"Impersonation {updated.status.value}: session {updated.session_id} "
            f"by {principal}"
        )
        return updated

    def validate_impersonation_token(self, token: str) -> ImpersonationClaims:
        """
        Verify an impersonation token and its session.

        Raises:
            InvalidToken: Bad signature, expired, wrong type, missing claims,
                or the session is no longer active
        """
        return self.validate_claims(self.tokens.verify_impersonation(token))

    def validate_claims(self, claims: ImpersonationClaims) -> ImpersonationClaims:
        """Check already-verified claims against the live session."""
        session = self.get_session(claims.session_id)
        if session is None or not session.is_active:
            raise InvalidToken("impersonation session is not active")
        if (
            session.impersonator_id != claims.impersonator_id
            or session.impersonated_id != claims.subject_id
        ):
            log.warning(f"Impersonation token does not match session {session.session_id}")
            raise InvalidToken("impersonation token does not match its session")
        return claims

    # -- reads --------------------------------------------------------------

    def get_session(self, session_id: str) -> Optional[ImpersonationSession]:
        """Fetch a session, finalizing it first if it has expired."""
        session = self.sessions.get(session_id)
        if session is None:
            return None
        return self._expire_if_due(session)

    def list_active(self, actor: Optional[Actor]) -> list[ImpersonationSession]:
        self._require_admin(actor)
        return [
            s for s in map(self._expire_if_due, self.sessions.find_active()) if s.is_active
        ]

    def history(
        self,
        actor: Optional[Actor],
        *,
        impersonator_id: Optional[str] = None,
        impersonated_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        page: int = 1,
        limit: int = 20,
    ) -> list[ImpersonationSession]:
        """Sessions newest first. Admin and above only; limit may not exceed 100."""
        self._require_admin(actor)
        query = parse(
            HistoryQuery,
            impersonator_id=impersonator_id,
            impersonated_id=impersonated_id,
            start=start,
            end=end,
            page=page,
            limit=limit,
        )
        return self.sessions.history(
            impersonator_id=query.impersonator_id,
            impersonated_id=query.impersonated_id,
            start=query.start,
            end=query.end,
            limit=query.limit,
            offset=query.offset,
        )

    def user_history(
        self, actor: Optional[Actor], user_id: str, limit: int = 20
    ) -> list[ImpersonationSession]:
        """Sessions where `user_id` was impersonated. Self, or admin and above."""
        if actor is None:
            raise Unauthenticated("authentication required")
        # Acting identity: while impersonating, the target's id and role apply
        if actor.id != user_id and not has_minimum_role(actor.role, Role.ADMIN):
            raise InsufficientRole("can only view your own impersonation history")
        query = parse(HistoryQuery, impersonated_id=user_id, limit=limit)
        return self.sessions.history(impersonated_id=user_id, limit=query.limit)

    def status(self, actor: Optional[Actor]) -> dict:
        """Whether the current request is impersonating, and as whom."""
        if actor is None:
            raise Unauthenticated("authentication required")
        if not actor.is_impersonating:
            return {"is_impersonating": False}
        session = self.get_session(actor.session_id) if actor.session_id else None
        return {
            "is_impersonating": True,
            "impersonator_id": actor.impersonator_id,
            "impersonator_role": actor.impersonator_role.value
            if actor.impersonator_role
            else None,
            "impersonated_id": actor.id,
            "impersonated_role": actor.role.value,
            "session": session.to_dict() if session else None,
        }

    # -- expiry -----------------------------------------------------------

    def sweep_expired(self) -> int:
        """Finalize every expired session still marked active. Returns count."""
        count = 0
        for session in self.sessions.find_expired_active(self.clock()):
            if not self._expire_if_due(session).is_active:
                count += 1
        if count:
            log.info(f"Expired {count} impersonation sessions")
        return count

    def _expire_if_due(self, session: ImpersonationSession) -> ImpersonationSession:
        if not (session.is_active and session.is_expired(self.clock())):
            return session
        updated = self.sessions.update_status(
            session.session_id, SessionStatus.COMPLETED, end_time=session.expires_at
        )
        if updated is None:
            # Someone else finalized it first
            return self.sessions.get(session.session_id) or session
        self.audit.record(
            Actor(id=session.impersonator_id, role=session.impersonator_role),
            AuditAction.IMPERSONATION_EXPIRED,
            ResourceType.IMPERSONATION,
            session.session_id,
            old_value={"status": SessionStatus.ACTIVE.value},
            new_value={"status": updated.status.value},
        )
        log.info(f"Impersonation session {session.session_id} expired")
        return updated

    def _require_admin(self, actor: Optional[Actor]) -> Actor:
        if actor is None:
            raise Unauthenticated("authentication required")
        if not has_minimum_role(actor.role, Role.ADMIN):
            raise InsufficientRole("requires role admin or higher")
        return actor
