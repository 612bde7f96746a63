"""
AccessControl - wires the repositories into the services.

Usage:
    # Tests / single process
    access = AccessControl.in_memory(Config(JWT_SECRET=...), users=[...])

    # Postgres, one per request (cursor is not thread-safe)
    access = AccessControl.from_cursor(conn.cursor(), config)

    actor = access.authenticate(token)
    session, imp_token = access.start_session(actor, "28", reason="support call")
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

import psycopg

from fleetaccess.admin import AdminService
from fleetaccess.audit import AuditTrail
from fleetaccess.authn.service import AuthService
from fleetaccess.authn.tokens import Claims, ImpersonationClaims, TokenService
from fleetaccess.authz.roles import Role
from fleetaccess.authz.scope import ScopeFilter, ScopeResolver
from fleetaccess.config import Config
from fleetaccess.context import Actor, RequestMeta, utcnow
from fleetaccess.impersonation.manager import ImpersonationManager
from fleetaccess.models import ImpersonationSession, User
from fleetaccess.repositories.base import (
    AssignmentRepository,
    AuditSink,
    RevocationStore,
    SessionRepository,
    UserRepository,
)
from fleetaccess.repositories.memory import (
    MemoryAssignmentRepository,
    MemoryAuditSink,
    MemoryRevocationStore,
    MemorySessionRepository,
    MemoryUserRepository,
)
from fleetaccess.repositories.postgres import (
    PgAssignmentRepository,
    PgAuditSink,
    PgRevocationStore,
    PgSessionRepository,
    PgUserRepository,
)

log = logging.getLogger(__name__)


class AccessControl:
    """
    Role hierarchy, scope and impersonation for one backend.

    The services are available as attributes (auth, tokens, scope,
    impersonation, admin, audit); the methods below are shortcuts for the
    common calls.
    """

    def __init__(
        self,
        config: Config,
        *,
        users: UserRepository,
        assignments: AssignmentRepository,
        sessions: SessionRepository,
        audit_sink: AuditSink,
        revocations: RevocationStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.clock = clock
        self.users = users
        self.assignments = assignments
        self.sessions = sessions

        self.audit = AuditTrail(audit_sink, clock)
        self.tokens = TokenService(config, revocations, clock)
        self.scope = ScopeResolver(users, assignments)
        self.impersonation = ImpersonationManager(
            config, users, sessions, self.tokens, self.audit, clock
        )
        self.auth = AuthService(users, self.tokens, self.impersonation, self.audit, clock)
        self.admin = AdminService(users, assignments, self.scope, self.audit, clock)

    @classmethod
    def in_memory(
        cls,
        config: Optional[Config] = None,
        *,
        users: Iterable[User] = (),
        clock: Callable[[], datetime] = utcnow,
    ) -> AccessControl:
        """Process-local instance. State is lost on restart."""
        return cls(
            config or Config(),
            users=MemoryUserRepository(list(users)),
            assignments=MemoryAssignmentRepository(),
            sessions=MemorySessionRepository(),
            audit_sink=MemoryAuditSink(),
            revocations=MemoryRevocationStore(clock),
            clock=clock,
        )

    @classmethod
    def from_cursor(
        cls,
        cursor: psycopg.Cursor[tuple[Any, ...]],
        config: Optional[Config] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> AccessControl:
        """Postgres-backed instance sharing one cursor across repositories."""
        return cls(
            config or Config(),
            users=PgUserRepository(cursor),
            assignments=PgAssignmentRepository(cursor),
            sessions=PgSessionRepository(cursor),
            audit_sink=PgAuditSink(cursor),
            revocations=PgRevocationStore(cursor, clock),
            clock=clock,
        )

    # -- authentication -----------------------------------------------------

    def login(
        self, email: str, password: str, meta: Optional[RequestMeta] = None
    ) -> tuple[str, User]:
        return self.auth.login(email, password, meta)

    def authenticate(self, token: Optional[str]) -> Actor:
        return self.auth.authenticate(token)

    def logout(
        self, actor: Optional[Actor], token: str, meta: Optional[RequestMeta] = None
    ) -> None:
        self.auth.logout(actor, token, meta)

    def verify_token(self, token: str) -> Claims:
        return self.tokens.verify(token)

    # -- authorization ------------------------------------------------------

    def resolve_scope(self, actor: Actor) -> ScopeFilter:
        return self.scope.resolve_scope(actor)

    def require_role(self, actor: Optional[Actor], role: Role) -> Actor:
        return self.scope.require_role(actor, role)

    def require_account(self, actor: Actor, account_id: str) -> ScopeFilter:
        return self.scope.require_account(actor, account_id)

    def require_user_access(self, actor: Actor, user_id: str) -> User:
        return self.scope.require_user_access(actor, user_id)

    # -- impersonation ------------------------------------------------------

    def start_session(
        self,
        impersonator: Optional[Actor],
        target_id: str,
        reason: Optional[str] = None,
        meta: Optional[RequestMeta] = None,
    ) -> tuple[ImpersonationSession, str]:
        return self.impersonation.start_session(impersonator, target_id, reason, meta)

    def validate_impersonation_token(self, token: str) -> ImpersonationClaims:
        return self.impersonation.validate_impersonation_token(token)

    def get_session(self, session_id: str) -> Optional[ImpersonationSession]:
        return self.impersonation.get_session(session_id)

    def end_session(
        self,
        session_id: str,
        actor: Optional[Actor],
        reason: Optional[str] = None,
        meta: Optional[RequestMeta] = None,
    ) -> ImpersonationSession:
        return self.impersonation.end_session(session_id, actor, reason, meta)

    # -- maintenance --------------------------------------------------------

    def run_maintenance(self) -> dict[str, int]:
        """
        Periodic cleanup, e.g. hourly from a scheduler.

        Returns:
            {"expired_sessions": n, "purged_revocations": m}
        """
        result = {
            "expired_sessions": self.impersonation.sweep_expired(),
            "purged_revocations": self.tokens.purge_revocations(),
        }
        log.info(f"Maintenance complete: {result}")
        return result
