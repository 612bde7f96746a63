"""
Login, bearer-token authentication and logout.

authenticate() is the single entry point that turns a token into an Actor.
For impersonation tokens it also re-checks, on every request, that the
session is active and that the impersonator may still impersonate the
subject; a demoted or deactivated impersonator loses the session at once.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from fleetaccess.audit import AuditAction, AuditTrail, ResourceType
from fleetaccess.authz.roles import can_impersonate
from fleetaccess.context import Actor, RequestMeta, utcnow
from fleetaccess.errors import InvalidToken, Unauthenticated
from fleetaccess.schemas import LoginRequest, parse

from .crypto import DUMMY_HASH, verify_password
from .tokens import AccessClaims, ImpersonationClaims

if TYPE_CHECKING:
    from fleetaccess.impersonation.manager import ImpersonationManager
    from fleetaccess.models import User
    from fleetaccess.repositories.base import UserRepository

    from .tokens import TokenService

log = logging.getLogger(__name__)


class AuthService:
    def __init__(
        self,
        users: UserRepository,
        tokens: TokenService,
        impersonation: ImpersonationManager,
        audit: AuditTrail,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.users = users
        self.tokens = tokens
        self.impersonation = impersonation
        self.audit = audit
        self.clock = clock

    def login(
        self, email: str, password: str, meta: Optional[RequestMeta] = None
    ) -> tuple[str, User]:
        """
        Check credentials and issue an access token.

        Returns:
            (token, user)

        Raises:
            InvalidRequestError: Malformed email or empty password
            Unauthenticated: Wrong credentials or inactive account
        """
        req = parse(LoginRequest, email=email, password=password)
        user = self.users.get_by_email(req.email)

        if user is None or not user.password_hash:
            # Same argon2 cost whether or not the user exists
            verify_password(req.password, DUMMY_HASH)
            self._login_failed(None, req.email, meta)
            raise Unauthenticated("invalid email or password")

        if not verify_password(req.password, user.password_hash):
            self._login_failed(user, req.email, meta)
            raise Unauthenticated("invalid email or password")

        if not user.is_active:
            self._login_failed(user, req.email, meta)
            raise Unauthenticated(f"account is {user.status.value}")

        token, claims = self.tokens.issue_access_token(user)
        self.audit.record(
            Actor(id=user.id, role=user.role, token_id=claims.jti),
            AuditAction.LOGIN,
            ResourceType.AUTH,
            user.id,
            meta=meta,
        )
        log.info(f"Login: {user.id} ({user.role.value})")
        return token, user

    def _login_failed(
        self, user: Optional[User], email: str, meta: Optional[RequestMeta]
    ) -> None:
        log.warning(f"Failed login for {email}")
        self.audit.record(
            Actor(id=user.id, role=user.role) if user else None,
            AuditAction.LOGIN_FAILED,
            ResourceType.AUTH,
            user.id if user else None,
            new_value={"email": email},
            meta=meta,
        )

    def authenticate(self, token: Optional[str]) -> Actor:
        """
        Resolve a bearer token into an Actor.

        Raises:
            Unauthenticated: No token, or the user is gone or inactive
            InvalidToken: Token fails verification or its session is not active
        """
        if not token:
            raise Unauthenticated("authentication required")

        claims = self.tokens.verify(token)
        if isinstance(claims, AccessClaims):
            user = self._active_user(claims.id)
            # Role comes from the store, so a role change applies immediately
            return Actor(id=user.id, role=user.role, token_id=claims.jti)

        return self._impersonation_actor(claims)

    def _impersonation_actor(self, claims: ImpersonationClaims) -> Actor:
        self.impersonation.validate_claims(claims)
        target = self._active_user(claims.subject_id)

        impersonator = self.users.get(claims.impersonator_id)
        if impersonator is None or not impersonator.is_active:
            raise InvalidToken("impersonator is no longer active")
        if not can_impersonate(
            impersonator.role,
            target.role,
            actor_id=impersonator.id,
            target_id=target.id,
        ):
            log.warning(
                f"Impersonation token no longer permitted: {impersonator.id} "
                f"({impersonator.role.value}) -> {target.id} ({target.role.value})"
            )
            raise InvalidToken("impersonator may no longer impersonate this user")

        return Actor(
            id=target.id,
            role=target.role,
            impersonator_id=impersonator.id,
            impersonator_role=impersonator.role,
            session_id=claims.session_id,
            token_id=claims.jti,
        )

    def _active_user(self, user_id: str) -> User:
        user = self.users.get(user_id)
        if user is None or not user.is_active:
            raise Unauthenticated("user not found or not active")
        return user

    def logout(
        self, actor: Optional[Actor], token: str, meta: Optional[RequestMeta] = None
    ) -> None:
        """
        Revoke the presented token. An impersonation session is left running;
        end it with ImpersonationManager.end_session.

        Raises:
            Unauthenticated: No actor
            InvalidToken: Token already invalid
        """
        if actor is None:
            raise Unauthenticated("authentication required")
        claims = self.tokens.revoke(token)
        self.audit.record(
            actor,
            AuditAction.LOGOUT,
            ResourceType.AUTH,
            actor.principal_id,
            new_value={"token_type": claims.token_type},
            meta=meta,
        )
        log.info(f"Logout: {actor.principal_id}")
