"""
JWT issuance and verification.

Two token types share one signing key:

    access          normal login token, ACCESS_TOKEN_TTL (default 24h)
    impersonation   bound to one impersonation session, expires with it

Verification tries JWT_SECRET, then JWT_PREVIOUS_SECRET, so a secret can be
rotated without logging everybody out. Every verification consults the
revocation store.

Usage:
    tokens = TokenService(config, MemoryRevocationStore())
    token, claims = tokens.issue_access_token(user)
    claims = tokens.verify(token)
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Literal, Optional, Union

import jwt
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fleetaccess.authz.roles import Role
from fleetaccess.config import Config
from fleetaccess.context import utcnow
from fleetaccess.errors import InvalidToken

from .crypto import new_token_id

if TYPE_CHECKING:
    from fleetaccess.models import ImpersonationSession, User
    from fleetaccess.repositories.base import RevocationStore

log = logging.getLogger(__name__)

ACCESS = "access"
IMPERSONATION = "impersonation"

# Tolerated clock skew between issuing and verifying instances
IAT_LEEWAY_SECONDS = 60


class _Claims(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    role: Role
    jti: str
    iat: datetime
    exp: datetime


class AccessClaims(_Claims):
    sub: str
    token_type: Literal["access"] = Field(alias="tokenType")


class ImpersonationClaims(_Claims):
    """
    Claims of an impersonation token.

    id/role repeat subjectId/subjectRole so that code reading only the
    basic claims acts as the impersonated user.
    """

    token_type: Literal["impersonation"] = Field(alias="tokenType")
    subject_id: str = Field(alias="subjectId")
    subject_role: Role = Field(alias="subjectRole")
    impersonator_id: str = Field(alias="impersonatorId")
    impersonator_role: Role = Field(alias="impersonatorRole")
    session_id: str = Field(alias="sessionId")


Claims = Union[AccessClaims, ImpersonationClaims]


def _timestamp(dt: datetime) -> int:
    return int(dt.timestamp())


class TokenService:
    def __init__(
        self,
        config: Config,
        revocations: RevocationStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        if not config.JWT_SECRET:
            raise ValueError("JWT_SECRET must be set")
        self.config = config
        self.revocations = revocations
        self.clock = clock

    def _encode(self, payload: dict[str, Any]) -> str:
        payload = {
            **payload,
            "iss": self.config.JWT_ISSUER,
            "aud": self.config.JWT_AUDIENCE,
        }
        return jwt.encode(
            payload, self.config.JWT_SECRET, algorithm=self.config.JWT_ALGORITHM
        )

    def issue_access_token(self, user: User) -> tuple[str, AccessClaims]:
        now = self.clock()
        claims = AccessClaims(
            id=user.id,
            sub=user.id,
            role=user.role,
            token_type=ACCESS,
            jti=new_token_id(),
            iat=now,
            exp=now + self.config.ACCESS_TOKEN_TTL,
        )
        token = self._encode(
            {
                "id": claims.id,
                "sub": claims.sub,
                "role": claims.role.value,
                "tokenType": ACCESS,
                "jti": claims.jti,
                "iat": _timestamp(claims.iat),
                "exp": _timestamp(claims.exp),
            }
        )
        return token, claims

    def issue_impersonation_token(self, session: ImpersonationSession) -> str:
        """Mint the token for a session. It expires exactly when the session does."""
        return self._encode(
            {
                "id": session.impersonated_id,
                "sub": session.impersonated_id,
                "role": session.impersonated_role.value,
                "tokenType": IMPERSONATION,
                "subjectId": session.impersonated_id,
                "subjectRole": session.impersonated_role.value,
                "impersonatorId": session.impersonator_id,
                "impersonatorRole": session.impersonator_role.value,
                "sessionId": session.session_id,
                "jti": new_token_id(),
                "iat": _timestamp(session.start_time),
                "exp": _timestamp(session.expires_at),
            }
        )

    def _secrets(self) -> list[str]:
        keys = [self.config.JWT_SECRET]
        if self.config.JWT_PREVIOUS_SECRET:
            keys.append(self.config.JWT_PREVIOUS_SECRET)
        return keys

    def decode(self, token: str) -> dict[str, Any]:
        """
        Verify signature, issuer, audience and expiry.

        Returns:
            The raw payload

        Raises:
            InvalidToken: On any verification failure
        """
        if not token:
            raise InvalidToken("missing token")

        last_error: Optional[jwt.InvalidTokenError] = None
        for key in self._secrets():
            try:
                payload = jwt.decode(
                    token,
                    key,
                    algorithms=[self.config.JWT_ALGORITHM],
                    audience=self.config.JWT_AUDIENCE,
                    issuer=self.config.JWT_ISSUER,
                    # iat is checked below against the service clock
                    options={"require": ["exp", "iat", "jti"], "verify_iat": False},
                )
                break
            except jwt.InvalidSignatureError as e:
                # Try the previous secret
                last_error = e
            except jwt.ExpiredSignatureError as e:
                raise InvalidToken("token expired") from e
            except jwt.InvalidTokenError as e:
                log.warning(f"Invalid token: {e}")
                raise InvalidToken("invalid token") from e
        else:
            log.warning(f"Invalid token signature: {last_error}")
            raise InvalidToken("invalid token signature") from last_error

        now = _timestamp(self.clock())
        if payload["exp"] <= now:
            raise InvalidToken("token expired")
        if payload["iat"] > now + IAT_LEEWAY_SECONDS:
            raise InvalidToken("token issued in the future")
        if self.revocations.is_revoked(payload["jti"]):
            log.warning(f"Revoked token presented: jti={payload['jti']}")
            raise InvalidToken("token has been revoked")
        return payload

    def verify(self, token: str) -> Claims:
        """Decode a token of either type into its claims model."""
        payload = self.decode(token)
        token_type = payload.get("tokenType")
        try:
            if token_type == ACCESS:
                return AccessClaims.model_validate(payload)
            if token_type == IMPERSONATION:
                return ImpersonationClaims.model_validate(payload)
        except ValidationError as e:
            log.warning(f"Malformed {token_type} token claims: {e.error_count()} errors")
            raise InvalidToken(f"malformed {token_type} token") from e
        raise InvalidToken(f"unknown token type: {token_type!r}")

    def verify_access(self, token: str) -> AccessClaims:
        claims = self.verify(token)
        if not isinstance(claims, AccessClaims):
            raise InvalidToken("expected an access token")
        return claims

    def verify_impersonation(self, token: str) -> ImpersonationClaims:
        claims = self.verify(token)
        if not isinstance(claims, ImpersonationClaims):
            raise InvalidToken("expected an impersonation token")
        return claims

    def revoke(self, token: str) -> Claims:
        """
        Revoke a token until it would have expired anyway.

        Returns:
            The claims of the revoked token

        Raises:
            InvalidToken: Token already invalid (expired, revoked, forged)
        """
        claims = self.verify(token)
        self.revocations.revoke(claims.jti, claims.exp)
        return claims

    def purge_revocations(self, now: Optional[datetime] = None) -> int:
        removed = self.revocations.cleanup(now or self.clock())
        if removed:
            log.info(f"Purged {removed} expired token revocations")
        return removed
