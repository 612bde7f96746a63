"""fleetaccess.authn - passwords, tokens and authentication."""

from fleetaccess.authn.crypto import (
    hash_password,
    new_session_id,
    new_token_id,
    verify_password,
)
from fleetaccess.authn.service import AuthService
from fleetaccess.authn.tokens import AccessClaims, ImpersonationClaims, TokenService

__all__ = [
    "AccessClaims",
    "AuthService",
    "ImpersonationClaims",
    "TokenService",
    "hash_password",
    "new_session_id",
    "new_token_id",
    "verify_password",
]
