"""
Cryptographic utilities for authentication.

- Password hashing (argon2)
- Token and session identifiers
"""

import secrets
import uuid

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

_ph = PasswordHasher()

# Pre-computed hash for timing-attack prevention on login
# Used when user doesn't exist to ensure constant-time response
DUMMY_HASH = _ph.hash("dummy-password-for-timing-attack-prevention")

# Prefix makes impersonation session ids identifiable in logs
SESSION_ID_PREFIX = "imp_"


def hash_password(password: str) -> str:
    """Hash a password using argon2."""
    return _ph.hash(password)


def verify_password(password: str, stored_hash: str) -> bool:
    """Verify a password against stored hash. Returns False on mismatch."""
    try:
        return _ph.verify(stored_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def new_token_id() -> str:
    """Random jti for a JWT."""
    return secrets.token_urlsafe(16)


def new_session_id() -> str:
    return SESSION_ID_PREFIX + uuid.uuid4().hex
