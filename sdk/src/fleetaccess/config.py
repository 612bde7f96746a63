import os
from dataclasses import dataclass, field
from datetime import timedelta

# Impersonation tokens must never outlive this, whatever the environment says.
MAX_IMPERSONATION_TTL = timedelta(hours=2)


def _env_seconds(name: str, default: int) -> timedelta:
    return timedelta(seconds=int(os.environ.get(name, default)))


@dataclass(frozen=True)
class Config:
    """Settings for token issuance and storage.

    Defaults are read from the environment when the instance is created, so
    tests can pass explicit values and deployments can rely on env vars.
    """

    JWT_SECRET: str = field(default_factory=lambda: os.environ.get("JWT_SECRET", ""))
    # Previous secret stays valid for verification only (graceful rotation)
    JWT_PREVIOUS_SECRET: str | None = field(
        default_factory=lambda: os.environ.get("JWT_PREVIOUS_SECRET") or None
    )
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = field(
        default_factory=lambda: os.environ.get("JWT_ISSUER", "fleetaccess")
    )
    JWT_AUDIENCE: str = field(
        default_factory=lambda: os.environ.get("JWT_AUDIENCE", "fleetaccess-users")
    )
    ACCESS_TOKEN_TTL: timedelta = field(
        default_factory=lambda: _env_seconds("ACCESS_TOKEN_TTL_SECONDS", 24 * 3600)
    )
    IMPERSONATION_TOKEN_TTL: timedelta = field(
        default_factory=lambda: _env_seconds("IMPERSONATION_TOKEN_TTL_SECONDS", 3600)
    )
    DATABASE_URL: str | None = field(
        default_factory=lambda: os.environ.get("DATABASE_URL") or None
    )

    def __post_init__(self):
        if self.IMPERSONATION_TOKEN_TTL <= timedelta(0):
            raise ValueError("IMPERSONATION_TOKEN_TTL must be positive")
        if self.IMPERSONATION_TOKEN_TTL >= self.ACCESS_TOKEN_TTL:
            raise ValueError(
                "IMPERSONATION_TOKEN_TTL must be shorter than ACCESS_TOKEN_TTL"
            )
        if self.IMPERSONATION_TOKEN_TTL > MAX_IMPERSONATION_TTL:
            raise ValueError(
                f"IMPERSONATION_TOKEN_TTL may not exceed {MAX_IMPERSONATION_TTL}"
            )
