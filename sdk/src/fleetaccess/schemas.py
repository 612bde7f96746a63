from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional, TypeVar

from pydantic import BaseModel, EmailStr, Field, ValidationError

from fleetaccess.authz.roles import Role
from fleetaccess.errors import InvalidRequestError

M = TypeVar("M", bound=BaseModel)

AccountRole = Literal["owner", "admin", "member", "viewer"]


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class StartImpersonationRequest(BaseModel):
    target_id: str = Field(min_length=1)
    reason: Optional[str] = Field(default=None, max_length=500)


class EndImpersonationRequest(BaseModel):
    session_id: str = Field(min_length=1)
    reason: Optional[str] = Field(default=None, max_length=500)


class HistoryQuery(BaseModel):
    impersonator_id: Optional[str] = None
    impersonated_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class CsmAssignmentRequest(BaseModel):
    csm_id: str = Field(min_length=1)
    account_id: str = Field(min_length=1)
    is_primary: bool = False


class UserAssignmentRequest(BaseModel):
    user_id: str = Field(min_length=1)
    account_id: str = Field(min_length=1)
    role_in_account: AccountRole = "member"


class BulkAssignmentRequest(BaseModel):
    account_id: str = Field(min_length=1)
    user_ids: list[str] = Field(min_length=1)
    role_in_account: AccountRole = "member"


class ChangeRoleRequest(BaseModel):
    user_id: str = Field(min_length=1)
    role: Role


def parse(model: type[M], **data) -> M:
    """Validate keyword arguments into `model`. Raises InvalidRequestError."""
    try:
        return model(**data)
    except ValidationError as e:
        raise InvalidRequestError(
            "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            )
        ) from e
