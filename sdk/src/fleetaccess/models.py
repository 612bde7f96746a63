"""Records shared by the services and the repositories."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from fleetaccess.authz.roles import Role
from fleetaccess.context import utcnow

__all__ = [
    "Assignment",
    "AssignmentKind",
    "AuditRecord",
    "ImpersonationSession",
    "SessionStatus",
    "User",
    "UserStatus",
]


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    DELETED = "deleted"


@dataclass(frozen=True)
class User:
    id: str
    email: str
    role: Role
    status: UserStatus = UserStatus.ACTIVE
    full_name: Optional[str] = None
    password_hash: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> User:
        return cls(
            id=row["id"],
            email=row["email"],
            role=Role(row["role"]),
            status=UserStatus(row["status"]),
            full_name=row.get("full_name"),
            password_hash=row.get("password_hash"),
        )

    def to_public(self) -> dict[str, Any]:
        """User fields safe to return to clients. Never includes password_hash."""
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role.value,
            "status": self.status.value,
            "full_name": self.full_name,
        }


class AssignmentKind(str, Enum):
    CSM = "csm"  # csm may act on the account
    MEMBER = "member"  # user belongs to the account


@dataclass(frozen=True)
class Assignment:
    actor_id: str
    account_id: str
    kind: AssignmentKind
    assigned_by: Optional[str] = None
    role_in_account: Optional[str] = None
    is_primary: bool = False
    assigned_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Assignment:
        return cls(
            actor_id=row["actor_id"],
            account_id=row["account_id"],
            kind=AssignmentKind(row["kind"]),
            assigned_by=row.get("assigned_by"),
            role_in_account=row.get("role_in_account"),
            is_primary=bool(row.get("is_primary")),
            assigned_at=row["assigned_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["assigned_at"] = self.assigned_at.isoformat()
        return data


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"  # ended by the impersonator (or expired)
    TERMINATED = "terminated"  # force-ended by a superadmin


# active is the only state with outgoing transitions
SESSION_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.ACTIVE: frozenset({SessionStatus.COMPLETED, SessionStatus.TERMINATED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.TERMINATED: frozenset(),
}


@dataclass(frozen=True)
class ImpersonationSession:
    session_id: str
    impersonator_id: str
    impersonator_role: Role
    impersonated_id: str
    impersonated_role: Role
    start_time: datetime
    expires_at: datetime
    status: SessionStatus = SessionStatus.ACTIVE
    reason: Optional[str] = None
    end_time: Optional[datetime] = None
    terminated_by: Optional[str] = None
    termination_reason: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def can_transition(self, to: SessionStatus) -> bool:
        return to in SESSION_TRANSITIONS[self.status]

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ImpersonationSession:
        return cls(
            session_id=row["session_id"],
            impersonator_id=row["impersonator_id"],
            impersonator_role=Role(row["impersonator_role"]),
            impersonated_id=row["impersonated_id"],
            impersonated_role=Role(row["impersonated_role"]),
            start_time=row["start_time"],
            expires_at=row["expires_at"],
            status=SessionStatus(row["status"]),
            reason=row.get("reason"),
            end_time=row.get("end_time"),
            terminated_by=row.get("terminated_by"),
            termination_reason=row.get("termination_reason"),
            ip_address=row.get("ip_address"),
            user_agent=row.get("user_agent"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "impersonator_id": self.impersonator_id,
            "impersonator_role": self.impersonator_role.value,
            "impersonated_id": self.impersonated_id,
            "impersonated_role": self.impersonated_role.value,
            "status": self.status.value,
            "reason": self.reason,
            "start_time": self.start_time.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "terminated_by": self.terminated_by,
            "termination_reason": self.termination_reason,
        }


@dataclass(frozen=True)
class AuditRecord:
    actor_id: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str]
    impersonator_id: Optional[str] = None
    old_value: Optional[dict[str, Any]] = None
    new_value: Optional[dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> AuditRecord:
        return cls(
            actor_id=row.get("user_id"),
            action=row["action"],
            resource_type=row["resource_type"],
            resource_id=row.get("resource_id"),
            impersonator_id=row.get("impersonator_id"),
            old_value=row.get("old_values"),
            new_value=row.get("new_values"),
            ip_address=row.get("ip_address"),
            user_agent=row.get("user_agent"),
            timestamp=row["created_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data
