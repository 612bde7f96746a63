"""
Storage interfaces.

Services depend only on these abstract classes. Two implementations ship:
- memory: lock-guarded dicts, single process only, lost on restart
- postgres: psycopg 3 over the tables in fleetaccess/sql/schema.sql
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from fleetaccess.authz.roles import Role
from fleetaccess.models import (
    Assignment,
    AssignmentKind,
    AuditRecord,
    ImpersonationSession,
    SessionStatus,
    User,
)


class UserRepository(ABC):
    @abstractmethod
    def get(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    def get_by_email(self, email: str) -> Optional[User]: ...

    @abstractmethod
    def add(self, user: User) -> User:
        """Insert a user. Raises UniqueViolationError on duplicate id or email."""
        ...

    @abstractmethod
    def update_role(self, user_id: str, role: Role) -> Optional[User]:
        """Change a user's role. Returns the updated user, None if not found."""
        ...

    @abstractmethod
    def list_users(self, role: Optional[Role] = None) -> list[User]: ...


class AssignmentRepository(ABC):
    @abstractmethod
    def add(self, assignment: Assignment) -> Assignment:
        """Insert an assignment. Raises UniqueViolationError if the pair exists."""
        ...

    @abstractmethod
    def remove(self, actor_id: str, account_id: str, kind: AssignmentKind) -> bool:
        """Delete an assignment. Returns False if there was nothing to delete."""
        ...

    @abstractmethod
    def get_assignments_for(self, actor_id: str) -> set[str]:
        """Account ids the actor is assigned to (any kind)."""
        ...

    @abstractmethod
    def list_for_actor(self, actor_id: str) -> list[Assignment]: ...

    @abstractmethod
    def list_for_account(
        self, account_id: str, kind: Optional[AssignmentKind] = None
    ) -> list[Assignment]: ...


class SessionRepository(ABC):
    @abstractmethod
    def create(self, session: ImpersonationSession) -> ImpersonationSession:
        """
        Insert an active session.

        Raises ConflictingTransition if the (impersonator, impersonated) pair
        already has an active session. The check and the insert are atomic.
        """
        ...

    @abstractmethod
    def get(self, session_id: str) -> Optional[ImpersonationSession]: ...

    @abstractmethod
    def update_status(
        self,
        session_id: str,
        status: SessionStatus,
        end_time: datetime,
        terminated_by: Optional[str] = None,
        termination_reason: Optional[str] = None,
    ) -> Optional[ImpersonationSession]:
        """
        Compare-and-swap an active session to a final status.

        Returns the updated session, or None if the session does not exist or
        is no longer active.
        """
        ...

    @abstractmethod
    def find_active(
        self,
        impersonator_id: Optional[str] = None,
        impersonated_id: Optional[str] = None,
    ) -> list[ImpersonationSession]: ...

    @abstractmethod
    def find_expired_active(self, now: datetime) -> list[ImpersonationSession]: ...

    @abstractmethod
    def history(
        self,
        impersonator_id: Optional[str] = None,
        impersonated_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[ImpersonationSession]:
        """Sessions newest first, filtered by participants and start_time window."""
        ...


class AuditSink(ABC):
    """Append-only audit log."""

    @abstractmethod
    def log(self, record: AuditRecord) -> None: ...

    @abstractmethod
    def query(
        self,
        actor_id: Optional[str] = None,
        action: Optional[str] = None,
        resource_type: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditRecord]:
        """Records newest first."""
        ...


class RevocationStore(ABC):
    """Revoked token ids, kept until the token would have expired anyway."""

    @abstractmethod
    def revoke(self, token_id: str, expires_at: datetime) -> None: ...

    @abstractmethod
    def is_revoked(self, token_id: str) -> bool: ...

    @abstractmethod
    def cleanup(self, now: datetime) -> int:
        """Evict entries whose token has expired. Returns count removed."""
        ...
