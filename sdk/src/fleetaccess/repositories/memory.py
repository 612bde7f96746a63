"""
In-memory repositories.

Process-local and lost on restart: fine for tests and a single-process
deployment. Anything running more than one instance must use the Postgres
repositories, the revocation store in particular.
"""

from __future__ import annotations

import dataclasses
import threading
from datetime import datetime
from typing import Optional

from fleetaccess.authz.roles import Role
from fleetaccess.base import UniqueViolationError
from fleetaccess.context import utcnow
from fleetaccess.errors import ConflictingTransition
from fleetaccess.models import (
    Assignment,
    AssignmentKind,
    AuditRecord,
    ImpersonationSession,
    SessionStatus,
    User,
)

from .base import (
    AssignmentRepository,
    AuditSink,
    RevocationStore,
    SessionRepository,
    UserRepository,
)


class MemoryUserRepository(UserRepository):
    def __init__(self, users: Optional[list[User]] = None):
        self._lock = threading.Lock()
        self._users: dict[str, User] = {}
        for user in users or []:
            self.add(user)

    def get(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    def get_by_email(self, email: str) -> Optional[User]:
        email = email.lower().strip()
        return next((u for u in self._users.values() if u.email == email), None)

    def add(self, user: User) -> User:
        user = dataclasses.replace(user, email=user.email.lower().strip())
        with self._lock:
            if user.id in self._users:
                raise UniqueViolationError(f"user {user.id} already exists")
            if any(u.email == user.email for u in self._users.values()):
                raise UniqueViolationError(f"email {user.email} already in use")
            self._users[user.id] = user
        return user

    def update_role(self, user_id: str, role: Role) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            updated = dataclasses.replace(user, role=role)
            self._users[user_id] = updated
            return updated

    def list_users(self, role: Optional[Role] = None) -> list[User]:
        users = sorted(self._users.values(), key=lambda u: u.id)
        if role is not None:
            users = [u for u in users if u.role == role]
        return users


class MemoryAssignmentRepository(AssignmentRepository):
    def __init__(self):
        self._lock = threading.Lock()
        # (actor_id, account_id) -> Assignment
        self._rows: dict[tuple[str, str], Assignment] = {}

    def add(self, assignment: Assignment) -> Assignment:
        key = (assignment.actor_id, assignment.account_id)
        with self._lock:
            if key in self._rows:
                raise UniqueViolationError(
                    f"{assignment.actor_id} is already assigned to {assignment.account_id}"
                )
            self._rows[key] = assignment
        return assignment

    def remove(self, actor_id: str, account_id: str, kind: AssignmentKind) -> bool:
        key = (actor_id, account_id)
        with self._lock:
            row = self._rows.get(key)
            if row is None or row.kind != kind:
                return False
            del self._rows[key]
            return True

    def get_assignments_for(self, actor_id: str) -> set[str]:
        with self._lock:
            return {acc for (aid, acc) in self._rows if aid == actor_id}

    def list_for_actor(self, actor_id: str) -> list[Assignment]:
        with self._lock:
            rows = [a for a in self._rows.values() if a.actor_id == actor_id]
        return sorted(rows, key=lambda a: a.account_id)

    def list_for_account(
        self, account_id: str, kind: Optional[AssignmentKind] = None
    ) -> list[Assignment]:
        with self._lock:
            rows = [
                a
                for a in self._rows.values()
                if a.account_id == account_id and (kind is None or a.kind == kind)
            ]
        return sorted(rows, key=lambda a: a.actor_id)


class MemorySessionRepository(SessionRepository):
    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: dict[str, ImpersonationSession] = {}

    def create(self, session: ImpersonationSession) -> ImpersonationSession:
        with self._lock:
            for existing in self._sessions.values():
                if (
                    existing.is_active
                    and existing.impersonator_id == session.impersonator_id
                    and existing.impersonated_id == session.impersonated_id
                ):
                    raise ConflictingTransition(
                        f"session {existing.session_id} is already active for this pair"
                    )
            if session.session_id in self._sessions:
                raise UniqueViolationError(f"session {session.session_id} exists")
            self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> Optional[ImpersonationSession]:
        return self._sessions.get(session_id)

    def update_status(
        self,
        session_id: str,
        status: SessionStatus,
        end_time: datetime,
        terminated_by: Optional[str] = None,
        termination_reason: Optional[str] = None,
    ) -> Optional[ImpersonationSession]:
        with self._lock:
            current = self._sessions.get(session_id)
            if current is None or not current.is_active:
                return None
            updated = dataclasses.replace(
                current,
                status=status,
                end_time=end_time,
                terminated_by=terminated_by,
                termination_reason=termination_reason,
            )
            self._sessions[session_id] = updated
            return updated

    def find_active(
        self,
        impersonator_id: Optional[str] = None,
        impersonated_id: Optional[str] = None,
    ) -> list[ImpersonationSession]:
        with self._lock:
            rows = [
                s
                for s in self._sessions.values()
                if s.is_active
                and (impersonator_id is None or s.impersonator_id == impersonator_id)
                and (impersonated_id is None or s.impersonated_id == impersonated_id)
            ]
        return sorted(rows, key=lambda s: s.start_time, reverse=True)

    def find_expired_active(self, now: datetime) -> list[ImpersonationSession]:
        with self._lock:
            return [
                s for s in self._sessions.values() if s.is_active and s.is_expired(now)
            ]

    def history(
        self,
        impersonator_id: Optional[str] = None,
        impersonated_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[ImpersonationSession]:
        with self._lock:
            rows = [
                s
                for s in self._sessions.values()
                if (impersonator_id is None or s.impersonator_id == impersonator_id)
                and (impersonated_id is None or s.impersonated_id == impersonated_id)
                and (start is None or s.start_time >= start)
                and (end is None or s.start_time <= end)
            ]
        rows.sort(key=lambda s: s.start_time, reverse=True)
        return rows[offset : offset + limit]


class MemoryAuditSink(AuditSink):
    def __init__(self):
        self._lock = threading.Lock()
        self.records: list[AuditRecord] = []

    def log(self, record: AuditRecord) -> None:
        with self._lock:
            self.records.append(record)

    def query(
        self,
        actor_id: Optional[str] = None,
        action: Optional[str] = None,
        resource_type: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditRecord]:
        with self._lock:
            rows = [
                r
                for r in self.records
                if (actor_id is None or r.actor_id == actor_id)
                and (action is None or r.action == action)
                and (resource_type is None or r.resource_type == resource_type)
            ]
        rows.reverse()
        return rows[offset : offset + limit]


class MemoryRevocationStore(RevocationStore):
    def __init__(self, clock=utcnow):
        self._lock = threading.Lock()
        self._clock = clock
        self._revoked: dict[str, datetime] = {}

    def revoke(self, token_id: str, expires_at: datetime) -> None:
        with self._lock:
            self._revoked[token_id] = expires_at

    def is_revoked(self, token_id: str) -> bool:
        with self._lock:
            expires_at = self._revoked.get(token_id)
            if expires_at is None:
                return False
            if expires_at <= self._clock():
                # Token is dead on its own now
                del self._revoked[token_id]
                return False
            return True

    def cleanup(self, now: datetime) -> int:
        with self._lock:
            expired = [tid for tid, exp in self._revoked.items() if exp < now]
            for tid in expired:
                del self._revoked[tid]
        return len(expired)
