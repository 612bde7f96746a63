"""
Postgres repositories (psycopg 3).

Each repository wraps one cursor; build them per request from a pooled
connection. Install the tables first with install_schema().

Example:
    with psycopg.connect(DATABASE_URL, autocommit=True) as conn:
        install_schema(conn)
        sessions = PgSessionRepository(conn.cursor())
"""

from __future__ import annotations

import json
from datetime import datetime
from functools import partial
from importlib import resources
from typing import Any, Callable, Optional

import psycopg
from psycopg.types.json import Jsonb

from fleetaccess.authz.roles import Role
from fleetaccess.base import BaseRepository, UniqueViolationError
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

_json_dumps = partial(json.dumps, default=str)

# Partial unique index that allows one active session per pair
ACTIVE_PAIR_INDEX = "impersonation_sessions_active_pair_idx"


def load_schema() -> str:
    """Return the bundled schema.sql text."""
    return resources.files("fleetaccess").joinpath("sql/schema.sql").read_text()


def install_schema(conn: psycopg.Connection) -> None:
    """Create the fleetaccess tables if they don't exist."""
    conn.execute(load_schema())


class PgUserRepository(BaseRepository, UserRepository):
    _COLUMNS = "id, email, full_name, role, status, password_hash"

    def get(self, user_id: str) -> Optional[User]:
        row = self._fetchone(
            f"SELECT {self._COLUMNS} FROM users WHERE id = %s", (user_id,)
        )
        return User.from_row(row) if row else None

    def get_by_email(self, email: str) -> Optional[User]:
        row = self._fetchone(
            f"SELECT {self._COLUMNS} FROM users WHERE email = %s",
            (email.lower().strip(),),
        )
        return User.from_row(row) if row else None

    def add(self, user: User) -> User:
        row = self._write_one(
            f"""
            INSERT INTO users (id, email, full_name, role, status, password_hash)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING {self._COLUMNS}
            """,
            (
                user.id,
                user.email.lower().strip(),
                user.full_name,
                user.role.value,
                user.status.value,
                user.password_hash,
            ),
        )
        return User.from_row(row)

    def update_role(self, user_id: str, role: Role) -> Optional[User]:
        row = self._write_one(
            f"""
            UPDATE users SET role = %s, updated_at = now()
            WHERE id = %s
            RETURNING {self._COLUMNS}
            """,
            (role.value, user_id),
        )
        return User.from_row(row) if row else None

    def list_users(self, role: Optional[Role] = None) -> list[User]:
        if role is None:
            rows = self._fetchall(f"SELECT {self._COLUMNS} FROM users ORDER BY id", ())
        else:
            rows = self._fetchall(
                f"SELECT {self._COLUMNS} FROM users WHERE role = %s ORDER BY id",
                (role.value,),
            )
        return [User.from_row(r) for r in rows]


class PgAssignmentRepository(BaseRepository, AssignmentRepository):
    _COLUMNS = (
        "actor_id, account_id, kind, role_in_account, is_primary, assigned_by, assigned_at"
    )

    def add(self, assignment: Assignment) -> Assignment:
        row = self._write_one(
            f"""
            INSERT INTO account_assignments
                (actor_id, account_id, kind, role_in_account, is_primary, assigned_by, assigned_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING {self._COLUMNS}
            """,
            (
                assignment.actor_id,
                assignment.account_id,
                assignment.kind.value,
                assignment.role_in_account,
                assignment.is_primary,
                assignment.assigned_by,
                assignment.assigned_at,
            ),
        )
        return Assignment.from_row(row)

    def remove(self, actor_id: str, account_id: str, kind: AssignmentKind) -> bool:
        deleted = self._write_scalar(
            """
            DELETE FROM account_assignments
            WHERE actor_id = %s AND account_id = %s AND kind = %s
            """,
            (actor_id, account_id, kind.value),
        )
        return bool(deleted)

    def get_assignments_for(self, actor_id: str) -> set[str]:
        rows = self._fetchall(
            "SELECT account_id FROM account_assignments WHERE actor_id = %s",
            (actor_id,),
        )
        return {r["account_id"] for r in rows}

    def list_for_actor(self, actor_id: str) -> list[Assignment]:
        rows = self._fetchall(
            f"""
            SELECT {self._COLUMNS} FROM account_assignments
            WHERE actor_id = %s ORDER BY account_id
            """,
            (actor_id,),
        )
        return [Assignment.from_row(r) for r in rows]

    def list_for_account(
        self, account_id: str, kind: Optional[AssignmentKind] = None
    ) -> list[Assignment]:
        conditions = ["account_id = %s"]
        params: list[Any] = [account_id]
        if kind is not None:
            conditions.append("kind = %s")
            params.append(kind.value)
        rows = self._fetchall(
            f"""
            SELECT {self._COLUMNS} FROM account_assignments
            WHERE {" AND ".join(conditions)} ORDER BY actor_id
            """,
            tuple(params),
        )
        return [Assignment.from_row(r) for r in rows]


class PgSessionRepository(BaseRepository, SessionRepository):
    _COLUMNS = (
        "session_id, impersonator_id, impersonator_role, impersonated_id, "
        "impersonated_role, reason, status, start_time, expires_at, end_time, "
        "terminated_by, termination_reason, ip_address, user_agent"
    )

    def create(self, session: ImpersonationSession) -> ImpersonationSession:
        # The partial unique index on (impersonator_id, impersonated_id)
        # WHERE status = 'active' arbitrates concurrent starts.
        try:
            row = self._write_one(
                f"""
                INSERT INTO impersonation_sessions
                    (session_id, impersonator_id, impersonator_role, impersonated_id,
                     impersonated_role, reason, status, start_time, expires_at,
                     ip_address, user_agent)
                VALUES (%s, %s, %s, %s, %s, %s, 'active', %s, %s, %s, %s)
                RETURNING {self._COLUMNS}
                """,
                (
                    session.session_id,
                    session.impersonator_id,
                    session.impersonator_role.value,
                    session.impersonated_id,
                    session.impersonated_role.value,
                    session.reason,
                    session.start_time,
                    session.expires_at,
                    session.ip_address,
                    session.user_agent,
                ),
            )
        except UniqueViolationError as e:
            diag = getattr(e.__cause__, "diag", None)
            if getattr(diag, "constraint_name", None) != ACTIVE_PAIR_INDEX:
                raise
            raise ConflictingTransition(
                "an impersonation session is already active for this pair",
                e.sqlstate,
            ) from e
        return ImpersonationSession.from_row(row)

    def get(self, session_id: str) -> Optional[ImpersonationSession]:
        row = self._fetchone(
            f"SELECT {self._COLUMNS} FROM impersonation_sessions WHERE session_id = %s",
            (session_id,),
        )
        return ImpersonationSession.from_row(row) if row else None

    def update_status(
        self,
        session_id: str,
        status: SessionStatus,
        end_time: datetime,
        terminated_by: Optional[str] = None,
        termination_reason: Optional[str] = None,
    ) -> Optional[ImpersonationSession]:
        row = self._write_one(
            f"""
            UPDATE impersonation_sessions
            SET status = %s, end_time = %s, terminated_by = %s, termination_reason = %s
            WHERE session_id = %s AND status = 'active'
            RETURNING {self._COLUMNS}
            """,
            (status.value, end_time, terminated_by, termination_reason, session_id),
        )
        return ImpersonationSession.from_row(row) if row else None

    def find_active(
        self,
        impersonator_id: Optional[str] = None,
        impersonated_id: Optional[str] = None,
    ) -> list[ImpersonationSession]:
        conditions = ["status = 'active'"]
        params: list[Any] = []
        if impersonator_id is not None:
            conditions.append("impersonator_id = %s")
            params.append(impersonator_id)
        if impersonated_id is not None:
            conditions.append("impersonated_id = %s")
            params.append(impersonated_id)
        rows = self._fetchall(
            f"""
            SELECT {self._COLUMNS} FROM impersonation_sessions
            WHERE {" AND ".join(conditions)}
            ORDER BY start_time DESC
            """,
            tuple(params),
        )
        return [ImpersonationSession.from_row(r) for r in rows]

    def find_expired_active(self, now: datetime) -> list[ImpersonationSession]:
        rows = self._fetchall(
            f"""
            SELECT {self._COLUMNS} FROM impersonation_sessions
            WHERE status = 'active' AND expires_at <= %s
            """,
            (now,),
        )
        return [ImpersonationSession.from_row(r) for r in rows]

    def history(
        self,
        impersonator_id: Optional[str] = None,
        impersonated_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[ImpersonationSession]:
        conditions = ["TRUE"]
        params: list[Any] = []
        if impersonator_id is not None:
            conditions.append("impersonator_id = %s")
            params.append(impersonator_id)
        if impersonated_id is not None:
            conditions.append("impersonated_id = %s")
            params.append(impersonated_id)
        if start is not None:
            conditions.append("start_time >= %s")
            params.append(start)
        if end is not None:
            conditions.append("start_time <= %s")
            params.append(end)
        params.extend([limit, offset])
        rows = self._fetchall(
            f"""
            SELECT {self._COLUMNS} FROM impersonation_sessions
            WHERE {" AND ".join(conditions)}
            ORDER BY start_time DESC
            LIMIT %s OFFSET %s
            """,
            tuple(params),
        )
        return [ImpersonationSession.from_row(r) for r in rows]


class PgAuditSink(BaseRepository, AuditSink):
    def log(self, record: AuditRecord) -> None:
        # _write runs inside a savepoint when the caller holds a transaction,
        # so a failed audit insert never aborts the primary operation.
        self._write_scalar(
            """
            INSERT INTO audit_logs
                (user_id, impersonator_id, action, resource_type, resource_id,
                 old_values, new_values, ip_address, user_agent, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                record.actor_id,
                record.impersonator_id,
                record.action,
                record.resource_type,
                record.resource_id,
                Jsonb(record.old_value, dumps=_json_dumps)
                if record.old_value is not None
                else None,
                Jsonb(record.new_value, dumps=_json_dumps)
                if record.new_value is not None
                else None,
                record.ip_address,
                record.user_agent,
                record.timestamp,
            ),
        )

    def query(
        self,
        actor_id: Optional[str] = None,
        action: Optional[str] = None,
        resource_type: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditRecord]:
        conditions = ["TRUE"]
        params: list[Any] = []
        for column, value in (
            ("user_id", actor_id),
            ("action", action),
            ("resource_type", resource_type),
        ):
            if value is not None:
                conditions.append(f"{column} = %s")
                params.append(value)
        params.extend([limit, offset])
        rows = self._fetchall(
            f"""
            SELECT user_id, impersonator_id, action, resource_type, resource_id,
                   old_values, new_values, ip_address, user_agent, created_at
            FROM audit_logs
            WHERE {" AND ".join(conditions)}
            ORDER BY created_at DESC, id DESC
            LIMIT %s OFFSET %s
            """,
            tuple(params),
        )
        return [AuditRecord.from_row(r) for r in rows]


class PgRevocationStore(BaseRepository, RevocationStore):
    """Revocation store shared by every instance that points at the database."""

    def __init__(
        self,
        cursor: psycopg.Cursor[tuple[Any, ...]],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(cursor)
        # Expiry follows the service clock, as in the in-memory store
        self.clock = clock

    def revoke(self, token_id: str, expires_at: datetime) -> None:
        self._write_scalar(
            """
            INSERT INTO revoked_tokens (token_id, expires_at)
            VALUES (%s, %s)
            ON CONFLICT (token_id) DO NOTHING
            """,
            (token_id, expires_at),
        )

    def is_revoked(self, token_id: str) -> bool:
        return bool(
            self._scalar(
                """
                SELECT EXISTS (
                    SELECT 1 FROM revoked_tokens
                    WHERE token_id = %s AND expires_at > %s
                )
                """,
                (token_id, self.clock()),
            )
        )

    def cleanup(self, now: datetime) -> int:
        return self._write_scalar(
            "DELETE FROM revoked_tokens WHERE expires_at < %s", (now,)
        )
