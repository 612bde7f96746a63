"""fleetaccess.repositories - storage interfaces and implementations."""

from fleetaccess.repositories.base import (
    AssignmentRepository,
    AuditSink,
    RevocationStore,
    SessionRepository,
    UserRepository,
)
from fleetaccess.repositories.memory import (
    MemoryAssignmentRepository,
    MemoryAuditSink,
    MemoryRevocationStore,
    MemorySessionRepository,
    MemoryUserRepository,
)
from fleetaccess.repositories.postgres import (
    PgAssignmentRepository,
    PgAuditSink,
    PgRevocationStore,
    PgSessionRepository,
    PgUserRepository,
    install_schema,
    load_schema,
)

__all__ = [
    "AssignmentRepository",
    "AuditSink",
    "RevocationStore",
    "SessionRepository",
    "UserRepository",
    "MemoryAssignmentRepository",
    "MemoryAuditSink",
    "MemoryRevocationStore",
    "MemorySessionRepository",
    "MemoryUserRepository",
    "PgAssignmentRepository",
    "PgAuditSink",
    "PgRevocationStore",
    "PgSessionRepository",
    "PgUserRepository",
    "install_schema",
    "load_schema",
]
