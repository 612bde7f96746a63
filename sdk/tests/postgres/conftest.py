"""
Fixtures for the Postgres repositories.

Tests run in a dedicated schema, installed once per session and truncated
between tests. They are skipped when DATABASE_URL is unreachable.
"""

import psycopg
import pytest

from fleetaccess import AccessControl
from fleetaccess.repositories.postgres import PgUserRepository, install_schema

SCHEMA = "fleetaccess_test"
TABLES = (
    "audit_logs",
    "revoked_tokens",
    "impersonation_sessions",
    "account_assignments",
    "users",
)


@pytest.fixture(scope="session")
def connect(database_url):
    """Open a new autocommit connection pinned to the test schema."""

    def make():
        return psycopg.connect(
            database_url,
            autocommit=True,
            connect_timeout=3,
            options=f"-c search_path={SCHEMA}",
        )

    return make


@pytest.fixture(scope="session")
def db_connection(database_url):
    try:
        conn = psycopg.connect(database_url, autocommit=True, connect_timeout=3)
    except psycopg.OperationalError as e:
        pytest.skip(f"Postgres not available: {e}")

    conn.execute(f"DROP SCHEMA IF EXISTS {SCHEMA} CASCADE")
    conn.execute(f"CREATE SCHEMA {SCHEMA}")
    conn.execute(f"SET search_path TO {SCHEMA}")
    install_schema(conn)

    yield conn

    conn.execute(f"DROP SCHEMA IF EXISTS {SCHEMA} CASCADE")
    conn.close()


@pytest.fixture
def cursor(db_connection, seeded_users):
    db_connection.execute(f"TRUNCATE {', '.join(TABLES)} RESTART IDENTITY CASCADE")
    cur = db_connection.cursor()
    users = PgUserRepository(cur)
    for user in seeded_users:
        users.add(user)
    yield cur
    cur.close()


@pytest.fixture
def pg_access(cursor, config, clock):
    """Postgres-backed AccessControl over the seeded users."""
    return AccessControl.from_cursor(cursor, config, clock)


@pytest.fixture
def thread_access(cursor, connect, config, clock):
    """
    Factory for AccessControl instances on their own connections, one per
    thread. Connections are closed at teardown.
    """
    connections = []

    def make():
        conn = connect()
        connections.append(conn)
        return AccessControl.from_cursor(conn.cursor(), config, clock)

    yield make

    for conn in connections:
        conn.close()
