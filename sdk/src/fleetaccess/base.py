"""Base repository for fleetaccess Postgres storage.

Provides shared database operations and error handling used by the
Postgres-backed user, assignment, session, audit and revocation repositories.
"""

from __future__ import annotations

from typing import Any, Callable, TypeVar

import psycopg
from psycopg.rows import dict_row, kwargs_row

T = TypeVar("T")

# Known row factories that return dict-like objects (iteration yields keys, not values)
_DICT_LIKE_FACTORIES = frozenset({dict_row, kwargs_row})

# SQLSTATE to exception class mapping
# Reference: https://www.postgresql.org/docs/current/errcodes-appendix.html
_SQLSTATE_EXCEPTIONS: dict[
    str, type[FleetAccessError]
] = {}  # Populated after class definitions


class FleetAccessError(Exception):
    """Base exception for fleetaccess operations.

    Every error carries the HTTP-equivalent status the CRUD layer should
    surface and a short machine-readable code.
    """

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, sqlstate: str | None = None):
        super().__init__(message)
        self.sqlstate = sqlstate


class UniqueViolationError(FleetAccessError):
    """Raised when a unique constraint is violated (e.g., duplicate email)."""

    status_code = 409
    code = "conflict"


class ForeignKeyViolationError(FleetAccessError):
    """Raised when a foreign key constraint is violated."""

    status_code = 400
    code = "invalid_reference"


class CheckViolationError(FleetAccessError):
    """Raised when a check constraint is violated (e.g., unknown role)."""

    status_code = 400
    code = "invalid_value"


# Populate SQLSTATE mapping after classes are defined
_SQLSTATE_EXCEPTIONS.update(
    {
        "23505": UniqueViolationError,  # unique_violation
        "23503": ForeignKeyViolationError,  # foreign_key_violation
        "23514": CheckViolationError,  # check_violation
    }
)


class BaseRepository:
    """Shared plumbing for Postgres repositories.

    Provides:
    - Database helper methods (_scalar, _fetchone, _fetchall, _write)
    - Error handling with SQLSTATE preservation

    Repositories wrap a single psycopg cursor. psycopg cursors are not
    thread-safe; do not share a repository across threads.
    """

    _error_class: type[FleetAccessError] = FleetAccessError

    def __init__(self, cursor: psycopg.Cursor[tuple[Any, ...]]) -> None:
        """Initialize the repository.

        Args:
            cursor: A psycopg3 cursor with default (tuple) row factory.
                Do NOT use row_factory=dict_row - rows are turned into dicts here.

        Raises:
            ValueError: If cursor has a dict-returning row factory.
        """
        if (
            hasattr(cursor, "row_factory")
            and cursor.row_factory in _DICT_LIKE_FACTORIES
        ):
            raise ValueError(
                "fleetaccess requires tuple row factory (the default). "
                "Remove row_factory=dict_row or kwargs_row from your cursor/connection."
            )
        self.cursor = cursor

    def _handle_error(self, e: psycopg.Error) -> None:
        """Convert psycopg errors to fleetaccess exceptions, preserving SQLSTATE."""
        sqlstate = getattr(e, "sqlstate", None)
        exc_class = _SQLSTATE_EXCEPTIONS.get(sqlstate, self._error_class)
        raise exc_class(str(e), sqlstate) from e

    def _rows_to_dicts(self, rows: list[tuple[Any, ...]]) -> list[dict[str, Any]]:
        columns = [desc[0] for desc in self.cursor.description]
        if rows and isinstance(rows[0], dict):
            raise self._error_class(
                "Cursor returned dict rows. fleetaccess requires tuple row factory.",
                sqlstate=None,
            )
        return [dict(zip(columns, row)) for row in rows]

    def _scalar(self, sql: str, params: tuple[Any, ...]) -> Any:
        """Execute SQL and return single scalar value."""
        try:
            self.cursor.execute(sql, params)
            result = self.cursor.fetchone()
            return result[0] if result else None
        except psycopg.Error as e:
            self._handle_error(e)

    def _fetchone(self, sql: str, params: tuple[Any, ...]) -> dict[str, Any] | None:
        """Execute SQL and return the first row as a dict, or None."""
        try:
            self.cursor.execute(sql, params)
            row = self.cursor.fetchone()
            if row is None:
                return None
            return self._rows_to_dicts([row])[0]
        except psycopg.Error as e:
            self._handle_error(e)

    def _fetchall(self, sql: str, params: tuple[Any, ...]) -> list[dict[str, Any]]:
        """Execute SQL and return all rows as list of dicts."""
        try:
            self.cursor.execute(sql, params)
            return self._rows_to_dicts(self.cursor.fetchall())
        except psycopg.Error as e:
            self._handle_error(e)

    def _write(self, executor: Callable[[], T]) -> T:
        """Execute a write inside a transaction.

        - In autocommit mode: We wrap in an explicit transaction
        - In manual transaction mode: psycopg opens a savepoint, so a failed
          write does not poison the caller's transaction
        """
        conn = self.cursor.connection
        try:
            with conn.transaction():
                return executor()
        except psycopg.Error as e:
            self._handle_error(e)

    def _write_one(self, sql: str, params: tuple[Any, ...]) -> dict[str, Any] | None:
        """Execute a write returning at most one row as a dict."""

        def execute() -> dict[str, Any] | None:
            self.cursor.execute(sql, params)
            if self.cursor.description is None:
                return None
            row = self.cursor.fetchone()
            return self._rows_to_dicts([row])[0] if row else None

        return self._write(execute)

    def _write_scalar(self, sql: str, params: tuple[Any, ...]) -> Any:
        """Execute a write returning a single scalar value."""

        def execute() -> Any:
            self.cursor.execute(sql, params)
            if self.cursor.description is None:
                return self.cursor.rowcount
            row = self.cursor.fetchone()
            return row[0] if row else None

        return self._write(execute)
