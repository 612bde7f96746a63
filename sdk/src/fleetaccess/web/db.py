from __future__ import annotations

from flask import current_app, g
from psycopg_pool import ConnectionPool

from fleetaccess.config import Config
from fleetaccess.core import AccessControl

EXTENSION_KEY = "fleetaccess"


class _State:
    """Per-app state kept in app.extensions."""

    def __init__(self, config: Config, access: AccessControl | None = None):
        self.config = config
        # Shared instance (in-memory backend); None means Postgres per request
        self.access = access
        self.pool: ConnectionPool | None = None

    def get_pool(self) -> ConnectionPool:
        if self.pool is None:
            if not self.config.DATABASE_URL:
                raise RuntimeError("DATABASE_URL is not configured")
            self.pool = ConnectionPool(
                self.config.DATABASE_URL,
                min_size=2,
                max_size=10,
                kwargs={"autocommit": True},  # repositories manage transactions
            )
        return self.pool


def _state() -> _State:
    return current_app.extensions[EXTENSION_KEY]


def get_db():
    """Get a database connection for the current request."""
    if "db" not in g:
        g.db = _state().get_pool().getconn()
    return g.db


def get_access() -> AccessControl:
    """AccessControl for the current request."""
    state = _state()
    if state.access is not None:
        return state.access
    if "access" not in g:
        g.access = AccessControl.from_cursor(get_db().cursor(), state.config)
    return g.access


def close_db(exc=None):
    """Return connection to pool at end of request."""
    g.pop("access", None)
    db = g.pop("db", None)
    if db is not None:
        _state().get_pool().putconn(db)
