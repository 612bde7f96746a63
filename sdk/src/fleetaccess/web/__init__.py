"""
Flask integration.

    app = Flask(__name__)
    init_app(app)                                  # Postgres via DATABASE_URL
    init_app(app, access=AccessControl.in_memory(config, users=users))

Registers the request-id and request-metadata hooks, JSON error handlers
for FleetAccessError, impersonation response headers, and connection
teardown.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from flask import Flask, g, request

from fleetaccess.config import Config
from fleetaccess.context import RequestMeta
from fleetaccess.core import AccessControl

from .db import EXTENSION_KEY, _State, close_db, get_access, get_db
from .decorators import authenticated, bearer_token
from .errors import error_response, register_error_handlers

log = logging.getLogger(__name__)

__all__ = [
    "authenticated",
    "bearer_token",
    "error_response",
    "get_access",
    "get_db",
    "init_app",
    "request_meta",
]


def request_meta() -> RequestMeta:
    """Metadata of the current request, for audit records."""
    meta = g.get("request_meta")
    if meta is None:
        meta = RequestMeta(
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent", "")[:1024] or None,
            request_id=g.get("request_id"),
        )
    return meta


def init_app(
    app: Flask,
    access: Optional[AccessControl] = None,
    config: Optional[Config] = None,
) -> None:
    config = config or (access.config if access else Config())
    app.extensions[EXTENSION_KEY] = _State(config, access)
    app.teardown_appcontext(close_db)
    register_error_handlers(app)

    @app.before_request
    def set_request_context():
        g.request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        g.request_meta = RequestMeta(
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent", "")[:1024] or None,
            request_id=g.request_id,
        )

    @app.after_request
    def add_response_headers(response):
        response.headers["X-Request-ID"] = g.get("request_id", "")
        actor = g.get("actor")
        if actor is not None and actor.is_impersonating:
            log.info(
                f"Impersonated request: session {actor.session_id} "
                f"{actor.impersonator_id} as {actor.id} "
                f"{request.method} {request.path} -> {response.status_code}"
            )
            response.headers["X-Impersonation-Active"] = "true"
            response.headers["X-Impersonator-Id"] = actor.impersonator_id
            if actor.session_id:
                response.headers["X-Impersonation-Session"] = actor.session_id
        elif actor is not None:
            response.headers["X-Impersonation-Active"] = "false"
        return response
