from __future__ import annotations

import logging

from flask import Flask, jsonify

from fleetaccess.base import FleetAccessError

log = logging.getLogger(__name__)


def error_response(e: FleetAccessError):
    body = {"error": e.code, "message": str(e)}
    response = jsonify(body)
    response.status_code = e.status_code
    if e.status_code == 401:
        response.headers["WWW-Authenticate"] = 'Bearer realm="fleetaccess"'
    return response


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(FleetAccessError)
    def handle_fleetaccess_error(e: FleetAccessError):
        if e.status_code >= 500:
            log.exception(f"Unhandled fleetaccess error: {e}")
        return error_response(e)
