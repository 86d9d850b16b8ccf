"""Error handlers for the application."""
import datetime
import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

from dataspace_portal.core.errors import PortalError

logger = logging.getLogger(__name__)


def _body(kind: str, message: str, status: int, details=None) -> dict:
    body = {
        "error": kind,
        "message": message,
        "status": status,
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
    }
    if details:
        body["details"] = details
    return body


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    @app.errorhandler(PortalError)
    def portal_error(error: PortalError):
        """Render domain errors with their kind and status."""
        if error.status >= 500:
            logger.error("[api] %s: %s %s", error.kind, error.message, error.context)
        else:
            logger.info("[api] %s: %s", error.kind, error.message)
        return jsonify(error.to_dict()), error.status

    @app.errorhandler(HTTPException)
    def http_error(error: HTTPException):
        """Routing and method errors raised by Flask itself."""
        kind = (error.name or "HTTP_ERROR").upper().replace(" ", "_")
        return jsonify(_body(kind, error.description or error.name, error.code)), error.code

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle uncaught exceptions without exposing internals."""
        if isinstance(error, HTTPException):
            return http_error(error)
        # Always log the full error server-side
        logger.error("[api] Unhandled exception: %s", error, exc_info=True)
        return jsonify(_body("INTERNAL_ERROR", "An unexpected error occurred", 500)), 500
