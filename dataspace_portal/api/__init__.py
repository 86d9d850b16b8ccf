"""Flask integration: structured error responses and scope resolution."""
from flask import Flask

from .decorators import current_scope, get_oauth_claims, requires_scope
from .errors import register_error_handlers


def init_app(app: Flask, settings=None) -> Flask:
    """Attach error handlers and settings to an existing Flask app."""
    if settings is not None:
        app.config["APP_CONFIG"] = settings
    register_error_handlers(app)
    return app


__all__ = [
    "current_scope",
    "get_oauth_claims",
    "init_app",
    "register_error_handlers",
    "requires_scope",
]
