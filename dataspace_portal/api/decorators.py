"""
Flask decorators that resolve the caller's visibility scope.

Token signature validation happens upstream (gateway or auth middleware);
by the time a view runs, decoded claims are available on ``g.oauth_claims``.
``requires_scope`` turns them into a ``Scope`` once per request.
"""

import logging
from functools import wraps
from typing import Optional

from flask import current_app, g

from dataspace_portal.core.rbac import collect_authorities
from dataspace_portal.core.visibility import Action, Scope, VisibilityResolver

logger = logging.getLogger(__name__)


def get_resolver() -> VisibilityResolver:
    """Resolver configured on the app, built from settings on first use."""
    resolver = current_app.extensions.get("visibility_resolver")
    if resolver is None:
        from dataspace_portal.config import get_settings
        resolver = VisibilityResolver.from_settings(current_app.config.get("APP_CONFIG") or get_settings())
        current_app.extensions["visibility_resolver"] = resolver
    return resolver


def get_oauth_claims() -> Optional[dict]:
    """Decoded token claims attached to the current request, if any."""
    return getattr(g, "oauth_claims", None)


def requires_scope(action: Action):
    """
    Decorator resolving the caller's Scope for ``action`` and passing it as ``scope=``.

    AuthorizationDenied propagates to the registered error handlers, which
    render 400, 401 or 403 depending on the denial reason.

    Example:
        @bp.route("/participants", methods=["GET"])
        @requires_scope(Action.LIST_PARTICIPANTS)
        def list_participants(scope):
            ...
    """
    action = Action(action)

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            claims = get_oauth_claims() or {}
            authorities = collect_authorities(claims)
            scope = get_resolver().resolve(authorities, claims, action)
            logger.debug("[visibility] %s resolved to %s", action.value, scope)
            g.scope = scope
            kwargs["scope"] = scope
            return fn(*args, **kwargs)

        return wrapper
    return decorator


def current_scope() -> Optional[Scope]:
    """Scope resolved for the current request; must be called after @requires_scope."""
    return getattr(g, "scope", None)
