"""Error taxonomy for the provisioning core.

Every error raised by the orchestrator, the credential workflow and the
visibility resolver derives from PortalError, so HTTP and CLI layers can
render them uniformly through ``to_dict()``.
"""
from __future__ import annotations
import datetime
from typing import Any, Optional


class PortalError(Exception):
    """Domain error with a machine-readable kind and HTTP status."""

    kind = "INTERNAL_ERROR"
    status = 500

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None, *, status: Optional[int] = None):
        self.message = message
        self.context = dict(context or {})
        if status is not None:
            self.status = status
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to the structured error response body."""
        body: dict[str, Any] = {
            "error": self.kind,
            "message": self.message,
            "status": self.status,
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        }
        if self.context:
            body["details"] = self.context
        return body


class NotFoundError(PortalError):
    kind = "NOT_FOUND"
    status = 404


class ConflictError(PortalError):
    kind = "CONFLICT"
    status = 409


class NotActiveError(PortalError):
    """Operation requires the participant to be in a different lifecycle state."""
    kind = "NOT_ACTIVE"
    status = 400


class ValidationError(PortalError):
    kind = "VALIDATION_ERROR"
    status = 400


class ExternalApiError(PortalError):
    """Provisioner or credential issuer call failed (4xx/5xx or network)."""
    kind = "EXTERNAL_API_ERROR"
    status = 502


class IdentityAdminError(PortalError):
    """Identity provider admin call failed."""
    kind = "IDENTITY_ADMIN_ERROR"
    status = 502


class AuthorizationDenied(PortalError):
    """Caller may not perform the action.

    ``reason`` is one of BAD_REQUEST (required claim missing), FORBIDDEN
    (recognised role, not permitted) or UNAUTHORIZED (no recognised role).
    """

    REASON_STATUS = {
        "BAD_REQUEST": 400,
        "FORBIDDEN": 403,
        "UNAUTHORIZED": 401,
    }

    def __init__(self, reason: str, message: str, context: Optional[dict[str, Any]] = None):
        if reason not in self.REASON_STATUS:
            raise ValueError(f"Unknown denial reason: {reason}")
        self.reason = reason
        super().__init__(message, context, status=self.REASON_STATUS[reason])

    @property
    def kind(self) -> str:  # type: ignore[override]
        return self.reason
