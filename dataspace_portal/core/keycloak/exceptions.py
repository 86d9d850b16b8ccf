"""Keycloak-specific exceptions, translated to IdentityAdminError by the facade."""
from typing import Optional


class KeycloakError(Exception):
    """Base exception for all Keycloak operations."""


class KeycloakAPIError(KeycloakError):
    """Non-2xx answer from the Keycloak Admin API or token endpoint.

    Attributes:
        status_code: HTTP status code
        message: Response body text
        endpoint: URL that failed
    """

    def __init__(self, status_code: int, message: str, endpoint: str):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"[{status_code}] {endpoint}: {message}")


class KeycloakLookupError(KeycloakError):
    """A named realm resource could not be found."""

    resource = "resource"

    def __init__(self, name: str, realm: Optional[str] = None):
        self.name = name
        self.realm = realm
        where = f" in realm '{realm}'" if realm else ""
        super().__init__(f"{self.resource.capitalize()} '{name}' not found{where}")


class UserNotFoundError(KeycloakLookupError):
    resource = "user"


class RoleNotFoundError(KeycloakLookupError):
    resource = "role"


class ClientNotFoundError(KeycloakLookupError):
    resource = "client"
