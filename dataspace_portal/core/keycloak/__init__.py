"""Keycloak Admin API client library.

Architecture:
- client.py: HTTP client with admin token caching
- realm.py: Realm, client and user-profile management
- users.py: User create/delete with tenant claim
- roles.py: Realm and client role assignment
- admin.py: IdentityAdmin facade translating failures to IdentityAdminError
- exceptions.py: Typed exceptions for error handling

Usage:
    from dataspace_portal.core.keycloak import IdentityAdmin, KeycloakClient

    client = KeycloakClient("http://keycloak:8080", "admin", "password")
    admin = IdentityAdmin(client)
    admin.create_user_with_claim("edc", "alice", "s3cret", "tenantName", "acme", ["ROLE_USER_PARTICIPANT"])
"""
from .admin import IdentityAdmin
from .client import REQUEST_TIMEOUT, KeycloakClient, TokenCache
from .exceptions import (
    ClientNotFoundError,
    KeycloakAPIError,
    KeycloakError,
    KeycloakLookupError,
    RoleNotFoundError,
    UserNotFoundError,
)
from .realm import RealmService
from .roles import RoleService
from .users import UserService

__all__ = [
    "IdentityAdmin",
    "KeycloakClient",
    "TokenCache",
    "REQUEST_TIMEOUT",
    "RealmService",
    "RoleService",
    "UserService",
    "KeycloakError",
    "KeycloakAPIError",
    "KeycloakLookupError",
    "UserNotFoundError",
    "RoleNotFoundError",
    "ClientNotFoundError",
]
