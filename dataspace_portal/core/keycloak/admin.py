"""Identity provider admin facade used by the provisioning core.

Composes the user, role and realm services and translates every Keycloak
or transport failure into ``IdentityAdminError``.
"""
from __future__ import annotations
import logging
from typing import Iterable, Optional

import requests

from ..errors import IdentityAdminError
from .client import KeycloakClient
from .exceptions import KeycloakAPIError, KeycloakError
from .realm import RealmService
from .roles import RoleService
from .users import UserService

logger = logging.getLogger(__name__)


def _translate(exc: Exception, message: str, **context) -> IdentityAdminError:
    if isinstance(exc, KeycloakAPIError):
        context.setdefault("upstream_status", exc.status_code)
    return IdentityAdminError(f"{message}: {exc}", context)


class IdentityAdmin:
    """High-level identity operations on one Keycloak instance."""

    def __init__(self, client: KeycloakClient):
        self.client = client
        self.users = UserService(client)
        self.roles = RoleService(client)
        self.realms = RealmService(client)

    @classmethod
    def from_config(cls, cfg) -> "IdentityAdmin":
        return cls(KeycloakClient.from_config(cfg))

    def create_user_with_claim(
        self,
        realm: str,
        username: str,
        password: str,
        claim_key: str,
        claim_value: str,
        realm_roles: Optional[Iterable[str]] = None,
    ) -> str:
        """Create a user carrying a tenant claim and assign realm roles.

        Returns:
            Keycloak user id

        Raises:
            IdentityAdminError: On any Keycloak failure
        """
        roles = list(realm_roles or [])
        try:
            user_id = self.users.create_user_with_claim(realm, username, password, claim_key, claim_value)
            self.roles.assign_realm_roles(realm, user_id, roles)
        except (KeycloakError, requests.RequestException) as exc:
            logger.error("[joiner] Failed to create user '%s' in realm '%s': %s", username, realm, exc)
            raise _translate(exc, "Unable to create identity user", realm=realm, username=username) from exc
        logger.info("[joiner] Realm '%s': user '%s' ready with roles %s and claim %s=%s",
                    realm, username, roles, claim_key, claim_value)
        return user_id

    def delete_user_by_username(self, realm: str, username: str) -> bool:
        """Delete a user by username; returns False when no such user exists."""
        try:
            return self.users.delete_user_by_username(realm, username)
        except (KeycloakError, requests.RequestException) as exc:
            logger.error("[leaver] Failed to delete user '%s' from realm '%s': %s", username, realm, exc)
            raise _translate(exc, f"Unable to delete user {username}", realm=realm, username=username) from exc

    def bootstrap_realm(
        self,
        realm: str,
        client_id: str,
        claim_key: str,
        client_roles: Iterable[str],
        *,
        root_url: str = "",
        redirect_uris: Optional[list[str]] = None,
        web_origins: Optional[list[str]] = None,
    ) -> str:
        """Create a realm, its portal client, claim mapper and client roles.

        Returns:
            Portal client UUID
        """
        try:
            self.realms.create_realm(realm)
            self.realms.add_user_profile_attribute(realm, claim_key)
            client_uuid = self.realms.create_client(realm, client_id, root_url, redirect_uris, web_origins)
            self.realms.create_user_attribute_mapper(realm, client_uuid, claim_key)
            self.roles.create_client_roles(realm, client_uuid, client_roles)
        except (KeycloakError, requests.RequestException) as exc:
            logger.error("[init] Failed to bootstrap realm '%s': %s", realm, exc)
            raise _translate(exc, "Error creating realm/client", realm=realm, client_id=client_id) from exc
        return client_uuid
