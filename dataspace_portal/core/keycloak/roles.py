"""Keycloak role management operations."""
from __future__ import annotations
import logging
from typing import Iterable

from .client import KeycloakClient
from .exceptions import KeycloakAPIError, RoleNotFoundError

logger = logging.getLogger(__name__)


class RoleService:
    """Service for managing Keycloak realm and client roles."""

    def __init__(self, client: KeycloakClient):
        """Initialize role service.

        Args:
            client: Keycloak admin client
        """
        self.client = client

    def _role_rep(self, path: str, role_name: str) -> dict:
        try:
            role = self.client.get(path).json()
        except KeycloakAPIError as exc:
            if exc.status_code == 404:
                raise RoleNotFoundError(role_name) from exc
            raise
        return {"id": role["id"], "name": role["name"]}

    def assign_realm_roles(self, realm: str, user_id: str, roles: Iterable[str]) -> None:
        """Map realm-level roles onto a user.

        Args:
            realm: Realm name
            user_id: Keycloak user id
            roles: Realm role names
        """
        roles = list(roles)
        if not roles:
            return
        payload = [self._role_rep(f"/admin/realms/{realm}/roles/{role}", role) for role in roles]
        self.client.post(f"/admin/realms/{realm}/users/{user_id}/role-mappings/realm", json=payload)
        logger.info("[joiner] Assigned realm roles %s to user %s", roles, user_id)

    def create_client_roles(self, realm: str, client_uuid: str, roles: Iterable[str]) -> None:
        for role in roles:
            self.client.post(f"/admin/realms/{realm}/clients/{client_uuid}/roles", json={"name": role})
            logger.debug("[init] Client role '%s' created", role)
