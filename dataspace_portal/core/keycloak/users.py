"""Keycloak user management operations."""
from __future__ import annotations
import logging
from typing import Optional

from .client import KeycloakClient
from .exceptions import UserNotFoundError

logger = logging.getLogger(__name__)

EMAIL_DOMAIN = "mail.com"


class UserService:
    """Service for managing Keycloak users."""

    def __init__(self, client: KeycloakClient):
        """Initialize user service.

        Args:
            client: Keycloak admin client
        """
        self.client = client

    def get_user_by_username(self, realm: str, username: str) -> Optional[dict]:
        """Return the user representation that exactly matches the username.

        Args:
            realm: Realm name
            username: Username to search for

        Returns:
            User representation or None if not found
        """
        resp = self.client.get(f"/admin/realms/{realm}/users", params={"username": username})
        for user in resp.json() or []:
            if user.get("username") == username:
                return user
        return None

    def create_user_with_claim(
        self,
        realm: str,
        username: str,
        password: str,
        claim_key: str,
        claim_value: str,
    ) -> str:
        """Create an enabled user carrying ``claim_key`` as a user attribute.

        The user gets a permanent password and a placeholder verified email.

        Returns:
            Keycloak user id
        """
        payload = {
            "username": username,
            "enabled": True,
            "firstName": username,
            "lastName": username,
            "email": f"{username}@{EMAIL_DOMAIN}",
            "emailVerified": True,
            "attributes": {claim_key: [claim_value]},
            "credentials": [{"type": "password", "value": password, "temporary": False}],
        }
        self.client.post(f"/admin/realms/{realm}/users", json=payload)

        user = self.get_user_by_username(realm, username)
        if not user:
            raise UserNotFoundError(username, realm)
        user_id = user["id"]
        logger.info("[joiner] User '%s' created (id=%s) with claim %s=%s", username, user_id, claim_key, claim_value)
        return user_id

    def delete_user_by_username(self, realm: str, username: str) -> bool:
        """Delete a user; a missing user is not an error.

        Returns:
            True if a user was deleted, False if none matched
        """
        user = self.get_user_by_username(realm, username)
        if not user:
            logger.info("[leaver] No user '%s' in realm '%s'; nothing to delete", username, realm)
            return False
        self.client.delete(f"/admin/realms/{realm}/users/{user['id']}")
        logger.info("[leaver] User '%s' deleted from realm '%s'", username, realm)
        return True
