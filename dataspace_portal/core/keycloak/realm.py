"""Keycloak realm, client and user-profile management operations."""
from __future__ import annotations
import copy
import logging
from typing import Optional

from .client import KeycloakClient
from .exceptions import ClientNotFoundError, KeycloakAPIError

logger = logging.getLogger(__name__)

_BOTH = ["admin", "user"]


def _builtin_attribute(name: str, validations: dict, required: bool = True) -> dict:
    attribute = {
        "name": name,
        "displayName": "${" + name + "}",
        "validations": validations,
        "permissions": {"view": list(_BOTH), "edit": list(_BOTH)},
        "multivalued": False,
    }
    if required:
        attribute["required"] = {"roles": ["user"]}
    return attribute


# Keycloak replaces the whole profile on PUT, so the built-in attributes are resent.
BASE_PROFILE_ATTRIBUTES = [
    _builtin_attribute(
        "username",
        {
            "length": {"min": 3, "max": 255},
            "username-prohibited-characters": {},
            "up-username-not-idn-homograph": {},
        },
        required=False,
    ),
    _builtin_attribute("email", {"email": {}, "length": {"max": 255}}),
    _builtin_attribute("firstName", {"length": {"max": 255}, "person-name-prohibited-characters": {}}),
    _builtin_attribute("lastName", {"length": {"max": 255}, "person-name-prohibited-characters": {}}),
]

BASE_PROFILE_GROUPS = [
    {
        "name": "user-metadata",
        "displayHeader": "User metadata",
        "displayDescription": "Attributes, which refer to user metadata",
    }
]


class RealmService:
    """Service for managing Keycloak realms and their clients."""

    def __init__(self, client: KeycloakClient):
        """Initialize realm service.

        Args:
            client: Keycloak admin client
        """
        self.client = client

    def realm_exists(self, realm: str) -> bool:
        """Check whether the given realm already exists."""
        try:
            self.client.get(f"/admin/realms/{realm}")
            return True
        except KeycloakAPIError as exc:
            if exc.status_code == 404:
                return False
            raise

    def create_realm(self, realm: str) -> None:
        """Ensure the target realm exists, creating it if necessary.

        Args:
            realm: Realm name
        """
        if self.realm_exists(realm):
            logger.info("[init] Realm '%s' already exists", realm)
            return
        self.client.post("/admin/realms", json={"realm": realm, "enabled": True})
        logger.info("[init] Realm '%s' created", realm)

    def get_client(self, realm: str, client_id: str) -> Optional[dict]:
        """Return the client representation matching client_id, if it exists."""
        resp = self.client.get(f"/admin/realms/{realm}/clients", params={"clientId": client_id})
        clients = resp.json()
        return clients[0] if clients else None

    def create_client(
        self,
        realm: str,
        client_id: str,
        root_url: str = "",
        redirect_uris: Optional[list[str]] = None,
        web_origins: Optional[list[str]] = None,
    ) -> str:
        """Create the public portal client and return its internal UUID.

        Args:
            realm: Realm name
            client_id: Client ID
            root_url: Client root URL
            redirect_uris: Allowed redirect URIs for the authorization code flow
            web_origins: Allowed CORS origins

        Returns:
            Client UUID
        """
        payload = {
            "clientId": client_id,
            "protocol": "openid-connect",
            "rootUrl": root_url,
            "redirectUris": list(redirect_uris or []),
            "webOrigins": list(web_origins or []),
            "publicClient": True,
            "standardFlowEnabled": True,
            "directAccessGrantsEnabled": False,
            "serviceAccountsEnabled": False,
            "authorizationServicesEnabled": False,
        }
        self.client.post(f"/admin/realms/{realm}/clients", json=payload)

        created = self.get_client(realm, client_id)
        if not created or not created.get("id"):
            raise ClientNotFoundError(client_id, realm)
        logger.info("[init] Client '%s' created (uuid=%s)", client_id, created["id"])
        return created["id"]

    def add_user_profile_attribute(self, realm: str, attribute_name: str) -> None:
        """Declare a custom user attribute editable and viewable by admin and user."""
        attributes = copy.deepcopy(BASE_PROFILE_ATTRIBUTES)
        attributes.append({
            "name": attribute_name,
            "displayName": "",
            "permissions": {"edit": list(_BOTH), "view": list(_BOTH)},
            "multivalued": False,
            "annotations": {},
            "validations": {},
        })
        profile = {"attributes": attributes, "groups": copy.deepcopy(BASE_PROFILE_GROUPS)}
        self.client.put(f"/admin/realms/{realm}/users/profile", json=profile)
        logger.info("[init] User profile attribute '%s' declared in realm '%s'", attribute_name, realm)

    def create_user_attribute_mapper(self, realm: str, client_uuid: str, claim_key: str) -> None:
        """Expose the user attribute ``claim_key`` as a token claim of the same name."""
        mapper = {
            "name": claim_key,
            "protocol": "openid-connect",
            "protocolMapper": "oidc-usermodel-attribute-mapper",
            "config": {
                "user.attribute": claim_key,
                "claim.name": claim_key,
                "jsonType.label": "String",
                "id.token.claim": "true",
                "access.token.claim": "true",
            },
        }
        self.client.post(f"/admin/realms/{realm}/clients/{client_uuid}/protocol-mappers/models", json=mapper)
        logger.info("[init] Protocol mapper for claim '%s' created on client %s", claim_key, client_uuid)
