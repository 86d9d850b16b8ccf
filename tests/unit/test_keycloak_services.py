from unittest.mock import MagicMock, call

import pytest
import requests

from dataspace_portal.core.errors import IdentityAdminError
from dataspace_portal.core.keycloak import IdentityAdmin, RealmService, RoleService, UserService
from dataspace_portal.core.keycloak.exceptions import KeycloakAPIError, RoleNotFoundError, UserNotFoundError


def _resp(payload=None):
    resp = MagicMock()
    resp.json.return_value = payload
    resp.headers = {}
    return resp


@pytest.fixture()
def client():
    return MagicMock()


def test_get_user_by_username_exact_match(client):
    client.get.return_value = _resp([{"username": "alice2", "id": "2"}, {"username": "alice", "id": "1"}])
    assert UserService(client).get_user_by_username("edc", "alice")["id"] == "1"
    client.get.assert_called_once_with("/admin/realms/edc/users", params={"username": "alice"})


def test_create_user_with_claim(client):
    client.get.return_value = _resp([{"username": "alice", "id": "u-1"}])

    user_id = UserService(client).create_user_with_claim("edc", "alice", "password123", "tenantName", "acmecorp")

    assert user_id == "u-1"
    path, = client.post.call_args.args
    payload = client.post.call_args.kwargs["json"]
    assert path == "/admin/realms/edc/users"
    assert payload["attributes"] == {"tenantName": ["acmecorp"]}
    assert payload["credentials"] == [{"type": "password", "value": "password123", "temporary": False}]
    assert payload["enabled"] is True
    assert payload["email"] == "alice@mail.com"


def test_create_user_missing_after_post(client):
    client.get.return_value = _resp([])
    with pytest.raises(UserNotFoundError):
        UserService(client).create_user_with_claim("edc", "alice", "pw", "tenantName", "acmecorp")


def test_delete_missing_user_returns_false(client):
    client.get.return_value = _resp([])
    assert UserService(client).delete_user_by_username("edc", "ghost") is False
    client.delete.assert_not_called()


def test_delete_user(client):
    client.get.return_value = _resp([{"username": "alice", "id": "u-1"}])
    assert UserService(client).delete_user_by_username("edc", "alice") is True
    client.delete.assert_called_once_with("/admin/realms/edc/users/u-1")


def test_assign_realm_roles(client):
    client.get.return_value = _resp({"id": "r-1", "name": "ROLE_ADMIN_TENANT", "composite": False})

    RoleService(client).assign_realm_roles("edc", "u-1", ["ROLE_ADMIN_TENANT"])

    client.post.assert_called_once_with(
        "/admin/realms/edc/users/u-1/role-mappings/realm",
        json=[{"id": "r-1", "name": "ROLE_ADMIN_TENANT"}],
    )


def test_assign_no_roles_is_noop(client):
    RoleService(client).assign_realm_roles("edc", "u-1", [])
    client.get.assert_not_called()
    client.post.assert_not_called()


def test_missing_role(client):
    client.get.side_effect = KeycloakAPIError(404, "not found", "/roles/ROLE_X")
    with pytest.raises(RoleNotFoundError) as excinfo:
        RoleService(client).assign_realm_roles("edc", "u-1", ["ROLE_X"])
    assert excinfo.value.name == "ROLE_X"
    assert str(excinfo.value) == "Role 'ROLE_X' not found"


def test_realm_exists(client):
    client.get.side_effect = KeycloakAPIError(404, "", "/admin/realms/edc")
    assert RealmService(client).realm_exists("edc") is False


def test_identity_admin_creates_user_and_roles(client):
    admin = IdentityAdmin(client)
    admin.users = MagicMock()
    admin.roles = MagicMock()
    admin.users.create_user_with_claim.return_value = "u-1"

    user_id = admin.create_user_with_claim("edc", "alice", "pw", "tenantName", "acmecorp", ["ROLE_USER_PARTICIPANT"])

    assert user_id == "u-1"
    admin.roles.assign_realm_roles.assert_called_once_with("edc", "u-1", ["ROLE_USER_PARTICIPANT"])


@pytest.mark.parametrize(
    "failure,upstream",
    [
        (KeycloakAPIError(409, "User exists with same username", "/admin/realms/edc/users"), 409),
        (requests.ConnectionError("refused"), None),
        (UserNotFoundError("gone"), None),
    ],
)
def test_identity_admin_translates_failures(client, failure, upstream):
    admin = IdentityAdmin(client)
    admin.users = MagicMock()
    admin.users.create_user_with_claim.side_effect = failure

    with pytest.raises(IdentityAdminError) as excinfo:
        admin.create_user_with_claim("edc", "alice", "pw", "tenantName", "acmecorp")

    assert excinfo.value.context.get("upstream_status") == upstream
    assert excinfo.value.context["username"] == "alice"


def test_identity_admin_delete_translates(client):
    admin = IdentityAdmin(client)
    admin.users = MagicMock()
    admin.users.delete_user_by_username.side_effect = KeycloakAPIError(500, "boom", "/x")
    with pytest.raises(IdentityAdminError):
        admin.delete_user_by_username("edc", "alice")


def test_bootstrap_realm(client):
    admin = IdentityAdmin(client)
    admin.realms = MagicMock()
    admin.roles = MagicMock()
    admin.realms.create_client.return_value = "client-uuid"

    client_uuid = admin.bootstrap_realm(
        "edc", "portal-fe", "tenantName", ["ROLE_ADMIN"], root_url="http://portal", redirect_uris=["/*"],
    )

    assert client_uuid == "client-uuid"
    assert admin.realms.method_calls[:2] == [call.create_realm("edc"), call.add_user_profile_attribute("edc", "tenantName")]
    admin.realms.create_user_attribute_mapper.assert_called_once_with("edc", "client-uuid", "tenantName")
    admin.roles.create_client_roles.assert_called_once_with("edc", "client-uuid", ["ROLE_ADMIN"])
