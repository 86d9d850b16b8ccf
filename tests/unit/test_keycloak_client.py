import pytest

from dataspace_portal.config.settings import KeycloakConfig
from dataspace_portal.core.keycloak import client as kc_client
from dataspace_portal.core.keycloak.client import KeycloakClient, TokenCache
from dataspace_portal.core.keycloak.exceptions import KeycloakAPIError


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_token_cache_reuses_until_skewed_expiry():
    clock = FakeClock()
    cache = TokenCache(skew=30, clock=clock)
    issued = iter([("t1", 300), ("t2", 300)])

    assert cache.get(lambda: next(issued)) == "t1"
    clock.now += 269
    assert cache.get(lambda: next(issued)) == "t1"
    clock.now += 1
    assert cache.get(lambda: next(issued)) == "t2"


def test_token_cache_invalidate():
    cache = TokenCache(clock=FakeClock())
    cache.get(lambda: ("t1", 300))
    assert cache.is_valid
    cache.invalidate()
    assert not cache.is_valid


def test_short_lived_token_is_not_cached():
    cache = TokenCache(skew=30, clock=FakeClock())
    issued = iter([("t1", 10), ("t2", 10)])
    assert cache.get(lambda: next(issued)) == "t1"
    assert cache.get(lambda: next(issued)) == "t2"


@pytest.fixture()
def keycloak(monkeypatch, fake_response):
    """KeycloakClient with counted token grants and scripted API responses."""
    state = {"grants": 0, "responses": [], "requests": []}

    def fake_post(url, data=None, timeout=None):
        state["grants"] += 1
        assert url == "http://kc.test/realms/master/protocol/openid-connect/token"
        assert data["grant_type"] == "password"
        return fake_response(200, {"access_token": f"token-{state['grants']}", "expires_in": 300})

    def fake_request(method, url, headers=None, timeout=None, **kwargs):
        state["requests"].append((method, url, headers["Authorization"]))
        return state["responses"].pop(0)

    monkeypatch.setattr(kc_client.requests, "post", fake_post)
    monkeypatch.setattr(kc_client.requests, "request", fake_request)
    client = KeycloakClient("http://kc.test/", "admin", "admin", token_cache=TokenCache())
    return client, state


def test_token_fetched_once_for_many_calls(keycloak, fake_response):
    client, state = keycloak
    state["responses"] = [fake_response(200, []), fake_response(200, [])]

    client.get("/admin/realms/edc/users")
    client.get("/admin/realms/edc/users")

    assert state["grants"] == 1
    assert [r[2] for r in state["requests"]] == ["Bearer token-1", "Bearer token-1"]


def test_unauthorized_invalidates_cached_token(keycloak, fake_response):
    client, state = keycloak
    state["responses"] = [fake_response(401, text="expired", url="http://kc.test/x"), fake_response(200, [])]

    with pytest.raises(KeycloakAPIError) as excinfo:
        client.get("/x")
    assert excinfo.value.status_code == 401

    client.get("/x")
    assert state["grants"] == 2
    assert state["requests"][-1][2] == "Bearer token-2"


def test_error_response_raises(keycloak, fake_response):
    client, state = keycloak
    state["responses"] = [fake_response(409, text="exists", url="http://kc.test/admin/realms/edc/users")]
    with pytest.raises(KeycloakAPIError) as excinfo:
        client.post("/admin/realms/edc/users", json={})
    assert excinfo.value.status_code == 409
    assert excinfo.value.message == "exists"


def test_failed_token_grant(monkeypatch, fake_response):
    monkeypatch.setattr(kc_client.requests, "post", lambda *a, **k: fake_response(401, text="invalid_grant"))
    client = KeycloakClient("http://kc.test", "admin", "wrong")
    with pytest.raises(KeycloakAPIError):
        client.get_token()


def test_from_config_honours_cache_flag():
    assert KeycloakClient.from_config(KeycloakConfig(token_cache_enabled=False)).token_cache is None
    cached = KeycloakClient.from_config(KeycloakConfig(token_expiry_skew=5))
    assert cached.token_cache.skew == 5
