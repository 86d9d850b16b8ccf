"""Pytest shared fixtures: in-memory store, mocked collaborators, network guard."""
import json
import os
import pathlib
import sys
from unittest.mock import MagicMock

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Configure test environment BEFORE any package imports
os.environ.setdefault("DEMO_MODE", "true")

import pytest
import requests

from dataspace_portal.config.settings import AppConfig, ExternalApiConfig, KeycloakConfig
from dataspace_portal.core import passwords
from dataspace_portal.core.external_api import CredentialIssuerClient, ProvisionerClient
from dataspace_portal.core.keycloak import IdentityAdmin
from dataspace_portal.core.models import Tenant, TenantStatus
from dataspace_portal.core.provisioning_service import ProvisioningOrchestrator
from dataspace_portal.core.visibility import Scope
from dataspace_portal.db import init_db, make_engine, make_session_factory


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch, request):
    """
    Prevent unit tests from reaching Keycloak, the provisioner or an identity hub.

    Tests that exercise the HTTP clients patch ``requests.request`` /
    ``requests.post`` themselves after this fixture ran.
    """
    if request.node.get_closest_marker("integration"):
        return

    def _refuse(method):
        def _call(*args, **kwargs):
            raise RuntimeError(f"Unexpected HTTP {method} in unit test: {args[:2]}")
        return _call

    monkeypatch.setattr(requests, "request", _refuse("request"))
    monkeypatch.setattr(requests, "post", _refuse("POST"))
    monkeypatch.setattr(requests, "get", _refuse("GET"))
    monkeypatch.setattr(requests, "delete", _refuse("DELETE"))


@pytest.fixture(autouse=True)
def _fast_bcrypt(monkeypatch):
    """Keep hashing cheap; the cost factor is read at call time."""
    monkeypatch.setattr(passwords, "BCRYPT_ROUNDS", 4)


class FakeResponse:
    """Minimal stand-in for ``requests.Response``."""

    def __init__(self, status_code: int = 200, payload=None, text: str = "", url: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.text = text or (json.dumps(payload) if payload is not None else "")
        self.content = self.text.encode("utf-8")
        self.url = url

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


@pytest.fixture()
def fake_response():
    return FakeResponse


# ─────────────────────────────────────────────────────────────────────────────
# Settings and store
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def settings():
    return AppConfig(
        demo_mode=True,
        database_url="sqlite://",
        keycloak=KeycloakConfig(
            base_url="http://keycloak.test",
            admin_password="admin",
        ),
        external_api=ExternalApiConfig(
            provisioner_endpoint="http://provisioner.test/api/v1/participants",
            kube_host="kube.test",
            issuer_did="did:web:issuer",
            holder_pid="holder-pid",
            api_key="test-api-key",
        ),
    )


@pytest.fixture()
def engine():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session(engine):
    session = make_session_factory(engine)()
    yield session
    session.close()


# ─────────────────────────────────────────────────────────────────────────────
# Collaborators
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def provisioner():
    client = MagicMock(spec=ProvisionerClient)
    client.provision.return_value = {"status": "accepted"}
    client.deprovision.return_value = {"status": "accepted"}
    client.build_did.side_effect = lambda name: f"did:web:{name}"
    client.build_host.return_value = "kube.test"
    return client


@pytest.fixture()
def identity_admin():
    admin = MagicMock(spec=IdentityAdmin)
    admin.create_user_with_claim.return_value = "kc-user-id"
    admin.delete_user_by_username.return_value = True
    return admin


@pytest.fixture()
def issuer():
    client = MagicMock(spec=CredentialIssuerClient)
    client.request_credentials.return_value = {"status": "accepted"}
    return client


@pytest.fixture()
def orchestrator(session, provisioner, identity_admin):
    return ProvisioningOrchestrator(session, provisioner, identity_admin)


@pytest.fixture()
def tenant(session):
    """Tenant ``acme-corp`` as stored after normalization."""
    row = Tenant(name="acmecorp", status=TenantStatus.ACTIVE)
    session.add(row)
    session.commit()
    return row


@pytest.fixture()
def other_tenant(session):
    row = Tenant(name="globex", status=TenantStatus.ACTIVE)
    session.add(row)
    session.commit()
    return row


@pytest.fixture()
def admin_scope():
    return Scope.global_()


@pytest.fixture()
def active_participant(orchestrator, tenant, admin_scope):
    """Factory: create a participant and mark it ACTIVE."""

    def _make(name: str = "widgets-inc", username: str = "alice", tenant_name: str = "acmecorp"):
        view = orchestrator.create_participant(
            admin_scope, name, username, "password123", tenant_name=tenant_name,
        )
        return orchestrator.complete_provisioning(view.id)

    return _make


# ─────────────────────────────────────────────────────────────────────────────
# Pytest Configuration
# ─────────────────────────────────────────────────────────────────────────────
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (requires running stack)"
    )
