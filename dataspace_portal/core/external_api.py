"""HTTP clients for the participant provisioner and the credential issuer."""
from __future__ import annotations
import base64
import logging
from typing import Any, Iterable, Optional

import requests

from .errors import ExternalApiError, ValidationError
from .validators import normalize_for_inner_dns

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30


def _response_body(resp: requests.Response) -> dict[str, str]:
    if not resp.content:
        return {}
    try:
        body = resp.json()
    except ValueError:
        return {}
    if not isinstance(body, dict):
        return {}
    return {str(key): "" if value is None else str(value) for key, value in body.items()}


def _send(method: str, url: str, label: str, participant: str, **kwargs) -> dict[str, str]:
    try:
        resp = requests.request(method, url, **kwargs)
    except requests.RequestException as exc:
        logger.error("[%s] Network error calling %s for participant %s: %s", label, url, participant, exc)
        raise ExternalApiError(
            f"External {label} API network error",
            {"participant": participant},
        ) from exc

    if resp.status_code >= 400:
        side = "client" if resp.status_code < 500 else "server"
        logger.error("[%s] %s error for participant %s: %s - %s",
                     label, side.capitalize(), participant, resp.status_code, resp.text)
        raise ExternalApiError(
            f"External {label} API {side} error: {resp.status_code}",
            {"participant": participant, "upstream_status": resp.status_code},
        )

    body = _response_body(resp)
    logger.info("[%s] Response for participant %s: %s", label, participant, body)
    return body


class ProvisionerClient:
    """Client for the external participant provisioner.

    Usage:
        client = ProvisionerClient("http://provisioner/api/v1/participants", "kube.local")
        client.provision("acme-corp")
    """

    def __init__(self, endpoint: str, kube_host: str, did_template: str = "did:web:{participant}",
                 timeout: float = REQUEST_TIMEOUT):
        self.endpoint = endpoint
        self.kube_host = kube_host
        self.did_template = did_template
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg) -> "ProvisionerClient":
        return cls(cfg.provisioner_endpoint, cfg.kube_host, cfg.did_template, cfg.timeout)

    def build_did(self, participant_name: str) -> str:
        return self.did_template.replace("{participant}", normalize_for_inner_dns(participant_name))

    def build_host(self, participant_name: str) -> str:
        return self.kube_host

    def _normalized(self, participant_name: str) -> str:
        name = normalize_for_inner_dns(participant_name)
        if not name:
            raise ValueError("Participant name cannot be empty")
        return name

    def provision(self, participant_name: str) -> dict[str, str]:
        """Ask the provisioner to create the participant's infrastructure.

        Raises:
            ExternalApiError: On 4xx/5xx responses or network failure
        """
        name = self._normalized(participant_name)
        logger.info("[provision] Calling provisioner for participant %s", name)
        payload = {
            "participantName": name,
            "did": self.build_did(name),
            "kubeHost": self.build_host(name),
        }
        return _send("POST", self.endpoint, "provision", name, json=payload, timeout=self.timeout)

    def deprovision(self, participant_name: str) -> dict[str, str]:
        """Ask the provisioner to tear the participant's infrastructure down.

        Raises:
            ExternalApiError: On 4xx/5xx responses or network failure
        """
        name = self._normalized(participant_name)
        logger.info("[deprovision] Calling provisioner for participant %s", name)
        payload = {"participantName": name, "kubeHost": self.kube_host}
        return _send("DELETE", self.endpoint, "deprovision", name, json=payload, timeout=self.timeout)


class CredentialIssuerClient:
    """Client for a participant's identity hub credential request endpoint."""

    def __init__(
        self,
        service_url_template: str,
        endpoint: str,
        issuer_did: str,
        holder_pid: str,
        api_key: str,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.service_url_template = service_url_template
        self.endpoint = endpoint
        self.issuer_did = issuer_did
        self.holder_pid = holder_pid
        self.api_key = api_key
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg) -> "CredentialIssuerClient":
        return cls(
            cfg.credentials_service_url_template,
            cfg.credentials_endpoint,
            cfg.issuer_did,
            cfg.holder_pid,
            cfg.api_key,
            cfg.timeout,
        )

    def build_url(self, participant_name: str, did: str) -> str:
        base64_did = base64.b64encode(did.encode("utf-8")).decode("ascii")
        service_url = self.service_url_template.replace("{participant}", participant_name)
        return service_url + self.endpoint.replace("{base64Did}", base64_did)

    def request_credentials(
        self,
        participant_name: str,
        did: str,
        credentials: Iterable[dict[str, Any]],
    ) -> dict[str, str]:
        """POST a credential request for ``credentials`` to the participant's identity hub.

        Args:
            participant_name: Participant name (normalized before use)
            did: Participant DID, base64-encoded into the URL path
            credentials: Specs with ``type``, ``format`` and optional ``id``

        Raises:
            ValidationError: If name, DID or credential list is empty
            ExternalApiError: On 4xx/5xx responses or network failure
        """
        name = normalize_for_inner_dns(participant_name)
        if not name:
            raise ValidationError("Participant name cannot be empty", {"field": "name"})
        if not did:
            raise ValidationError("DID cannot be empty", {"field": "did"})
        specs = [self._spec_payload(spec) for spec in credentials]
        if not specs:
            raise ValidationError("Credentials list cannot be empty", {"field": "credentials"})

        url = self.build_url(name, did)
        logger.info("[credentials] Requesting %d credential(s) for participant %s", len(specs), name)
        logger.debug("[credentials] url: %s", url)
        payload = {
            "issuerDid": self.issuer_did,
            "holderPid": self.holder_pid,
            "credentials": specs,
        }
        return _send(
            "POST", url, "credentials", name,
            json=payload,
            headers={"X-Api-Key": self.api_key},
            timeout=self.timeout,
        )

    @staticmethod
    def _spec_payload(spec: dict[str, Any]) -> dict[str, Any]:
        payload: dict[str, Any] = {"format": spec["format"], "type": spec["type"]}
        spec_id: Optional[str] = spec.get("id")
        if spec_id:
            payload["id"] = spec_id
        return payload
