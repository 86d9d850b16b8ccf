"""Verifiable credential requests for ACTIVE participants."""
from __future__ import annotations
import datetime
import hashlib
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Union

from sqlalchemy.orm import Session

from .errors import ExternalApiError, NotActiveError, NotFoundError, ValidationError
from .external_api import CredentialIssuerClient
from .models import (
    Credential,
    CredentialFormat,
    CredentialStatus,
    CredentialType,
    ParticipantState,
    new_external_id,
    utcnow,
)
from .projections import CredentialView, Page
from .repository import (
    ACTIVE_USER_STATUSES,
    DEFAULT_LIMIT,
    CredentialRepository,
    ParticipantRepository,
)
from .visibility import Scope

logger = logging.getLogger(__name__)


def credential_hash(
    external_id: str,
    request_id: str,
    issuer_did: str,
    holder_pid: str,
    credential_type: str,
    credential_format: str,
) -> str:
    """SHA-256 hex fingerprint of a credential's identifying fields."""
    data = "|".join([
        str(external_id),
        str(request_id),
        str(issuer_did),
        str(holder_pid),
        _value(credential_type),
        _value(credential_format),
    ])
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _value(field: Any) -> str:
    return field.value if isinstance(field, (CredentialType, CredentialFormat)) else str(field)


def hash_of(credential: Credential) -> str:
    return credential_hash(
        credential.external_id,
        credential.request_id,
        credential.issuer_did,
        credential.holder_pid,
        credential.credential_type,
        credential.format,
    )


@dataclass(frozen=True)
class CredentialSpec:
    """One requested credential: type, format and an optional caller id."""
    type: CredentialType
    format: CredentialFormat
    id: Optional[str] = None

    @classmethod
    def parse(cls, raw: Union["CredentialSpec", Mapping[str, Any]]) -> "CredentialSpec":
        """Validate a spec given as a mapping with ``type``, ``format`` and optional ``id``.

        Raises:
            ValidationError: Unknown type or format
        """
        if isinstance(raw, CredentialSpec):
            return raw
        try:
            credential_type = CredentialType(raw.get("type"))
        except ValueError:
            raise ValidationError(
                f"Unsupported credential type: {raw.get('type')}",
                {"field": "type", "allowed": [t.value for t in CredentialType]},
            ) from None
        try:
            credential_format = CredentialFormat(raw.get("format"))
        except ValueError:
            raise ValidationError(
                f"Unsupported credential format: {raw.get('format')}",
                {"field": "format", "allowed": [f.value for f in CredentialFormat]},
            ) from None
        return cls(credential_type, credential_format, raw.get("id") or None)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type.value, "format": self.format.value}
        if self.id:
            payload["id"] = self.id
        return payload


class CredentialIssuanceWorkflow:
    """Request, list and update credentials of participants visible to a scope."""

    def __init__(
        self,
        session: Session,
        issuer: CredentialIssuerClient,
        *,
        issuer_did: str,
        holder_pid: str,
        mock_credentials: bool = False,
    ):
        self.session = session
        self.issuer = issuer
        self.issuer_did = issuer_did
        self.holder_pid = holder_pid
        self.mock_credentials = mock_credentials
        self.participants = ParticipantRepository(session)
        self.credentials = CredentialRepository(session)

    @classmethod
    def from_settings(cls, session: Session, settings, issuer=None) -> "CredentialIssuanceWorkflow":
        return cls(
            session,
            issuer or CredentialIssuerClient.from_config(settings.external_api),
            issuer_did=settings.external_api.issuer_did,
            holder_pid=settings.external_api.holder_pid,
            mock_credentials=settings.mock_credentials,
        )

    def request_credentials(
        self,
        scope: Scope,
        participant_id: int,
        specs: Iterable[Union[CredentialSpec, Mapping[str, Any]]],
    ) -> list[CredentialView]:
        """Request a batch of credentials sharing one request id.

        Rows are written only after the identity hub accepted the request
        (or immediately as ISSUED in mock mode).

        Raises:
            NotFoundError: Participant not visible (participant users must be ACTIVE)
            NotActiveError: Participant is not ACTIVE
            ValidationError: Empty batch or unsupported type/format
            ExternalApiError: Identity hub call failed (nothing stored)
        """
        participant = self.participants.get(scope, participant_id, user_statuses=ACTIVE_USER_STATUSES)
        if participant is None:
            raise NotFoundError(f"Participant not found: {participant_id}", {"participant_id": participant_id})
        if participant.current_operation is not ParticipantState.ACTIVE:
            raise NotActiveError(
                f"Participant {participant.name} is not ACTIVE but {participant.current_operation.value}",
                {"participant": participant.name, "state": participant.current_operation.value},
            )

        parsed = [CredentialSpec.parse(spec) for spec in (specs or [])]
        if not parsed:
            raise ValidationError("At least one credential is required", {"field": "credentials"})

        request_id = str(uuid.uuid4())
        if self.mock_credentials:
            logger.info("[credentials] Mock mode: skipping identity hub for %s", participant.name)
        else:
            try:
                response = self.issuer.request_credentials(
                    participant.name,
                    participant.did,
                    [spec.to_payload() for spec in parsed],
                )
            except ExternalApiError as exc:
                exc.context.update(participant=participant.name, step="request_credentials")
                raise
            logger.info("[credentials] Identity hub accepted request for %s: %s", participant.name, response)

        status = CredentialStatus.ISSUED if self.mock_credentials else CredentialStatus.REQUESTED
        issued_at = utcnow() if self.mock_credentials else None
        rows = []
        for spec in parsed:
            credential = Credential(
                external_id=new_external_id(),
                request_id=request_id,
                issuer_did=self.issuer_did,
                holder_pid=self.holder_pid,
                participant=participant,
                credential_type=spec.type,
                format=spec.format,
                status=status,
                issued_at=issued_at,
            )
            credential.credential_hash = hash_of(credential)
            self.session.add(credential)
            rows.append(credential)
        self.session.commit()

        logger.info("[credentials] Stored %d credential(s) for %s with request id %s",
                    len(rows), participant.name, request_id)
        return [CredentialView.from_row(row) for row in rows]

    def _participant(self, scope: Scope, participant_id: int):
        participant = self.participants.get(scope, participant_id)
        if participant is None:
            raise NotFoundError(f"Participant not found: {participant_id}", {"participant_id": participant_id})
        return participant

    def list_credentials(
        self,
        scope: Scope,
        participant_id: int,
        status: Optional[CredentialStatus] = None,
        page: int = 0,
        limit: int = DEFAULT_LIMIT,
    ) -> Page:
        participant = self._participant(scope, participant_id)
        status = CredentialStatus(status) if status else None
        return self.credentials.list(participant, status, page, limit).map(CredentialView.from_row)

    def get_credential(self, scope: Scope, participant_id: int, credential_id: int) -> CredentialView:
        participant = self._participant(scope, participant_id)
        credential = self.credentials.get_for_participant(participant, credential_id)
        if credential is None:
            raise NotFoundError(
                f"Credential {credential_id} not found for participant {participant.name}",
                {"credential_id": credential_id, "participant": participant.name},
            )
        return CredentialView.from_row(credential)

    def _credential(self, credential_id: int) -> Credential:
        credential = self.credentials.get(credential_id)
        if credential is None:
            raise NotFoundError(f"Credential not found: {credential_id}", {"credential_id": credential_id})
        return credential

    def update_credential_status(self, credential_id: int, status: CredentialStatus) -> CredentialView:
        credential = self._credential(credential_id)
        credential.status = CredentialStatus(status)
        if credential.status is CredentialStatus.ISSUED:
            credential.issued_at = utcnow()
        self.session.commit()
        logger.info("[credentials] Credential %s status set to %s", credential.external_id, credential.status.value)
        return CredentialView.from_row(credential)

    def update_credential_details(self, credential_id: int, expires_at: Optional[datetime.datetime]) -> CredentialView:
        """Record issuance details: recomputed hash, expiry, ISSUED now."""
        credential = self._credential(credential_id)
        credential.credential_hash = hash_of(credential)
        credential.expires_at = expires_at
        credential.status = CredentialStatus.ISSUED
        credential.issued_at = utcnow()
        self.session.commit()
        logger.info("[credentials] Credential %s issued, expires %s", credential.external_id, expires_at)
        return CredentialView.from_row(credential)
