"""Read-only views returned by the core services."""
from __future__ import annotations
import datetime
from dataclasses import asdict, dataclass, field
from typing import Any, Generic, Optional, TypeVar

from .models import (
    AuditedRecord,
    Credential,
    Operation,
    Participant,
    ParticipantUser,
    Tenant,
    audited_record,
)

T = TypeVar("T")


def _iso(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _record_dict(record: AuditedRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "externalId": record.external_id,
        "createdAt": _iso(record.created_at),
        "updatedAt": _iso(record.updated_at),
    }


@dataclass(frozen=True)
class TenantView:
    record: AuditedRecord
    name: str
    description: Optional[str]
    metadata: Optional[dict]
    status: str

    @classmethod
    def from_row(cls, row: Tenant) -> "TenantView":
        return cls(audited_record(row), row.name, row.description, row.metadata_, row.status.value)

    def to_dict(self) -> dict:
        body = _record_dict(self.record)
        body.update(name=self.name, description=self.description, metadata=self.metadata, status=self.status)
        return body


@dataclass(frozen=True)
class ParticipantView:
    record: AuditedRecord
    tenant_name: str
    name: str
    company_name: Optional[str]
    description: Optional[str]
    metadata: Optional[dict]
    did: Optional[str]
    host: Optional[str]
    current_operation: str

    @classmethod
    def from_row(cls, row: Participant) -> "ParticipantView":
        return cls(
            record=audited_record(row),
            tenant_name=row.tenant.name,
            name=row.name,
            company_name=row.company_name,
            description=row.description,
            metadata=row.metadata_,
            did=row.did,
            host=row.host,
            current_operation=row.current_operation.value,
        )

    @property
    def id(self) -> int:
        return self.record.id

    def to_dict(self) -> dict:
        body = _record_dict(self.record)
        body.update(
            tenantName=self.tenant_name,
            participantName=self.name,
            companyName=self.company_name,
            description=self.description,
            metadata=self.metadata,
            did=self.did,
            host=self.host,
            currentOperation=self.current_operation,
        )
        return body


@dataclass(frozen=True)
class UserView:
    record: AuditedRecord
    username: str
    status: str
    metadata: Optional[dict]

    @classmethod
    def from_row(cls, row: ParticipantUser) -> "UserView":
        return cls(audited_record(row), row.username, row.status.value, row.metadata_)

    def to_dict(self) -> dict:
        body = _record_dict(self.record)
        body.update(username=self.username, status=self.status, metadata=self.metadata)
        return body


@dataclass(frozen=True)
class ParticipantMe:
    participant: ParticipantView
    user: UserView

    def to_dict(self) -> dict:
        return {"participant": self.participant.to_dict(), "user": self.user.to_dict()}


@dataclass(frozen=True)
class CredentialView:
    record: AuditedRecord
    request_id: str
    participant_name: str
    issuer_did: str
    holder_pid: str
    credential_type: str
    format: str
    status: str
    issued_at: Optional[datetime.datetime]
    expires_at: Optional[datetime.datetime]
    credential_hash: str

    @classmethod
    def from_row(cls, row: Credential) -> "CredentialView":
        return cls(
            record=audited_record(row),
            request_id=row.request_id,
            participant_name=row.participant.name,
            issuer_did=row.issuer_did,
            holder_pid=row.holder_pid,
            credential_type=row.credential_type.value,
            format=row.format.value,
            status=row.status.value,
            issued_at=row.issued_at,
            expires_at=row.expires_at,
            credential_hash=row.credential_hash,
        )

    def to_dict(self) -> dict:
        body = _record_dict(self.record)
        body.update(
            requestId=self.request_id,
            participantName=self.participant_name,
            issuerDid=self.issuer_did,
            holderPid=self.holder_pid,
            credentialType=self.credential_type,
            format=self.format,
            status=self.status,
            issuedAt=_iso(self.issued_at),
            expiresAt=_iso(self.expires_at),
            credentialHash=self.credential_hash,
        )
        return body


@dataclass(frozen=True)
class OperationView:
    record: AuditedRecord
    participant_name: str
    event_type: str
    event_payload: Optional[dict]

    @classmethod
    def from_row(cls, row: Operation) -> "OperationView":
        return cls(audited_record(row), row.participant.name, row.event_type.value, row.event_payload)

    def to_dict(self) -> dict:
        body = _record_dict(self.record)
        body.update(participantName=self.participant_name, eventType=self.event_type, eventPayload=self.event_payload)
        return body


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of results; ``page`` is zero-based."""
    items: list[T] = field(default_factory=list)
    page: int = 0
    limit: int = 20
    total: int = 0

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit

    def map(self, fn) -> "Page":
        return Page([fn(item) for item in self.items], self.page, self.limit, self.total)

    def to_dict(self) -> dict:
        return {
            "items": [item.to_dict() if hasattr(item, "to_dict") else asdict(item) for item in self.items],
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "pages": self.pages,
        }
