"""Relational model for tenants, participants, their users, credentials and operations."""
from __future__ import annotations
import datetime
import enum
import json
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def new_external_id() -> str:
    return str(uuid.uuid4())


# ─────────────────────────────────────────────────────────────────────────────
# Enumerations
# ─────────────────────────────────────────────────────────────────────────────

class ParticipantState(str, enum.Enum):
    """Lifecycle state stored in ``Participant.current_operation``."""
    PROVISION_IN_PROGRESS = "PROVISION_IN_PROGRESS"
    ACTIVE = "ACTIVE"
    DEPROVISION_IN_PROGRESS = "DEPROVISION_IN_PROGRESS"
    DEPROVISION_COMPLETED = "DEPROVISION_COMPLETED"
    PROVISION_FAILED = "PROVISION_FAILED"
    DEPROVISION_FAILED = "DEPROVISION_FAILED"
    # Kept for stored rows; details updates no longer change the state.
    UPDATED = "UPDATED"
    DETAILS_UPDATED = "DETAILS_UPDATED"
    ERROR = "ERROR"


class OperationEventType(str, enum.Enum):
    PROVISION_STARTED = "PROVISION_STARTED"
    PROVISION_IN_PROGRESS = "PROVISION_IN_PROGRESS"
    PROVISION_COMPLETED = "PROVISION_COMPLETED"
    PROVISION_FAILED = "PROVISION_FAILED"
    DEPROVISION_STARTED = "DEPROVISION_STARTED"
    DEPROVISION_IN_PROGRESS = "DEPROVISION_IN_PROGRESS"
    DEPROVISION_COMPLETED = "DEPROVISION_COMPLETED"
    DEPROVISION_FAILED = "DEPROVISION_FAILED"


class TenantStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    DELETED = "DELETED"


class UserStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    DELETE_IN_PROGRESS = "DELETE_IN_PROGRESS"
    DELETE_WITH_ERROR = "DELETE_WITH_ERROR"
    DELETED = "DELETED"
    ERROR = "ERROR"


class CredentialType(str, enum.Enum):
    MEMBERSHIP = "MembershipCredential"
    DATA_PROCESSOR = "DataProcessorCredential"


class CredentialFormat(str, enum.Enum):
    VC1_0_JWT = "VC1_0_JWT"


class CredentialStatus(str, enum.Enum):
    REQUESTED = "REQUESTED"
    ISSUED = "ISSUED"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"
    SUSPENDED = "SUSPENDED"
    ERROR = "ERROR"


def _enum_column(enum_cls: type[enum.Enum]) -> Enum:
    return Enum(
        enum_cls,
        native_enum=False,
        length=32,
        validate_strings=True,
        values_callable=lambda members: [member.value for member in members],
    )


# ─────────────────────────────────────────────────────────────────────────────
# JSON columns
# ─────────────────────────────────────────────────────────────────────────────

def encode_json(value: Optional[dict[str, Any]]) -> Optional[str]:
    """Serialize a metadata mapping for storage, preserving key order."""
    if value is None:
        return None
    if not isinstance(value, dict):
        raise TypeError(f"Expected a mapping, got {type(value).__name__}")
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def decode_json(raw: Optional[str]) -> Optional[dict[str, Any]]:
    if raw is None or raw == "":
        return None
    return json.loads(raw)


class JsonText(TypeDecorator):
    """Opaque JSON object stored as text."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return encode_json(value)

    def process_result_value(self, value, dialect):
        return decode_json(value)


# ─────────────────────────────────────────────────────────────────────────────
# Audited columns (embedded in every table)
# ─────────────────────────────────────────────────────────────────────────────

def id_column() -> Mapped[int]:
    return mapped_column(Integer, primary_key=True, autoincrement=True)


def external_id_column() -> Mapped[str]:
    return mapped_column(String(36), unique=True, nullable=False, default=new_external_id)


def created_at_column() -> Mapped[datetime.datetime]:
    return mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


def updated_at_column() -> Mapped[datetime.datetime]:
    return mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


@dataclass(frozen=True)
class AuditedRecord:
    id: int
    external_id: str
    created_at: datetime.datetime
    updated_at: datetime.datetime


def audited_record(row) -> AuditedRecord:
    return AuditedRecord(
        id=row.id,
        external_id=row.external_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class Base(DeclarativeBase):
    pass


# ─────────────────────────────────────────────────────────────────────────────
# Tables
# ─────────────────────────────────────────────────────────────────────────────

class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[int] = id_column()
    external_id: Mapped[str] = external_id_column()
    created_at: Mapped[datetime.datetime] = created_at_column()
    updated_at: Mapped[datetime.datetime] = updated_at_column()

    name: Mapped[str] = mapped_column(String(63), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JsonText, nullable=True)
    status: Mapped[TenantStatus] = mapped_column(_enum_column(TenantStatus), nullable=False, default=TenantStatus.ACTIVE)
    deleted_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    participants: Mapped[list["Participant"]] = relationship(back_populates="tenant")


class Participant(Base):
    __tablename__ = "participants"

    id: Mapped[int] = id_column()
    external_id: Mapped[str] = external_id_column()
    created_at: Mapped[datetime.datetime] = created_at_column()
    updated_at: Mapped[datetime.datetime] = updated_at_column()

    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    # DNS-safe; set once at creation
    name: Mapped[str] = mapped_column(String(63), unique=True, nullable=False)
    company_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JsonText, nullable=True)
    did: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    host: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    current_operation: Mapped[ParticipantState] = mapped_column(_enum_column(ParticipantState), nullable=False)

    tenant: Mapped[Tenant] = relationship(back_populates="participants")
    users: Mapped[list["ParticipantUser"]] = relationship(back_populates="participant")
    credentials: Mapped[list["Credential"]] = relationship(back_populates="participant")


class ParticipantUser(Base):
    __tablename__ = "participant_users"

    id: Mapped[int] = id_column()
    external_id: Mapped[str] = external_id_column()
    created_at: Mapped[datetime.datetime] = created_at_column()
    updated_at: Mapped[datetime.datetime] = updated_at_column()

    participant_id: Mapped[int] = mapped_column(ForeignKey("participants.id"), nullable=False, index=True)
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    # bcrypt hash
    password: Mapped[str] = mapped_column(String(255), nullable=False)
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JsonText, nullable=True)
    status: Mapped[UserStatus] = mapped_column(_enum_column(UserStatus), nullable=False, default=UserStatus.ACTIVE)
    deleted_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    participant: Mapped[Participant] = relationship(back_populates="users")


class Credential(Base):
    __tablename__ = "credentials"

    id: Mapped[int] = id_column()
    external_id: Mapped[str] = external_id_column()
    created_at: Mapped[datetime.datetime] = created_at_column()
    updated_at: Mapped[datetime.datetime] = updated_at_column()

    request_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    issuer_did: Mapped[str] = mapped_column(String(255), nullable=False)
    holder_pid: Mapped[str] = mapped_column(String(255), nullable=False)
    participant_id: Mapped[int] = mapped_column(ForeignKey("participants.id"), nullable=False, index=True)
    credential_type: Mapped[CredentialType] = mapped_column(_enum_column(CredentialType), nullable=False)
    format: Mapped[CredentialFormat] = mapped_column(_enum_column(CredentialFormat), nullable=False)
    status: Mapped[CredentialStatus] = mapped_column(_enum_column(CredentialStatus), nullable=False)
    issued_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    credential_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    participant: Mapped[Participant] = relationship(back_populates="credentials")


class Operation(Base):
    """Audit entry for one lifecycle transition. Rows are never updated or deleted."""
    __tablename__ = "operations"

    id: Mapped[int] = id_column()
    external_id: Mapped[str] = external_id_column()
    created_at: Mapped[datetime.datetime] = created_at_column()
    updated_at: Mapped[datetime.datetime] = updated_at_column()

    participant_id: Mapped[int] = mapped_column(ForeignKey("participants.id"), nullable=False, index=True)
    event_type: Mapped[OperationEventType] = mapped_column(_enum_column(OperationEventType), nullable=False)
    event_payload: Mapped[Optional[dict]] = mapped_column(JsonText, nullable=True)

    participant: Mapped[Participant] = relationship()


class ImmutableRecordError(RuntimeError):
    """Raised when an append-only row is modified or deleted."""


@event.listens_for(Operation, "before_update")
def _refuse_operation_update(mapper, connection, target):
    raise ImmutableRecordError(f"Operation {target.external_id} is append-only")


@event.listens_for(Operation, "before_delete")
def _refuse_operation_delete(mapper, connection, target):
    raise ImmutableRecordError(f"Operation {target.external_id} is append-only")
