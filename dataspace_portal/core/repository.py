"""Scoped queries over the local store."""
from __future__ import annotations
from typing import Iterable, Optional, Sequence

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from .models import (
    Credential,
    CredentialStatus,
    Participant,
    ParticipantState,
    ParticipantUser,
    Tenant,
    TenantStatus,
    UserStatus,
)
from .projections import Page
from .visibility import Scope, ScopeKind

DEFAULT_LIMIT = 20
MAX_LIMIT = 200

# A participant user still "sees" its participant while its deletion is pending
VISIBLE_USER_STATUSES = (UserStatus.ACTIVE, UserStatus.DELETE_IN_PROGRESS)
ACTIVE_USER_STATUSES = (UserStatus.ACTIVE,)


def _bounds(page: int, limit: int) -> tuple[int, int]:
    page = max(int(page or 0), 0)
    limit = min(max(int(limit or DEFAULT_LIMIT), 1), MAX_LIMIT)
    return page, limit


def paginate(session: Session, stmt: Select, page: int = 0, limit: int = DEFAULT_LIMIT) -> Page:
    """Run ``stmt`` for one zero-based page and count the full result."""
    page, limit = _bounds(page, limit)
    total = session.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0
    items = list(session.scalars(stmt.offset(page * limit).limit(limit)))
    return Page(items, page, limit, total)


class TenantRepository:
    def __init__(self, session: Session):
        self.session = session

    def get_by_name(self, name: str, include_deleted: bool = False) -> Optional[Tenant]:
        stmt = select(Tenant).where(Tenant.name == name)
        if not include_deleted:
            stmt = stmt.where(Tenant.status != TenantStatus.DELETED)
        return self.session.scalar(stmt)

    def exists_by_name(self, name: str) -> bool:
        return self.get_by_name(name, include_deleted=True) is not None

    def list(self, status: Optional[TenantStatus] = None, page: int = 0, limit: int = DEFAULT_LIMIT) -> Page:
        stmt = select(Tenant).order_by(Tenant.created_at.desc(), Tenant.id.desc())
        if status is not None:
            stmt = stmt.where(Tenant.status == status)
        return paginate(self.session, stmt, page, limit)


class ParticipantRepository:
    """Participant queries, always filtered through a caller Scope."""

    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def in_scope(scope: Scope, user_statuses: Sequence[UserStatus] = VISIBLE_USER_STATUSES) -> Select:
        """Base SELECT of the participants ``scope`` may see."""
        stmt = select(Participant).join(Tenant, Participant.tenant_id == Tenant.id)
        if scope.kind is ScopeKind.GLOBAL:
            return stmt
        stmt = stmt.where(Tenant.name == scope.tenant_name)
        if scope.kind is ScopeKind.TENANT:
            return stmt
        return (
            stmt.join(ParticipantUser, ParticipantUser.participant_id == Participant.id)
            .where(ParticipantUser.username == scope.username)
            .where(ParticipantUser.status.in_(list(user_statuses)))
        )

    def get(
        self,
        scope: Scope,
        participant_id: int,
        user_statuses: Sequence[UserStatus] = VISIBLE_USER_STATUSES,
        states: Optional[Iterable[ParticipantState]] = None,
    ) -> Optional[Participant]:
        stmt = self.in_scope(scope, user_statuses).where(Participant.id == participant_id)
        if states is not None:
            stmt = stmt.where(Participant.current_operation.in_(list(states)))
        return self.session.scalar(stmt)

    def get_for_user(self, scope: Scope, user_statuses: Sequence[UserStatus] = VISIBLE_USER_STATUSES) -> Optional[Participant]:
        return self.session.scalar(self.in_scope(scope, user_statuses).limit(1))

    def exists_by_name(self, name: str) -> bool:
        return self.session.scalar(select(Participant.id).where(Participant.name == name)) is not None

    def list(
        self,
        scope: Scope,
        current_operation: Optional[ParticipantState] = None,
        name: Optional[str] = None,
        page: int = 0,
        limit: int = DEFAULT_LIMIT,
    ) -> Page:
        stmt = self.in_scope(scope)
        if current_operation is not None:
            stmt = stmt.where(Participant.current_operation == current_operation)
        if name:
            stmt = stmt.where(Participant.name.contains(name))
        stmt = stmt.order_by(Participant.created_at.desc(), Participant.id.desc())
        return paginate(self.session, stmt, page, limit)


class UserRepository:
    def __init__(self, session: Session):
        self.session = session

    def exists_by_username(self, username: str) -> bool:
        return self.session.scalar(select(ParticipantUser.id).where(ParticipantUser.username == username)) is not None

    def get_by_username(self, username: str, statuses: Sequence[UserStatus] = VISIBLE_USER_STATUSES) -> Optional[ParticipantUser]:
        return self.session.scalar(
            select(ParticipantUser)
            .where(ParticipantUser.username == username)
            .where(ParticipantUser.status.in_(list(statuses)))
        )

    def for_participant(self, participant: Participant) -> list[ParticipantUser]:
        return list(self.session.scalars(
            select(ParticipantUser)
            .where(ParticipantUser.participant_id == participant.id)
            .order_by(ParticipantUser.id)
        ))


class CredentialRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, credential_id: int) -> Optional[Credential]:
        return self.session.get(Credential, credential_id)

    def get_for_participant(self, participant: Participant, credential_id: int) -> Optional[Credential]:
        return self.session.scalar(
            select(Credential)
            .where(Credential.id == credential_id)
            .where(Credential.participant_id == participant.id)
        )

    def list(
        self,
        participant: Participant,
        status: Optional[CredentialStatus] = None,
        page: int = 0,
        limit: int = DEFAULT_LIMIT,
    ) -> Page:
        stmt = select(Credential).where(Credential.participant_id == participant.id)
        if status is not None:
            stmt = stmt.where(Credential.status == status)
        stmt = stmt.order_by(Credential.created_at.desc(), Credential.id.desc())
        return paginate(self.session, stmt, page, limit)
