"""
Provisioning Service Layer: participant create/delete across systems

Creating or deleting a participant touches three independently failing
collaborators: the external provisioner, the Keycloak admin API and the
local store. This module sequences those calls and applies the single
best-effort compensation the workflow allows.

Architecture:
    CLI / Flask views ──> ProvisioningOrchestrator ──┬──> ProvisionerClient ──> provisioner
                                                      ├──> IdentityAdmin ──> Keycloak
                                                      └──> Session + OperationLog ──> database

Every ``current_operation`` change goes through ``lifecycle.transition`` and
is recorded by exactly one Operation row in the same commit.
"""
from __future__ import annotations
import logging
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import (
    AuthorizationDenied,
    ConflictError,
    ExternalApiError,
    IdentityAdminError,
    NotFoundError,
    ValidationError,
)
from .external_api import ProvisionerClient
from .keycloak import IdentityAdmin
from .lifecycle import LifecycleEvent, Transition, transition
from .models import (
    Participant,
    ParticipantState,
    ParticipantUser,
    UserStatus,
    utcnow,
)
from .operation_log import OperationLog
from .passwords import hash_password
from .projections import OperationView, Page, ParticipantMe, ParticipantView, UserView
from .repository import (
    DEFAULT_LIMIT,
    ParticipantRepository,
    TenantRepository,
    UserRepository,
)
from .validators import normalize_for_inner_dns, normalize_username, validate_password
from .visibility import Scope, ScopeKind

logger = logging.getLogger(__name__)

UPDATABLE_STATES = (ParticipantState.PROVISION_IN_PROGRESS, ParticipantState.ACTIVE)


class ProvisioningOrchestrator:
    """Participant lifecycle operations for one request-scoped session.

    Usage:
        with session_scope(factory) as session:
            orchestrator = ProvisioningOrchestrator.from_settings(session, settings)
            view = orchestrator.create_participant(scope, "widgets-inc", "alice", "secret123",
                                                   tenant_name="acme-corp")
    """

    def __init__(
        self,
        session: Session,
        provisioner: ProvisionerClient,
        identity_admin: IdentityAdmin,
        *,
        realm: str = "edc",
        tenant_claim_key: str = "tenantName",
        participant_role: str = "ROLE_USER_PARTICIPANT",
    ):
        self.session = session
        self.provisioner = provisioner
        self.identity_admin = identity_admin
        self.realm = realm
        self.tenant_claim_key = tenant_claim_key
        self.participant_role = participant_role
        self.operations = OperationLog(session)
        self.tenants = TenantRepository(session)
        self.participants = ParticipantRepository(session)
        self.users = UserRepository(session)

    @classmethod
    def from_settings(cls, session: Session, settings, provisioner=None, identity_admin=None) -> "ProvisioningOrchestrator":
        return cls(
            session,
            provisioner or ProvisionerClient.from_config(settings.external_api),
            identity_admin or IdentityAdmin.from_config(settings.keycloak),
            realm=settings.keycloak.realm,
            tenant_claim_key=settings.keycloak.tenant_claim_key,
            participant_role=settings.roles.user_participant,
        )

    # ─────────────────────────────────────────────────────────────────────
    # Lifecycle plumbing
    # ─────────────────────────────────────────────────────────────────────

    def _apply(self, participant: Participant, event: LifecycleEvent, payload: dict[str, Any]) -> Transition:
        """Move ``participant`` through the transition table and log it (not committed)."""
        move = transition(participant.current_operation, event)
        participant.current_operation = move.state
        self.operations.append(participant, move.audit_event, payload)
        return move

    def _require(self, scope: Scope, participant_id: int, **filters) -> Participant:
        participant = self.participants.get(scope, participant_id, **filters)
        if participant is None:
            raise NotFoundError(f"Participant not found: {participant_id}", {"participant_id": participant_id})
        return participant

    # ─────────────────────────────────────────────────────────────────────
    # Create
    # ─────────────────────────────────────────────────────────────────────

    def create_participant(
        self,
        scope: Scope,
        name: str,
        username: str,
        password: str,
        *,
        tenant_name: Optional[str] = None,
        company_name: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        user_metadata: Optional[dict[str, Any]] = None,
    ) -> ParticipantView:
        """Provision a participant and its first user.

        The external provisioner is called before anything is stored. If the
        identity user cannot be created afterwards, the provisioner is asked
        to deprovision (best effort), the participant is recorded as
        PROVISION_FAILED and the identity error is raised.

        Raises:
            NotFoundError: Tenant missing or deleted
            ValidationError: Name, username or password unusable
            ConflictError: Participant name or username already taken
            ExternalApiError: Provisioner call failed (nothing stored)
            IdentityAdminError: Keycloak user creation failed (compensated)
        """
        tenant_name = scope.target_tenant(tenant_name)
        tenant = self.tenants.get_by_name(tenant_name)
        if tenant is None:
            raise NotFoundError(f"Tenant not found with name {tenant_name}", {"tenant": tenant_name})

        participant_name = normalize_for_inner_dns(name)
        if not participant_name:
            raise ValidationError("Participant name must contain letters or digits", {"field": "name"})
        try:
            username = normalize_username(username)
            validate_password(password)
        except ValueError as exc:
            raise ValidationError(str(exc), {"tenant": tenant_name, "participant": participant_name}) from exc

        if self.participants.exists_by_name(participant_name):
            raise ConflictError(f"Participant with name already exists: {participant_name}",
                                {"participant": participant_name})
        if self.users.exists_by_username(username):
            raise ConflictError(f"Participant user with username already exists: {username}",
                                {"username": username})

        logger.info("[provision] Creating participant %s in tenant %s", participant_name, tenant_name)
        try:
            response = self.provisioner.provision(participant_name)
        except ExternalApiError as exc:
            exc.context.update(tenant=tenant_name, step="provision")
            raise
        logger.info("[provision] Provisioner accepted %s: %s", participant_name, response)

        participant = Participant(
            tenant=tenant,
            name=participant_name,
            company_name=company_name or name,
            description=description,
            metadata_=metadata,
            did=self.provisioner.build_did(participant_name),
            host=self.provisioner.build_host(participant_name),
        )
        move = transition(None, LifecycleEvent.PROVISION_REQUESTED)
        participant.current_operation = move.state
        self.session.add(participant)
        self.operations.append(participant, move.audit_event, {"message": "Provisioning started"})
        try:
            self.session.commit()
        except IntegrityError as exc:
            # A concurrent request created the same name after our pre-check
            self.session.rollback()
            raise ConflictError(f"Participant with name already exists: {participant_name}",
                                {"participant": participant_name}) from exc

        try:
            self.identity_admin.create_user_with_claim(
                self.realm,
                username,
                password,
                self.tenant_claim_key,
                tenant_name,
                [self.participant_role],
            )
        except IdentityAdminError as exc:
            self._compensate_failed_provision(participant, exc)
            exc.context.update(tenant=tenant_name, participant=participant_name, step="identity_user")
            raise

        self.session.add(ParticipantUser(
            participant=participant,
            username=username,
            password=hash_password(password),
            metadata_=user_metadata,
            status=UserStatus.ACTIVE,
        ))
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError(f"Participant user with username already exists: {username}",
                                {"username": username, "participant": participant_name}) from exc

        logger.info("[provision] Participant %s created (external_id=%s) with user %s",
                    participant.name, participant.external_id, username)
        return ParticipantView.from_row(participant)

    def _compensate_failed_provision(self, participant: Participant, error: Exception) -> None:
        try:
            self.provisioner.deprovision(participant.name)
            logger.info("[provision] Compensating deprovision done for %s", participant.name)
        except (ExternalApiError, ValueError) as exc:
            logger.error("[provision] Compensating deprovision failed for %s: %s", participant.name, exc)

        self._apply(participant, LifecycleEvent.PROVISION_FAILED, {
            "message": "Provisioning failed",
            "error": str(error),
        })
        self.session.commit()

    # ─────────────────────────────────────────────────────────────────────
    # Activation callback
    # ─────────────────────────────────────────────────────────────────────

    def complete_provisioning(
        self,
        participant_id: int,
        did: Optional[str] = None,
        host: Optional[str] = None,
        scope: Optional[Scope] = None,
    ) -> ParticipantView:
        """Mark a PROVISION_IN_PROGRESS participant ACTIVE once infrastructure is up.

        Raises:
            NotFoundError: Participant not visible
            NotActiveError: Participant is not PROVISION_IN_PROGRESS
        """
        participant = self._require(scope or Scope.global_(), participant_id)
        if did:
            participant.did = did
        if host:
            participant.host = host
        self._apply(participant, LifecycleEvent.PROVISION_SUCCEEDED, {
            "message": "Provisioning completed",
            "did": participant.did,
            "host": participant.host,
        })
        self.session.commit()
        logger.info("[provision] Participant %s is ACTIVE", participant.name)
        return ParticipantView.from_row(participant)

    def fail_provisioning(self, participant_id: int, error: str, scope: Optional[Scope] = None) -> ParticipantView:
        participant = self._require(scope or Scope.global_(), participant_id)
        self._apply(participant, LifecycleEvent.PROVISION_FAILED, {
            "message": "Provisioning failed",
            "error": error,
        })
        self.session.commit()
        logger.warning("[provision] Participant %s failed provisioning: %s", participant.name, error)
        return ParticipantView.from_row(participant)

    # ─────────────────────────────────────────────────────────────────────
    # Delete
    # ─────────────────────────────────────────────────────────────────────

    def delete_participant(self, scope: Scope, participant_id: int) -> ParticipantView:
        """Deprovision an ACTIVE participant and retire its users.

        Participants in any other state are returned unchanged. Local
        bookkeeping is committed whatever the provisioner or Keycloak answer.

        Raises:
            NotFoundError: Participant not visible in ``scope``
        """
        participant = self._require(scope, participant_id)
        if participant.current_operation is not ParticipantState.ACTIVE:
            logger.info("[deprovision] Participant %s is %s, not ACTIVE; nothing to do",
                        participant.name, participant.current_operation.value)
            return ParticipantView.from_row(participant)

        try:
            response = self.provisioner.deprovision(participant.name)
        except ExternalApiError as exc:
            logger.error("[deprovision] Provisioner failed for %s: %s", participant.name, exc.message)
            self._apply(participant, LifecycleEvent.DEPROVISION_FAILED, {
                "message": "Deprovisioning failed",
                "error": exc.message,
            })
            user_status = UserStatus.DELETE_WITH_ERROR
        else:
            logger.info("[deprovision] Provisioner released %s: %s", participant.name, response)
            self._apply(participant, LifecycleEvent.DEPROVISION_SUCCEEDED, {"message": "Deprovisioning started"})
            user_status = UserStatus.DELETED

        self._retire_users(participant, user_status)
        self.session.commit()
        return ParticipantView.from_row(participant)

    def _retire_users(self, participant: Participant, status: UserStatus) -> None:
        now = utcnow()
        for user in self.users.for_participant(participant):
            user.status = status
            user.deleted_at = now
            try:
                self.identity_admin.delete_user_by_username(self.realm, user.username)
            except IdentityAdminError as exc:
                logger.warning("[leaver] Keycloak user %s of %s not deleted: %s",
                               user.username, participant.name, exc.message)
                continue
            logger.info("[leaver] User %s of %s marked %s", user.username, participant.name, status.value)

    # ─────────────────────────────────────────────────────────────────────
    # Reads and details update
    # ─────────────────────────────────────────────────────────────────────

    def list_participants(
        self,
        scope: Scope,
        current_operation: Optional[ParticipantState] = None,
        name: Optional[str] = None,
        page: int = 0,
        limit: int = DEFAULT_LIMIT,
    ) -> Page:
        state = ParticipantState(current_operation) if current_operation else None
        return self.participants.list(scope, state, name, page, limit).map(ParticipantView.from_row)

    def get_participant(self, scope: Scope, participant_id: int) -> ParticipantView:
        return ParticipantView.from_row(self._require(scope, participant_id))

    def get_me(self, scope: Scope) -> ParticipantMe:
        """Participant and user record of the calling participant user."""
        if scope.kind is not ScopeKind.PARTICIPANT:
            raise AuthorizationDenied("FORBIDDEN", "Only participant users have a participant")
        participant = self.participants.get_for_user(scope)
        user = self.users.get_by_username(scope.username)
        if participant is None or user is None:
            raise NotFoundError(
                f"Participant not found for username: {scope.username} and tenant: {scope.tenant_name}",
                {"username": scope.username, "tenant": scope.tenant_name},
            )
        return ParticipantMe(ParticipantView.from_row(participant), UserView.from_row(user))

    def update_participant(
        self,
        scope: Scope,
        participant_id: int,
        description: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ParticipantView:
        """Change description and/or metadata; the name and lifecycle state are left alone.

        Participants outside PROVISION_IN_PROGRESS and ACTIVE are reported as
        not found.
        """
        participant = self._require(scope, participant_id, states=UPDATABLE_STATES)
        if description is not None:
            participant.description = description
        if metadata is not None:
            participant.metadata_ = dict(metadata)
        self.session.commit()
        logger.info("[provision] Updated participant %s (description=%s, metadata=%s)",
                    participant.name, description is not None, metadata is not None)
        return ParticipantView.from_row(participant)

    def list_operations(
        self,
        scope: Scope,
        participant_id: int,
        event_type=None,
        page: int = 0,
        limit: int = DEFAULT_LIMIT,
    ) -> Page:
        return self.operations.list_for(scope, participant_id, event_type, page, limit)

    def latest_operation(self, scope: Scope, participant_id: int) -> Optional[OperationView]:
        participant = self._require(scope, participant_id)
        latest = self.operations.latest(participant, 1)
        return OperationView.from_row(latest[0]) if latest else None
