"""Participant create/activate/delete/update through ProvisioningOrchestrator."""
import pytest
from sqlalchemy import func, select

from dataspace_portal.core.errors import (
    AuthorizationDenied,
    ConflictError,
    ExternalApiError,
    IdentityAdminError,
    NotActiveError,
    NotFoundError,
    ValidationError,
)
from dataspace_portal.core.models import (
    Operation,
    OperationEventType,
    Participant,
    ParticipantState,
    ParticipantUser,
    UserStatus,
)
from dataspace_portal.core.passwords import verify_password
from dataspace_portal.core.visibility import Scope


def _operations(session, participant_id):
    return list(session.scalars(
        select(Operation).where(Operation.participant_id == participant_id).order_by(Operation.id)
    ))


def _count(session, model):
    return session.scalar(select(func.count()).select_from(model))


# ─────────────────────────────────────────────────────────────────────────────
# Create
# ─────────────────────────────────────────────────────────────────────────────
def test_create_participant_starts_provisioning(orchestrator, session, tenant, provisioner, identity_admin):
    view = orchestrator.create_participant(
        Scope.global_(), "widgets-inc", "alice", "password123", tenant_name="acmecorp",
    )

    assert view.name == "widgetsinc"
    assert view.company_name == "widgets-inc"
    assert view.tenant_name == "acmecorp"
    assert view.current_operation == "PROVISION_IN_PROGRESS"
    assert view.did == "did:web:widgetsinc"
    assert view.host == "kube.test"

    provisioner.provision.assert_called_once_with("widgetsinc")
    identity_admin.create_user_with_claim.assert_called_once_with(
        "edc", "alice", "password123", "tenantName", "acmecorp", ["ROLE_USER_PARTICIPANT"],
    )

    ops = _operations(session, view.id)
    assert [op.event_type for op in ops] == [OperationEventType.PROVISION_STARTED]
    assert ops[0].event_payload == {"message": "Provisioning started"}

    user = session.scalar(select(ParticipantUser).where(ParticipantUser.username == "alice"))
    assert user.status is UserStatus.ACTIVE
    assert user.password != "password123"
    assert verify_password("password123", user.password)


def test_tenant_admin_creates_in_own_tenant(orchestrator, tenant, other_tenant):
    view = orchestrator.create_participant(
        Scope.tenant("acmecorp"), "widgets-inc", "alice", "password123", tenant_name="globex",
    )
    assert view.tenant_name == "acmecorp"


def test_global_scope_requires_tenant_name(orchestrator, tenant, provisioner):
    with pytest.raises(ValidationError):
        orchestrator.create_participant(Scope.global_(), "widgets-inc", "alice", "password123")
    provisioner.provision.assert_not_called()


def test_unknown_tenant_is_not_found(orchestrator, provisioner):
    with pytest.raises(NotFoundError):
        orchestrator.create_participant(
            Scope.global_(), "widgets-inc", "alice", "password123", tenant_name="nope",
        )
    provisioner.provision.assert_not_called()


def test_participant_scope_cannot_create(orchestrator, tenant):
    with pytest.raises(AuthorizationDenied) as excinfo:
        orchestrator.create_participant(
            Scope.participant("acmecorp", "bob"), "widgets-inc", "alice", "password123",
        )
    assert excinfo.value.status == 403


@pytest.mark.parametrize(
    "name,username,password",
    [
        ("---", "alice", "password123"),
        ("widgets-inc", "al", "password123"),
        ("widgets-inc", "alice smith", "password123"),
        ("widgets-inc", "alice", "short"),
    ],
)
def test_invalid_input_rejected_before_provisioning(orchestrator, tenant, provisioner, name, username, password):
    with pytest.raises(ValidationError):
        orchestrator.create_participant(Scope.global_(), name, username, password, tenant_name="acmecorp")
    provisioner.provision.assert_not_called()


def test_duplicate_name_conflicts(orchestrator, session, tenant, provisioner):
    orchestrator.create_participant(Scope.global_(), "widgets-inc", "alice", "password123", tenant_name="acmecorp")
    provisioner.provision.reset_mock()

    # Normalizes to the same DNS label
    with pytest.raises(ConflictError):
        orchestrator.create_participant(Scope.global_(), "Widgets Inc", "bob", "password123", tenant_name="acmecorp")
    provisioner.provision.assert_not_called()
    assert _count(session, Participant) == 1


def test_duplicate_username_conflicts(orchestrator, tenant, provisioner):
    orchestrator.create_participant(Scope.global_(), "widgets-inc", "alice", "password123", tenant_name="acmecorp")
    provisioner.provision.reset_mock()

    with pytest.raises(ConflictError):
        orchestrator.create_participant(Scope.global_(), "gadgets", "ALICE", "password123", tenant_name="acmecorp")
    provisioner.provision.assert_not_called()


def test_name_unique_violation_after_precheck_conflicts(orchestrator, session, tenant, provisioner, identity_admin,
                                                       monkeypatch):
    orchestrator.create_participant(Scope.global_(), "widgets-inc", "alice", "password123", tenant_name="acmecorp")
    identity_admin.create_user_with_claim.reset_mock()
    monkeypatch.setattr(orchestrator.participants, "exists_by_name", lambda name: False)

    with pytest.raises(ConflictError) as excinfo:
        orchestrator.create_participant(Scope.global_(), "widgets-inc", "bob", "password123", tenant_name="acmecorp")

    assert excinfo.value.context["participant"] == "widgetsinc"
    identity_admin.create_user_with_claim.assert_not_called()
    assert _count(session, Participant) == 1
    assert _count(session, ParticipantUser) == 1


def test_username_unique_violation_after_precheck_conflicts(orchestrator, session, tenant, monkeypatch):
    orchestrator.create_participant(Scope.global_(), "widgets-inc", "alice", "password123", tenant_name="acmecorp")
    monkeypatch.setattr(orchestrator.users, "exists_by_username", lambda username: False)

    with pytest.raises(ConflictError) as excinfo:
        orchestrator.create_participant(Scope.global_(), "gadgets", "alice", "password123", tenant_name="acmecorp")

    assert excinfo.value.context["username"] == "alice"
    assert _count(session, ParticipantUser) == 1
    assert session.scalar(select(ParticipantUser.username)) == "alice"


def test_provisioner_failure_stores_nothing(orchestrator, session, tenant, provisioner, identity_admin):
    provisioner.provision.side_effect = ExternalApiError("External provision API server error: 503")

    with pytest.raises(ExternalApiError) as excinfo:
        orchestrator.create_participant(Scope.global_(), "widgets-inc", "alice", "password123", tenant_name="acmecorp")

    assert excinfo.value.context["step"] == "provision"
    identity_admin.create_user_with_claim.assert_not_called()
    assert _count(session, Participant) == 0
    assert _count(session, Operation) == 0
    assert _count(session, ParticipantUser) == 0


def test_identity_failure_is_compensated(orchestrator, session, tenant, provisioner, identity_admin):
    identity_admin.create_user_with_claim.side_effect = IdentityAdminError("Unable to create identity user")

    with pytest.raises(IdentityAdminError) as excinfo:
        orchestrator.create_participant(Scope.global_(), "widgets-inc", "alice", "password123", tenant_name="acmecorp")

    assert excinfo.value.context["step"] == "identity_user"
    provisioner.deprovision.assert_called_once_with("widgetsinc")

    participant = session.scalar(select(Participant).where(Participant.name == "widgetsinc"))
    assert participant.current_operation is ParticipantState.PROVISION_FAILED
    events = [op.event_type for op in _operations(session, participant.id)]
    assert events == [OperationEventType.PROVISION_STARTED, OperationEventType.PROVISION_FAILED]
    assert _count(session, ParticipantUser) == 0


def test_compensation_survives_deprovision_failure(orchestrator, session, tenant, provisioner, identity_admin):
    identity_admin.create_user_with_claim.side_effect = IdentityAdminError("keycloak down")
    provisioner.deprovision.side_effect = ExternalApiError("External deprovision API network error")

    with pytest.raises(IdentityAdminError):
        orchestrator.create_participant(Scope.global_(), "widgets-inc", "alice", "password123", tenant_name="acmecorp")

    participant = session.scalar(select(Participant).where(Participant.name == "widgetsinc"))
    assert participant.current_operation is ParticipantState.PROVISION_FAILED


# ─────────────────────────────────────────────────────────────────────────────
# Activation
# ─────────────────────────────────────────────────────────────────────────────
def test_complete_provisioning_activates(orchestrator, session, tenant):
    view = orchestrator.create_participant(Scope.global_(), "widgets-inc", "alice", "password123", tenant_name="acmecorp")

    active = orchestrator.complete_provisioning(view.id, did="did:web:widgets.example", host="widgets.example")

    assert active.current_operation == "ACTIVE"
    assert active.did == "did:web:widgets.example"
    last = _operations(session, view.id)[-1]
    assert last.event_type is OperationEventType.PROVISION_COMPLETED
    assert last.event_payload == {
        "message": "Provisioning completed",
        "did": "did:web:widgets.example",
        "host": "widgets.example",
    }


def test_complete_provisioning_twice_is_rejected(orchestrator, active_participant):
    view = active_participant()
    with pytest.raises(NotActiveError):
        orchestrator.complete_provisioning(view.id)


def test_fail_provisioning(orchestrator, session, tenant):
    view = orchestrator.create_participant(Scope.global_(), "widgets-inc", "alice", "password123", tenant_name="acmecorp")
    failed = orchestrator.fail_provisioning(view.id, "cluster quota exceeded")
    assert failed.current_operation == "PROVISION_FAILED"
    assert _operations(session, view.id)[-1].event_payload["error"] == "cluster quota exceeded"


# ─────────────────────────────────────────────────────────────────────────────
# Delete
# ─────────────────────────────────────────────────────────────────────────────
def test_delete_non_active_is_noop(orchestrator, session, tenant, provisioner):
    view = orchestrator.create_participant(Scope.global_(), "widgets-inc", "alice", "password123", tenant_name="acmecorp")
    before = len(_operations(session, view.id))

    result = orchestrator.delete_participant(Scope.global_(), view.id)

    assert result.current_operation == "PROVISION_IN_PROGRESS"
    provisioner.deprovision.assert_not_called()
    assert len(_operations(session, view.id)) == before


def test_delete_active_participant(orchestrator, session, provisioner, identity_admin, active_participant):
    view = active_participant()

    result = orchestrator.delete_participant(Scope.global_(), view.id)

    assert result.current_operation == "DEPROVISION_COMPLETED"
    provisioner.deprovision.assert_called_once_with("widgetsinc")
    identity_admin.delete_user_by_username.assert_called_once_with("edc", "alice")
    last = _operations(session, view.id)[-1]
    assert last.event_type is OperationEventType.DEPROVISION_STARTED
    assert last.event_payload == {"message": "Deprovisioning started"}
    user = session.scalar(select(ParticipantUser).where(ParticipantUser.username == "alice"))
    assert user.status is UserStatus.DELETED
    assert user.deleted_at is not None


def test_delete_with_failing_deprovision(orchestrator, session, provisioner, active_participant):
    view = active_participant()
    provisioner.deprovision.side_effect = ExternalApiError("External deprovision API server error: 500")

    result = orchestrator.delete_participant(Scope.global_(), view.id)

    assert result.current_operation == "DEPROVISION_FAILED"
    last = _operations(session, view.id)[-1]
    assert last.event_type is OperationEventType.DEPROVISION_FAILED
    assert last.event_payload["error"] == "External deprovision API server error: 500"
    user = session.scalar(select(ParticipantUser).where(ParticipantUser.username == "alice"))
    assert user.status is UserStatus.DELETE_WITH_ERROR


def test_delete_continues_when_identity_delete_fails(orchestrator, session, identity_admin, active_participant):
    view = active_participant()
    identity_admin.delete_user_by_username.side_effect = IdentityAdminError("keycloak down")

    result = orchestrator.delete_participant(Scope.global_(), view.id)

    assert result.current_operation == "DEPROVISION_COMPLETED"
    user = session.scalar(select(ParticipantUser).where(ParticipantUser.username == "alice"))
    assert user.status is UserStatus.DELETED


def test_delete_outside_tenant_is_not_found(orchestrator, other_tenant, active_participant):
    view = active_participant()
    with pytest.raises(NotFoundError):
        orchestrator.delete_participant(Scope.tenant("globex"), view.id)


# ─────────────────────────────────────────────────────────────────────────────
# Reads and update
# ─────────────────────────────────────────────────────────────────────────────
def test_list_participants_respects_scope(orchestrator, other_tenant, active_participant):
    active_participant("widgets-inc", "alice", "acmecorp")
    active_participant("gadgets", "bob", "globex")

    assert orchestrator.list_participants(Scope.global_()).total == 2
    acme = orchestrator.list_participants(Scope.tenant("acmecorp"))
    assert [p.name for p in acme.items] == ["widgetsinc"]
    mine = orchestrator.list_participants(Scope.participant("globex", "bob"))
    assert [p.name for p in mine.items] == ["gadgets"]
    assert orchestrator.list_participants(Scope.participant("acmecorp", "bob")).total == 0


def test_list_participants_filters_and_pages(orchestrator, tenant, active_participant):
    active_participant("widgets-inc", "alice")
    orchestrator.create_participant(Scope.global_(), "gadgets", "bob", "password123", tenant_name="acmecorp")
    orchestrator.create_participant(Scope.global_(), "gizmos", "carol", "password123", tenant_name="acmecorp")

    pending = orchestrator.list_participants(Scope.global_(), current_operation="PROVISION_IN_PROGRESS")
    assert {p.name for p in pending.items} == {"gadgets", "gizmos"}

    first = orchestrator.list_participants(Scope.global_(), page=0, limit=2)
    second = orchestrator.list_participants(Scope.global_(), page=1, limit=2)
    assert first.total == 3 and first.pages == 2
    # Newest first
    assert [p.name for p in first.items] == ["gizmos", "gadgets"]
    assert [p.name for p in second.items] == ["widgetsinc"]

    assert [p.name for p in orchestrator.list_participants(Scope.global_(), name="gad").items] == ["gadgets"]


def test_get_me(orchestrator, active_participant):
    active_participant()
    me = orchestrator.get_me(Scope.participant("acmecorp", "alice"))
    assert me.participant.name == "widgetsinc"
    assert me.user.username == "alice"
    assert me.to_dict()["user"]["status"] == "ACTIVE"


def test_get_me_requires_participant_scope(orchestrator):
    with pytest.raises(AuthorizationDenied):
        orchestrator.get_me(Scope.tenant("acmecorp"))


def test_get_me_wrong_tenant_is_not_found(orchestrator, active_participant):
    active_participant()
    with pytest.raises(NotFoundError):
        orchestrator.get_me(Scope.participant("globex", "alice"))


def test_update_participant_keeps_state(orchestrator, session, active_participant):
    view = active_participant()
    ops_before = len(_operations(session, view.id))

    updated = orchestrator.update_participant(
        Scope.tenant("acmecorp"), view.id, description="Widget maker", metadata={"tier": "gold"},
    )

    assert updated.description == "Widget maker"
    assert updated.metadata == {"tier": "gold"}
    assert updated.current_operation == "ACTIVE"
    assert updated.name == view.name
    assert len(_operations(session, view.id)) == ops_before


def test_update_deleted_participant_is_not_found(orchestrator, active_participant):
    view = active_participant()
    orchestrator.delete_participant(Scope.global_(), view.id)
    with pytest.raises(NotFoundError):
        orchestrator.update_participant(Scope.global_(), view.id, description="late")


def test_latest_operation(orchestrator, active_participant):
    view = active_participant()
    latest = orchestrator.latest_operation(Scope.global_(), view.id)
    assert latest.event_type == "PROVISION_COMPLETED"
