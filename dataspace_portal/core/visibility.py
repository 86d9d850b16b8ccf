"""Caller visibility: map roles and claims to the scope every query runs in.

``VisibilityResolver.resolve`` is evaluated once per request. Its result, a
frozen ``Scope``, is what repositories and workflows filter by, so read and
write paths share one policy.
"""
from __future__ import annotations
import enum
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from dataspace_portal.config.settings import RoleNames

from .errors import AuthorizationDenied, ValidationError
from .rbac import CallerClaims, extract_claims

logger = logging.getLogger(__name__)


class RoleKind(str, enum.Enum):
    ADMIN = "ADMIN"
    ADMIN_TENANT = "ADMIN_TENANT"
    USER_PARTICIPANT = "USER_PARTICIPANT"


# Most privileged first
ROLE_PRIORITY = (RoleKind.ADMIN, RoleKind.ADMIN_TENANT, RoleKind.USER_PARTICIPANT)


class Action(str, enum.Enum):
    LIST_PARTICIPANTS = "list_participants"
    CREATE_PARTICIPANT = "create_participant"
    READ_PARTICIPANT = "read_participant"
    UPDATE_PARTICIPANT = "update_participant"
    DELETE_PARTICIPANT = "delete_participant"
    READ_ME = "read_me"
    LIST_CREDENTIALS = "list_credentials"
    READ_CREDENTIAL = "read_credential"
    REQUEST_CREDENTIALS = "request_credentials"
    LIST_OPERATIONS = "list_operations"
    MANAGE_TENANTS = "manage_tenants"


_ADMINS = frozenset({RoleKind.ADMIN, RoleKind.ADMIN_TENANT})
_EVERYONE = frozenset(ROLE_PRIORITY)

ACTION_ROLES: dict[Action, frozenset[RoleKind]] = {
    Action.LIST_PARTICIPANTS: _ADMINS,
    Action.CREATE_PARTICIPANT: _ADMINS,
    Action.READ_PARTICIPANT: _ADMINS,
    Action.UPDATE_PARTICIPANT: _ADMINS,
    Action.DELETE_PARTICIPANT: _ADMINS,
    Action.READ_ME: frozenset({RoleKind.USER_PARTICIPANT}),
    Action.LIST_CREDENTIALS: _EVERYONE,
    Action.READ_CREDENTIAL: _EVERYONE,
    Action.REQUEST_CREDENTIALS: _EVERYONE,
    Action.LIST_OPERATIONS: _EVERYONE,
    Action.MANAGE_TENANTS: frozenset({RoleKind.ADMIN}),
}

if set(ACTION_ROLES) != set(Action):
    raise RuntimeError(f"Actions without a role mapping: {sorted(set(Action) - set(ACTION_ROLES))}")


class ScopeKind(str, enum.Enum):
    GLOBAL = "GLOBAL"
    TENANT = "TENANT"
    PARTICIPANT = "PARTICIPANT"


@dataclass(frozen=True)
class Scope:
    """What a caller may see: everything, one tenant, or one participant."""
    kind: ScopeKind
    role: RoleKind
    tenant_name: Optional[str] = None
    username: Optional[str] = None

    @classmethod
    def global_(cls) -> "Scope":
        return cls(ScopeKind.GLOBAL, RoleKind.ADMIN)

    @classmethod
    def tenant(cls, tenant_name: str) -> "Scope":
        return cls(ScopeKind.TENANT, RoleKind.ADMIN_TENANT, tenant_name=tenant_name)

    @classmethod
    def participant(cls, tenant_name: str, username: str) -> "Scope":
        return cls(ScopeKind.PARTICIPANT, RoleKind.USER_PARTICIPANT, tenant_name=tenant_name, username=username)

    @property
    def is_global(self) -> bool:
        return self.kind is ScopeKind.GLOBAL

    def target_tenant(self, requested: Optional[str] = None) -> str:
        """Tenant a write in this scope applies to.

        Global callers must name the tenant; tenant admins always write to
        their own tenant; participant users cannot target a tenant.
        """
        if self.kind is ScopeKind.GLOBAL:
            if not requested:
                raise ValidationError("tenantName is required", {"field": "tenantName"})
            return requested
        if self.kind is ScopeKind.TENANT:
            return self.tenant_name
        raise AuthorizationDenied("FORBIDDEN", "Participant users cannot target a tenant")

    def covers_tenant(self, tenant_name: str) -> bool:
        return self.kind is ScopeKind.GLOBAL or self.tenant_name == tenant_name


class VisibilityResolver:
    """Resolve caller authorities and claims to a Scope.

    Usage:
        resolver = VisibilityResolver(settings.roles, "tenantName", "given_name")
        scope = resolver.resolve(authorities, claims, Action.LIST_PARTICIPANTS)
    """

    def __init__(
        self,
        role_names: Optional[RoleNames] = None,
        tenant_claim_key: str = "tenantName",
        username_claim_key: str = "given_name",
        action_roles: Optional[Mapping[Action, frozenset[RoleKind]]] = None,
    ):
        names = role_names or RoleNames()
        self.role_names = names
        self._authority_of = {
            RoleKind.ADMIN: names.admin,
            RoleKind.ADMIN_TENANT: names.admin_tenant,
            RoleKind.USER_PARTICIPANT: names.user_participant,
        }
        self.tenant_claim_key = tenant_claim_key
        self.username_claim_key = username_claim_key
        self.action_roles = dict(action_roles or ACTION_ROLES)

    @classmethod
    def from_settings(cls, settings) -> "VisibilityResolver":
        return cls(settings.roles, settings.keycloak.tenant_claim_key, settings.keycloak.username_claim_key)

    def held_roles(self, authorities: Iterable[str]) -> list[RoleKind]:
        """Recognised roles held by the caller, most privileged first."""
        granted = set(authorities or ())
        return [kind for kind in ROLE_PRIORITY if self._authority_of[kind] in granted]

    def resolve(
        self,
        authorities: Iterable[str],
        claims: Optional[Mapping[str, Any]] = None,
        action: Optional[Action] = None,
    ) -> Scope:
        """Compute the caller's scope for ``action`` (any action when None).

        Raises:
            AuthorizationDenied: UNAUTHORIZED without a recognised role,
                BAD_REQUEST when the selected role lacks its claims,
                FORBIDDEN when no held role is permitted for the action
        """
        held = self.held_roles(authorities)
        if not held:
            raise AuthorizationDenied("UNAUTHORIZED", "No recognised role")

        if action is None:
            permitted = held
        else:
            allowed = self.action_roles.get(Action(action), frozenset())
            permitted = [kind for kind in held if kind in allowed]

        caller = extract_claims(claims, self.tenant_claim_key, self.username_claim_key)
        if not permitted:
            # A missing claim is reported before the role mismatch
            self._scope_for(held[0], caller)
            logger.info("[visibility] Roles %s not permitted for %s", [k.value for k in held], action)
            raise AuthorizationDenied(
                "FORBIDDEN",
                "Insufficient permissions",
                {"action": Action(action).value},
            )
        return self._scope_for(permitted[0], caller)

    def _scope_for(self, kind: RoleKind, caller: CallerClaims) -> Scope:
        if kind is RoleKind.ADMIN:
            return Scope.global_()
        if not caller.tenant_name:
            raise AuthorizationDenied(
                "BAD_REQUEST",
                f"Missing claim: {self.tenant_claim_key}",
                {"claim": self.tenant_claim_key},
            )
        if kind is RoleKind.ADMIN_TENANT:
            return Scope.tenant(caller.tenant_name)
        if not caller.username:
            raise AuthorizationDenied(
                "BAD_REQUEST",
                f"Missing claim: {self.username_claim_key}",
                {"claim": self.username_claim_key},
            )
        return Scope.participant(caller.tenant_name, caller.username)
