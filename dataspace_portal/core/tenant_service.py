"""Tenant creation and the lookups the provisioning core relies on."""
from __future__ import annotations
import logging
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import ConflictError, IdentityAdminError, NotFoundError, ValidationError
from .keycloak import IdentityAdmin
from .models import Tenant, TenantStatus, utcnow
from .passwords import generate_temp_password
from .projections import Page, TenantView
from .repository import DEFAULT_LIMIT, TenantRepository
from .validators import normalize_for_inner_dns

logger = logging.getLogger(__name__)

TENANT_ADMIN_SUFFIX = ".tenant"


def tenant_admin_username(tenant_name: str) -> str:
    return f"{tenant_name}{TENANT_ADMIN_SUFFIX}"


class TenantService:
    """Create tenants together with their Keycloak tenant-admin account."""

    def __init__(
        self,
        session: Session,
        identity_admin: IdentityAdmin,
        *,
        realm: str = "edc",
        tenant_claim_key: str = "tenantName",
        tenant_admin_role: str = "ROLE_ADMIN_TENANT",
    ):
        self.session = session
        self.identity_admin = identity_admin
        self.realm = realm
        self.tenant_claim_key = tenant_claim_key
        self.tenant_admin_role = tenant_admin_role
        self.tenants = TenantRepository(session)

    @classmethod
    def from_settings(cls, session: Session, settings, identity_admin=None) -> "TenantService":
        return cls(
            session,
            identity_admin or IdentityAdmin.from_config(settings.keycloak),
            realm=settings.keycloak.realm,
            tenant_claim_key=settings.keycloak.tenant_claim_key,
            tenant_admin_role=settings.roles.admin_tenant,
        )

    def create_tenant(
        self,
        name: str,
        description: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        admin_password: Optional[str] = None,
    ) -> tuple[TenantView, str]:
        """Store a tenant and create ``<tenant>.tenant`` in Keycloak.

        Returns:
            The tenant view and the tenant admin's password (generated when
            not supplied)

        Raises:
            ValidationError: Name has no DNS-safe characters
            ConflictError: Tenant name already used (deleted tenants included)
            IdentityAdminError: Keycloak account creation failed
        """
        tenant_name = normalize_for_inner_dns(name)
        if not tenant_name:
            raise ValidationError("Tenant name must contain letters or digits", {"field": "name"})
        if self.tenants.exists_by_name(tenant_name):
            raise ConflictError(f"Tenant with name already exists: {tenant_name}", {"tenant": tenant_name})

        tenant = Tenant(name=tenant_name, description=description, metadata_=metadata, status=TenantStatus.ACTIVE)
        self.session.add(tenant)
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError(f"Tenant with name already exists: {tenant_name}", {"tenant": tenant_name}) from exc

        password = admin_password or generate_temp_password()
        username = tenant_admin_username(tenant_name)
        try:
            self.identity_admin.create_user_with_claim(
                self.realm,
                username,
                password,
                self.tenant_claim_key,
                tenant_name,
                [self.tenant_admin_role],
            )
        except IdentityAdminError as exc:
            # Nothing committed yet: the name is free for a retry
            self.session.rollback()
            logger.error("[tenant] Keycloak user for tenant %s not created: %s", tenant_name, exc.message)
            exc.context.update(tenant=tenant_name, step="tenant_admin_user")
            raise
        self.session.commit()

        logger.info("[tenant] Created tenant %s (external_id=%s) with admin %s",
                    tenant_name, tenant.external_id, username)
        return TenantView.from_row(tenant), password

    def get_tenant(self, name: str) -> TenantView:
        tenant = self.tenants.get_by_name(name)
        if tenant is None:
            raise NotFoundError(f"Tenant not found with name: {name}", {"tenant": name})
        return TenantView.from_row(tenant)

    def list_tenants(self, page: int = 0, limit: int = DEFAULT_LIMIT) -> Page:
        return self.tenants.list(TenantStatus.ACTIVE, page, limit).map(TenantView.from_row)

    def delete_tenant(self, name: str) -> TenantView:
        """Soft delete: the row stays with status DELETED."""
        tenant = self.tenants.get_by_name(name)
        if tenant is None:
            raise NotFoundError(f"Tenant not found with name: {name}", {"tenant": name})
        tenant.status = TenantStatus.DELETED
        tenant.deleted_at = utcnow()
        self.session.commit()
        logger.info("[tenant] Tenant %s marked DELETED", name)
        return TenantView.from_row(tenant)
