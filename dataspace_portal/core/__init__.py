"""Core Business Logic Module

Participant provisioning, credential issuance, operation log and caller
visibility, independent of HTTP frameworks.

Module Structure:
    - keycloak/               : Keycloak Admin API client and IdentityAdmin facade
    - external_api.py         : Provisioner and credential issuer HTTP clients
    - models.py               : SQLAlchemy tables and enumerations
    - repository.py           : Scoped queries
    - lifecycle.py            : Participant transition table
    - operation_log.py        : Append-only audit log
    - provisioning_service.py : ProvisioningOrchestrator
    - tenant_service.py       : Tenant creation with tenant-admin account
    - credential_service.py   : CredentialIssuanceWorkflow
    - visibility.py / rbac.py : Roles and claims to Scope
    - errors.py               : Error taxonomy

Usage Pattern:
    These modules are NOT auto-imported; import explicitly when needed:
        from dataspace_portal.core.provisioning_service import ProvisioningOrchestrator
        from dataspace_portal.core.visibility import VisibilityResolver, Action
"""
