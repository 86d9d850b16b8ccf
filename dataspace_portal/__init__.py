"""Dataspace participant provisioning portal.

To use the provisioning core:
    from dataspace_portal.core.provisioning_service import ProvisioningOrchestrator

To use Keycloak services:
    from dataspace_portal.core.keycloak import KeycloakClient, IdentityAdmin

To resolve caller visibility:
    from dataspace_portal.core.visibility import VisibilityResolver
"""
# Note: Flask is only imported by dataspace_portal.api so that CLI scripts
# using the core do not need the web stack loaded.
