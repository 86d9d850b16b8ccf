"""Role and claim extraction from decoded Keycloak tokens."""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Mapping, Optional


def collect_roles(*sources) -> list[str]:
    """Collect all roles from ID claims, userinfo, and access token claims."""
    roles: list[str] = []
    for source in sources:
        if not isinstance(source, dict):
            continue
        realm_access = source.get("realm_access")
        if isinstance(realm_access, dict):
            roles.extend(r for r in realm_access.get("roles", []) if r not in roles)
        resource_access = source.get("resource_access")
        if isinstance(resource_access, dict):
            for client_access in resource_access.values():
                if not isinstance(client_access, dict):
                    continue
                roles.extend(r for r in client_access.get("roles", []) if r not in roles)
        flat = source.get("roles")
        if isinstance(flat, list):
            roles.extend(r for r in flat if isinstance(r, str) and r not in roles)
    return roles


def collect_authorities(*sources) -> frozenset[str]:
    """Return every role found in the given claim sets as an immutable set."""
    return frozenset(collect_roles(*sources))


def _claim_str(claims: Mapping[str, Any], key: str) -> Optional[str]:
    value = claims.get(key)
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


@dataclass(frozen=True)
class CallerClaims:
    """Tenant and username claims a caller presented, if any."""
    tenant_name: Optional[str] = None
    username: Optional[str] = None


def extract_claims(
    claims: Optional[Mapping[str, Any]],
    tenant_claim_key: str = "tenantName",
    username_claim_key: str = "given_name",
) -> CallerClaims:
    """Pick the tenant and username claims out of a decoded token.

    Blank values and empty lists count as missing.
    """
    if not claims:
        return CallerClaims()
    return CallerClaims(
        tenant_name=_claim_str(claims, tenant_claim_key),
        username=_claim_str(claims, username_claim_key),
    )
