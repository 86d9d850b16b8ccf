"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

SECRETS_DIR = Path("/run/secrets")


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = SECRETS_DIR / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                logger.info("[settings] Loaded %s from %s", secret_name, SECRETS_DIR)
                return secret_value
        except OSError as exc:
            logger.warning("[settings] Failed to read %s/%s: %s", SECRETS_DIR, secret_name, exc)

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


def _env_flag(var_name: str, default: str = "false") -> bool:
    return os.environ.get(var_name, default).strip().lower() == "true"


def _env_list(var_name: str, default: list[str]) -> list[str]:
    raw = os.environ.get(var_name)
    if raw is None:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_float(var_name: str, default: float) -> float:
    raw = os.environ.get(var_name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {var_name} must be a number, got {raw!r}") from exc


def _get_or_generate(var_name: str, demo_default: Optional[str] = None, required: bool = True, demo_mode: bool = False) -> str:
    """Get environment variable or use demo default."""
    value = os.environ.get(var_name)
    if value:
        return value

    if demo_mode and demo_default is not None:
        logger.debug("[demo-mode] Using default for %s", var_name)
        return demo_default

    if not required:
        return ""

    raise RuntimeError(f"Environment variable {var_name} is required in production mode.")


@dataclass(frozen=True)
class RoleNames:
    """Authority names as they appear in the caller's token."""
    admin: str = "ROLE_ADMIN"
    admin_tenant: str = "ROLE_ADMIN_TENANT"
    user_participant: str = "ROLE_USER_PARTICIPANT"


@dataclass
class KeycloakConfig:
    """Identity provider admin API settings."""
    base_url: str = "http://localhost:8080"
    realm: str = "edc"
    admin_realm: str = "master"
    admin_client_id: str = "admin-cli"
    admin_username: str = "admin"
    admin_password: str = ""

    # Claims carried by participant and tenant-admin tokens
    tenant_claim_key: str = "tenantName"
    username_claim_key: str = "given_name"

    token_cache_enabled: bool = True
    token_expiry_skew: int = 30
    timeout: float = 10.0

    # Portal front-end client (realm bootstrap only)
    client_id: str = "edc-provisioning-portal-fe"
    client_root_url: str = ""
    redirect_uris: list[str] = field(default_factory=list)
    web_origins: list[str] = field(default_factory=list)


@dataclass
class ExternalApiConfig:
    """Provisioner and credential issuer settings."""
    provisioner_endpoint: str = ""
    kube_host: str = ""
    did_template: str = "did:web:{participant}"
    issuer_did: str = ""
    holder_pid: str = ""
    api_key: str = ""
    credentials_service_url_template: str = "http://identityhub.{participant}.svc.cluster.local:7081"
    credentials_endpoint: str = "/api/identity/v1alpha/participants/{base64Did}/credentials/request"
    timeout: float = 30.0


@dataclass
class AppConfig:
    """Application configuration container."""
    demo_mode: bool
    database_url: str = "sqlite:///.runtime/portal.db"
    log_level: str = "INFO"

    # Credentials are marked ISSUED locally without calling the identity hub
    mock_credentials: bool = False

    keycloak: KeycloakConfig = field(default_factory=KeycloakConfig)
    external_api: ExternalApiConfig = field(default_factory=ExternalApiConfig)
    roles: RoleNames = field(default_factory=RoleNames)


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets."""
    demo_mode = _env_flag("DEMO_MODE")

    database_url = _get_or_generate(
        "DATABASE_URL",
        demo_default="sqlite:///.runtime/portal.db",
        demo_mode=demo_mode,
    )

    keycloak_admin_password = _load_secret_from_file("keycloak_admin_password", "KEYCLOAK_ADMIN_PASSWORD")
    if not keycloak_admin_password:
        keycloak_admin_password = _get_or_generate(
            "KEYCLOAK_ADMIN_PASSWORD",
            demo_default=(os.environ.get("KEYCLOAK_ADMIN_PASSWORD_DEMO") or "admin"),
            demo_mode=demo_mode,
        )

    keycloak = KeycloakConfig(
        base_url=_get_or_generate(
            "KEYCLOAK_URL",
            demo_default="http://127.0.0.1:8080",
            demo_mode=demo_mode,
        ).rstrip("/"),
        realm=os.environ.get("KEYCLOAK_REALM", "edc"),
        admin_realm=os.environ.get("KEYCLOAK_ADMIN_REALM", "master"),
        admin_client_id=os.environ.get("KEYCLOAK_ADMIN_CLIENT_ID", "admin-cli"),
        admin_username=os.environ.get("KEYCLOAK_ADMIN", "admin"),
        admin_password=keycloak_admin_password,
        tenant_claim_key=os.environ.get("KEYCLOAK_TENANT_CLAIM", "tenantName"),
        username_claim_key=os.environ.get("KEYCLOAK_USERNAME_CLAIM", "given_name"),
        token_cache_enabled=_env_flag("KEYCLOAK_TOKEN_CACHE_ENABLED", "true"),
        token_expiry_skew=int(_env_float("KEYCLOAK_TOKEN_EXPIRY_SKEW", 30)),
        timeout=_env_float("KEYCLOAK_TIMEOUT", 10.0),
        client_id=os.environ.get("KEYCLOAK_PORTAL_CLIENT_ID", "edc-provisioning-portal-fe"),
        client_root_url=os.environ.get("KEYCLOAK_PORTAL_ROOT_URL", ""),
        redirect_uris=_env_list("KEYCLOAK_PORTAL_REDIRECT_URIS", []),
        web_origins=_env_list("KEYCLOAK_PORTAL_WEB_ORIGINS", []),
    )

    api_key = _load_secret_from_file("credentials_api_key", "CREDENTIALS_API_KEY") or ""
    if not api_key and demo_mode:
        api_key = "demo-api-key"

    external_api = ExternalApiConfig(
        provisioner_endpoint=_get_or_generate(
            "PROVISIONER_ENDPOINT",
            demo_default="http://localhost:9090/api/v1/participants",
            demo_mode=demo_mode,
        ),
        kube_host=_get_or_generate("KUBE_HOST", demo_default="localhost", demo_mode=demo_mode),
        did_template=os.environ.get("DID_TEMPLATE", "did:web:{participant}"),
        issuer_did=_get_or_generate("ISSUER_DID", demo_default="did:web:issuer", demo_mode=demo_mode),
        holder_pid=_get_or_generate("HOLDER_PID", demo_default="holder-pid", demo_mode=demo_mode),
        api_key=api_key,
        credentials_service_url_template=os.environ.get(
            "CREDENTIALS_SERVICE_URL_TEMPLATE",
            "http://identityhub.{participant}.svc.cluster.local:7081",
        ),
        credentials_endpoint=os.environ.get(
            "CREDENTIALS_ENDPOINT",
            "/api/identity/v1alpha/participants/{base64Did}/credentials/request",
        ),
        timeout=_env_float("EXTERNAL_API_TIMEOUT", 30.0),
    )

    roles = RoleNames(
        admin=os.environ.get("ROLE_ADMIN", "ROLE_ADMIN"),
        admin_tenant=os.environ.get("ROLE_ADMIN_TENANT", "ROLE_ADMIN_TENANT"),
        user_participant=os.environ.get("ROLE_USER_PARTICIPANT", "ROLE_USER_PARTICIPANT"),
    )

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    logger.info("[settings] Mode=%s; realm=%s; provisioner=%s", mode_label, keycloak.realm, external_api.provisioner_endpoint)
    if demo_mode:
        logger.warning("[settings] Demo credentials in use. Do not deploy with these defaults.")

    return AppConfig(
        demo_mode=demo_mode,
        database_url=database_url,
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        mock_credentials=_env_flag("MOCK_CREDENTIALS"),
        keycloak=keycloak,
        external_api=external_api,
        roles=roles,
    )


@lru_cache(maxsize=1)
def get_settings() -> AppConfig:
    """Return the process-wide settings, loading them on first use."""
    return load_settings()


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for CLI and server entry points."""
    logging.basicConfig(
        level=(level or os.environ.get("LOG_LEVEL", "INFO")).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
