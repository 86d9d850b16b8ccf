"""Configuration module for the dataspace portal."""
from .settings import (
    AppConfig,
    ExternalApiConfig,
    KeycloakConfig,
    RoleNames,
    configure_logging,
    get_settings,
    load_settings,
)

__all__ = [
    "AppConfig",
    "ExternalApiConfig",
    "KeycloakConfig",
    "RoleNames",
    "configure_logging",
    "get_settings",
    "load_settings",
]
