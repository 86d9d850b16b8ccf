"""Low-level HTTP client for Keycloak Admin API.

Handles authentication, token caching, and HTTP operations.
"""
from __future__ import annotations
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

import requests

from .exceptions import KeycloakAPIError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10
DEFAULT_EXPIRY_SKEW = 30


class TokenCache:
    """Thread-safe holder for the admin access token.

    The token is reused until ``expires_in - skew`` seconds after it was
    fetched. ``invalidate()`` forces the next caller to fetch a new one.
    """

    def __init__(self, skew: int = DEFAULT_EXPIRY_SKEW, clock: Callable[[], float] = time.monotonic):
        self.skew = skew
        self._clock = clock
        self._lock = threading.Lock()
        self._token: Optional[str] = None
        self._expires_at: float = 0.0

    def get(self, fetch: Callable[[], Tuple[str, int]]) -> str:
        """Return the cached token, calling ``fetch`` when missing or stale.

        Args:
            fetch: Callable returning ``(access_token, expires_in)``

        Returns:
            Access token
        """
        with self._lock:
            if self._token and self._clock() < self._expires_at:
                return self._token
            token, expires_in = fetch()
            self._token = token
            self._expires_at = self._clock() + max(int(expires_in) - self.skew, 0)
            return token

    def invalidate(self) -> None:
        with self._lock:
            self._token = None
            self._expires_at = 0.0

    @property
    def is_valid(self) -> bool:
        with self._lock:
            return bool(self._token) and self._clock() < self._expires_at


class KeycloakClient:
    """HTTP client for Keycloak Admin API with cached admin token.

    Features:
    - Password-grant admin token from the admin realm (``admin-cli``)
    - Token reuse through a shared TokenCache, invalidated on 401
    - Centralized error handling

    Usage:
        client = KeycloakClient("http://keycloak:8080", "admin", "password")
        response = client.get("/admin/realms/edc/users", params={"username": "alice"})
    """

    def __init__(
        self,
        base_url: str,
        admin_username: str,
        admin_password: str,
        *,
        admin_realm: str = "master",
        admin_client_id: str = "admin-cli",
        timeout: float = REQUEST_TIMEOUT,
        token_cache: Optional[TokenCache] = None,
    ):
        """Initialize Keycloak client.

        Args:
            base_url: Keycloak base URL
            admin_username: Admin user in the admin realm
            admin_password: Admin password
            admin_realm: Realm holding the admin user (default: master)
            admin_client_id: Client used for the password grant
            timeout: Per-request timeout in seconds
            token_cache: Cache to share across clients; None disables caching
        """
        self.base_url = base_url.rstrip("/")
        self.admin_username = admin_username
        self.admin_password = admin_password
        self.admin_realm = admin_realm
        self.admin_client_id = admin_client_id
        self.timeout = timeout
        self.token_cache = token_cache

    @classmethod
    def from_config(cls, cfg, token_cache: Optional[TokenCache] = None) -> "KeycloakClient":
        """Build a client from a ``KeycloakConfig``."""
        if token_cache is None and cfg.token_cache_enabled:
            token_cache = TokenCache(skew=cfg.token_expiry_skew)
        return cls(
            cfg.base_url,
            cfg.admin_username,
            cfg.admin_password,
            admin_realm=cfg.admin_realm,
            admin_client_id=cfg.admin_client_id,
            timeout=cfg.timeout,
            token_cache=token_cache,
        )

    def get_token(self) -> str:
        """Return an admin access token, from cache when possible."""
        if self.token_cache is None:
            token, _ = self._fetch_admin_token()
            return token
        return self.token_cache.get(self._fetch_admin_token)

    def _fetch_admin_token(self) -> Tuple[str, int]:
        """Obtain an admin token via direct access grant."""
        url = f"{self.base_url}/realms/{self.admin_realm}/protocol/openid-connect/token"
        data = {
            "grant_type": "password",
            "client_id": self.admin_client_id,
            "username": self.admin_username,
            "password": self.admin_password,
        }
        resp = requests.post(url, data=data, timeout=self.timeout)
        if resp.status_code != 200:
            logger.error("[keycloak] Unable to obtain admin token: %s", resp.status_code)
            raise KeycloakAPIError(resp.status_code, resp.text, url)
        payload = resp.json()
        return payload["access_token"], int(payload.get("expires_in", 60))

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> requests.Response:
        """Execute GET request with admin authentication."""
        return self._request("GET", path, params=params, **kwargs)

    def post(self, path: str, json: Any = None, **kwargs) -> requests.Response:
        """Execute POST request with admin authentication."""
        return self._request("POST", path, json=json, **kwargs)

    def put(self, path: str, json: Any = None, **kwargs) -> requests.Response:
        """Execute PUT request with admin authentication."""
        return self._request("PUT", path, json=json, **kwargs)

    def delete(self, path: str, **kwargs) -> requests.Response:
        """Execute DELETE request with admin authentication."""
        return self._request("DELETE", path, **kwargs)

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        headers = kwargs.pop("headers", {})
        headers["Authorization"] = f"Bearer {self.get_token()}"

        resp = requests.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        self._handle_error(resp)
        return resp

    def _handle_error(self, resp: requests.Response) -> None:
        """Centralized error handling for HTTP responses.

        Args:
            resp: Response object to check

        Raises:
            KeycloakAPIError: If response status indicates error
        """
        if resp.status_code == 401 and self.token_cache is not None:
            self.token_cache.invalidate()
        if resp.status_code >= 400:
            raise KeycloakAPIError(resp.status_code, resp.text, resp.url)
