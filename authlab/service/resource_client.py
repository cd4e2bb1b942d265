"""Outbound calls to a resource server using the client credentials grant."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

import httpx

from authlab.config import Settings
from authlab.logging import get_logger
from authlab.service.errors import ResourceServerError, UpstreamAuthError

logger = get_logger(__name__)

# Refresh this many seconds before the provider says the token expires
EXPIRY_SKEW_SECONDS = 30
DEFAULT_EXPIRES_IN = 300


class ClientCredentialsTokenProvider:
    """Fetch and cache an access token for this service's own identity.

    The cached token is shared by every caller; concurrent callers that find
    it stale block on one refresh instead of each hitting the token endpoint.
    """

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        scope: Optional[str],
        http: httpx.Client,
        *,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.token_url = token_url
        self.client_id = client_id
        self._client_secret = client_secret
        self.scope = scope
        self._http = http
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._access_token: Optional[str] = None
        self._refresh_at = 0.0

    def get_token(self) -> str:
        with self._lock:
            if self._access_token and self._clock() < self._refresh_at:
                return self._access_token
            self._access_token, self._refresh_at = self._request_token()
            return self._access_token

    def invalidate(self) -> None:
        with self._lock:
            self._access_token = None
            self._refresh_at = 0.0

    def _request_token(self) -> tuple[str, float]:
        form = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self._client_secret,
        }
        if self.scope:
            form["scope"] = self.scope
        try:
            response = self._http.post(
                self.token_url, data=form, headers={"Accept": "application/json"}
            )
        except httpx.HTTPError as exc:
            logger.error("client_credentials_request_failed", error=str(exc))
            raise UpstreamAuthError("Token endpoint unreachable") from exc

        if not response.is_success:
            logger.error(
                "client_credentials_rejected",
                status_code=response.status_code,
                client_id=self.client_id,
            )
            raise UpstreamAuthError(
                "Token endpoint rejected client credentials",
                detail={"upstream_status": response.status_code},
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamAuthError("Token endpoint returned invalid JSON") from exc
        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            raise UpstreamAuthError("Token endpoint response has no access_token")

        try:
            expires_in = int(payload.get("expires_in", DEFAULT_EXPIRES_IN))
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN
        refresh_at = self._clock() + max(expires_in - EXPIRY_SKEW_SECONDS, 0)
        logger.info("client_credentials_token_acquired", expires_in=expires_in)
        return access_token, refresh_at


class ResourceServerClient:
    """Typed calls against the resource server's secured endpoints.

    Use it as a context manager, or call ``close()``, to release an HTTP
    client it created itself. A client passed in by the caller is left open.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: ClientCredentialsTokenProvider,
        http: httpx.Client,
        *,
        owns_http: bool = False,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self._http = http
        self._owns_http = owns_http

    def __enter__(self) -> "ResourceServerClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    @classmethod
    def from_settings(
        cls, settings: Settings, http: Optional[httpx.Client] = None
    ) -> "ResourceServerClient":
        if not (settings.oauth_token_url and settings.oauth_client_id and settings.oauth_client_secret):
            raise ValueError(
                "OAUTH_TOKEN_URL, OAUTH_CLIENT_ID and OAUTH_CLIENT_SECRET must be set"
            )
        owns_http = http is None
        if owns_http:
            http = httpx.Client(timeout=settings.http_timeout_seconds)
        provider = ClientCredentialsTokenProvider(
            settings.oauth_token_url,
            settings.oauth_client_id,
            settings.oauth_client_secret,
            settings.oauth_scope,
            http,
        )
        return cls(settings.resource_server_url, provider, http, owns_http=owns_http)

    def fetch_secure_data(self) -> str:
        return self._get("/api/secure/data")

    def fetch_admin_data(self) -> str:
        return self._get("/api/secure/admin")

    def _get(self, path: str) -> str:
        token = self.token_provider.get_token()
        url = f"{self.base_url}{path}"
        try:
            response = self._http.get(url, headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as exc:
            logger.error("resource_server_unreachable", path=path, error=str(exc))
            raise ResourceServerError(
                "Resource server unreachable", upstream_status=0
            ) from exc

        if response.status_code == 401:
            # A rotated signing key invalidates the cached token
            self.token_provider.invalidate()
        if not response.is_success:
            logger.warning(
                "resource_server_error",
                path=path,
                status_code=response.status_code,
            )
            raise ResourceServerError(
                f"Resource server returned {response.status_code}",
                upstream_status=response.status_code,
                body=response.text,
            )
        return response.text
