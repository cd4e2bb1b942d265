from __future__ import annotations

from typing import Optional


class TokenError(Exception):
    """Base class for bearer token failures.

    Token errors never reach the HTTP layer directly: the authentication
    filter logs them and lets the request continue unauthenticated.
    """


class TokenFormatError(TokenError):
    """Token is not a well-formed three-part compact serialization."""


class TokenSignatureError(TokenError):
    """Token signature does not verify against the configured key."""


class TokenExpiredError(TokenError):
    """Token expiry is not in the future."""


class UserNotFoundError(Exception):
    """A user lookup found no identity for the requested username."""

    def __init__(self, username: str) -> None:
        super().__init__(f"user not found: {username}")
        self.username = username


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries the HTTP status code the error translation layer
    responds with; ``message`` is safe to show to clients.
    """

    status_code: int = 400

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail or {}


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401


class BadCredentialsError(AuthenticationError):
    """Username/password pair did not verify (401)."""
    pass


class AuthorizationDeniedError(ServiceError):
    """Authenticated principal lacks the required authority (403)."""
    status_code = 403


class UpstreamAuthError(ServiceError):
    """The OAuth2 token endpoint refused or failed the client credentials grant."""
    status_code = 502


class ResourceServerError(ServiceError):
    """A service-to-service call returned a non-success status."""
    status_code = 502

    def __init__(self, message: str, *, upstream_status: int, body: str = "") -> None:
        super().__init__(message, detail={"upstream_status": upstream_status})
        self.upstream_status = upstream_status
        self.body = body


__all__ = [
    "TokenError",
    "TokenFormatError",
    "TokenSignatureError",
    "TokenExpiredError",
    "UserNotFoundError",
    "ServiceError",
    "AuthenticationError",
    "BadCredentialsError",
    "AuthorizationDeniedError",
    "UpstreamAuthError",
    "ResourceServerError",
]
