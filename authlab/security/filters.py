from __future__ import annotations

import base64
import binascii
from typing import Optional, Protocol

from prometheus_client import Counter

from authlab.logging import get_logger
from authlab.security.context import Authentication, SecurityContext
from authlab.security.oidc import IdpTokenVerifier
from authlab.service.errors import AuthenticationError, TokenError, UserNotFoundError
from authlab.service.tokens import TokenService
from authlab.service.users import AuthenticationProvider, UserLookup

logger = get_logger(__name__)

BEARER_PREFIX = "Bearer "
BASIC_PREFIX = "Basic "


class AuthenticationFilter(Protocol):
    def apply(
        self, authorization: Optional[str], context: SecurityContext, *, path: str = ""
    ) -> None: ...


def extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header or not header.startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX):].strip()
    return token or None


class BearerTokenFilter:
    """Populate the security context from an ``Authorization: Bearer`` header.

    The filter never rejects a request. A missing header leaves the request
    anonymous; a bad token is logged and counted as a failed login. Whether
    an anonymous request may proceed is decided by the authorization policy.

    When ``idp`` is set, tokens signed by that identity provider carry their
    own roles and skip the local user lookup.
    """

    def __init__(
        self,
        tokens: TokenService,
        users: UserLookup,
        failed_logins: Counter,
        idp: Optional[IdpTokenVerifier] = None,
    ) -> None:
        self.tokens = tokens
        self.users = users
        self.failed_logins = failed_logins
        self.idp = idp

    def apply(
        self,
        authorization: Optional[str],
        context: SecurityContext,
        *,
        path: str = "",
    ) -> None:
        token = extract_bearer(authorization)
        if token is None:
            return
        try:
            self._process_token(token, context)
        except TokenError as exc:
            logger.warning(
                "jwt_processing_failed",
                error_type=type(exc).__name__,
                error=str(exc),
                path=path,
            )
        if not context.is_authenticated:
            self.failed_logins.inc()

    def _process_token(self, token: str, context: SecurityContext) -> None:
        if self.idp is not None and self.idp.accepts(token):
            authentication = self.idp.authenticate(token)
            if not context.is_authenticated:
                context.set_authentication(authentication)
                logger.debug("idp_authenticated", username=authentication.name)
            return
        username = self.tokens.get_subject(token)
        if not username or context.is_authenticated:
            return
        try:
            record = self.users.load(username)
        except UserNotFoundError:
            logger.info("jwt_subject_unknown")
            return
        if self.tokens.is_valid(token, record.username):
            context.set_authentication(
                Authentication(name=record.username, authorities=record.authorities)
            )
            logger.debug("jwt_authenticated", username=record.username)


def decode_basic(header: Optional[str]) -> Optional[tuple[str, str]]:
    """Return ``(username, password)`` from a Basic header, or None if absent.

    Raises:
        AuthenticationError: the header is present but undecodable
    """
    if not header or not header.startswith(BASIC_PREFIX):
        return None
    try:
        decoded = base64.b64decode(header[len(BASIC_PREFIX):].strip(), validate=True).decode(
            "utf-8"
        )
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise AuthenticationError("Failed to decode basic authentication token") from exc
    username, sep, password = decoded.partition(":")
    if not sep:
        raise AuthenticationError("Invalid basic authentication token")
    return username, password


class BasicAuthFilter:
    """HTTP Basic authentication for the management plane.

    Unlike the bearer filter, wrong Basic credentials end the request with a
    401: a machine client that sends credentials expects them to be checked.
    """

    def __init__(self, provider: AuthenticationProvider) -> None:
        self.provider = provider

    def apply(
        self,
        authorization: Optional[str],
        context: SecurityContext,
        *,
        path: str = "",
    ) -> None:
        credentials = decode_basic(authorization)
        if credentials is None or context.is_authenticated:
            return
        username, password = credentials
        authentication = self.provider.authenticate(username, password)
        context.set_authentication(authentication)
        logger.debug("basic_authenticated", username=authentication.name, path=path)
