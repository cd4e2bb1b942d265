"""Bearer tokens issued by an external OpenID Connect provider.

Tokens signed by the provider (RS256 by default) are verified against its
published JWKS; the roles Keycloak nests under ``realm_access`` become
``ROLE_`` authorities. Tokens signed with the local HS256 key never match
the accepted algorithms and stay on the local validation path.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional, Sequence

import jwt

from authlab.config import Settings
from authlab.logging import get_logger
from authlab.security.context import ROLE_PREFIX, Authentication
from authlab.service.errors import (
    TokenError,
    TokenExpiredError,
    TokenFormatError,
    TokenSignatureError,
)

logger = get_logger(__name__)

DEFAULT_ALGORITHMS = ("RS256",)
# Keycloak publishes its keys here, relative to the realm issuer
KEYCLOAK_CERTS_PATH = "/protocol/openid-connect/certs"

KeyResolver = Callable[[str], Any]


def realm_access_authorities(claims: Mapping[str, Any]) -> frozenset[str]:
    """Authorities for the realm roles in ``claims["realm_access"]["roles"]``.

    A missing or empty ``realm_access`` claim grants nothing.
    """
    realm_access = claims.get("realm_access")
    if not isinstance(realm_access, Mapping) or not realm_access:
        return frozenset()
    roles = realm_access.get("roles")
    if not isinstance(roles, (list, tuple)):
        return frozenset()
    return frozenset(ROLE_PREFIX + role for role in roles if isinstance(role, str) and role)


def principal_name(claims: Mapping[str, Any]) -> Optional[str]:
    name = claims.get("preferred_username") or claims.get("sub")
    return name if isinstance(name, str) and name else None


class IdpTokenVerifier:
    def __init__(
        self,
        issuer: str,
        jwks_url: str,
        *,
        audience: Optional[str] = None,
        algorithms: Sequence[str] = DEFAULT_ALGORITHMS,
        key_resolver: Optional[KeyResolver] = None,
    ) -> None:
        self.issuer = issuer
        self.jwks_url = jwks_url
        self.audience = audience
        self.algorithms = list(algorithms)
        if key_resolver is None:
            jwk_client = jwt.PyJWKClient(jwks_url, cache_keys=True)

            def key_resolver(token: str) -> Any:
                return jwk_client.get_signing_key_from_jwt(token).key

        self._resolve_key = key_resolver

    @classmethod
    def from_settings(
        cls, settings: Settings, key_resolver: Optional[KeyResolver] = None
    ) -> Optional["IdpTokenVerifier"]:
        if not settings.oidc_issuer_uri:
            return None
        issuer = settings.oidc_issuer_uri.rstrip("/")
        jwks_url = settings.oidc_jwks_uri or issuer + KEYCLOAK_CERTS_PATH
        return cls(
            issuer,
            jwks_url,
            audience=settings.oidc_audience,
            key_resolver=key_resolver,
        )

    def accepts(self, token: str) -> bool:
        """True when ``token`` is signed with an algorithm this provider uses."""
        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError:
            return False
        return header.get("alg") in self.algorithms

    def verify(self, token: str) -> dict[str, Any]:
        """Return the verified claims of ``token``.

        Raises:
            TokenExpiredError: ``exp`` is not in the future
            TokenSignatureError: the signature does not match the provider key
            TokenFormatError: the token cannot be decoded
            TokenError: any other rejected claim (issuer, audience, key lookup)
        """
        try:
            return jwt.decode(
                token,
                self._resolve_key(token),
                algorithms=self.algorithms,
                issuer=self.issuer,
                audience=self.audience,
                options={
                    "require": ["exp", "iss"],
                    "verify_aud": self.audience is not None,
                },
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpiredError("token expired") from exc
        except jwt.InvalidSignatureError as exc:
            raise TokenSignatureError("signature mismatch") from exc
        except jwt.DecodeError as exc:
            raise TokenFormatError("malformed token") from exc
        except jwt.PyJWTError as exc:
            raise TokenError(f"token rejected: {type(exc).__name__}") from exc

    def authenticate(self, token: str) -> Authentication:
        claims = self.verify(token)
        name = principal_name(claims)
        if name is None:
            raise TokenFormatError("token has no subject")
        authentication = Authentication(name=name, authorities=realm_access_authorities(claims))
        logger.debug("idp_token_verified", username=name, issuer=self.issuer)
        return authentication
