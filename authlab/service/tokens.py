from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from authlab.config import Settings
from authlab.logging import get_logger
from authlab.service.errors import (
    TokenError,
    TokenExpiredError,
    TokenFormatError,
    TokenSignatureError,
)

logger = get_logger(__name__)

ALGORITHM = "HS256"
SCOPE_CLAIM = "scope"


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    scope: str
    issued_at: int
    expires_at: int

    @property
    def authorities(self) -> list[str]:
        return self.scope.split() if self.scope else []

    def is_expired(self, now: float) -> bool:
        # The expiry instant itself counts as expired
        return self.expires_at <= now


class TokenService:
    """Issue and verify HS256 bearer tokens.

    The decode step is the verification step: no claim is read from a token
    until its signature has been checked against the configured key.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._key = settings.jwt_secret.encode("utf-8")
        self._validity_seconds = settings.token_validity_minutes * 60
        self._clock = clock or time.time

    def generate(self, subject: str, authorities: Iterable[str]) -> str:
        """Return a signed compact token for ``subject`` carrying ``authorities`` as scope."""
        now = int(self._clock())
        payload = {
            "sub": subject,
            SCOPE_CLAIM: " ".join(authorities),
            "iat": now,
            "exp": now + self._validity_seconds,
        }
        return self._encode_jwt(payload)

    def get_subject(self, token: str) -> str:
        """Return the subject of a correctly signed token.

        Raises:
            TokenFormatError: the token is malformed
            TokenSignatureError: the signature does not verify
        """
        return self.parse(token).subject

    def parse(self, token: str) -> TokenClaims:
        payload = self._decode_jwt(token)
        try:
            return TokenClaims(
                subject=str(payload["sub"]),
                scope=str(payload.get(SCOPE_CLAIM, "")),
                issued_at=int(payload["iat"]),
                expires_at=int(payload["exp"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenFormatError(f"missing or invalid claim: {exc}") from exc

    def verify(self, token: str, expected_subject: str) -> TokenClaims:
        """Like :meth:`is_valid` but raises the specific :class:`TokenError`."""
        claims = self.parse(token)
        if claims.is_expired(self._clock()):
            raise TokenExpiredError("token has expired")
        if claims.subject != expected_subject:
            raise TokenError("token subject does not match")
        return claims

    def is_valid(self, token: str, expected_subject: str) -> bool:
        """Check signature, expiry and subject; never raises."""
        try:
            self.verify(token, expected_subject)
        except TokenSignatureError as exc:
            logger.warning("token_signature_invalid", error=str(exc))
            return False
        except TokenFormatError as exc:
            logger.warning("token_malformed", error=str(exc))
            return False
        except TokenExpiredError:
            logger.warning("token_expired", expected_subject=expected_subject)
            return False
        except TokenError as exc:
            logger.warning(
                "token_subject_mismatch", expected_subject=expected_subject, error=str(exc)
            )
            return False
        return True

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        try:
            return base64.urlsafe_b64decode(segment + padding)
        except (binascii.Error, ValueError) as exc:
            raise TokenFormatError("segment is not valid base64url") from exc

    def _sign(self, signing_input: str) -> str:
        digest = hmac.new(self._key, signing_input.encode("utf-8"), hashlib.sha256).digest()
        return self._encode_segment(digest)

    def _encode_jwt(self, payload: dict[str, Any]) -> str:
        header = {"alg": ALGORITHM, "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def _decode_jwt(self, token: str) -> dict[str, Any]:
        if not isinstance(token, str):
            raise TokenFormatError("token must be a string")
        parts = token.split(".")
        if len(parts) != 3 or not all(parts):
            raise TokenFormatError(f"expected 3 segments, got {len(parts)}")
        header_b64, payload_b64, sig_b64 = parts

        # Reject anything but HS256 to prevent algorithm confusion
        try:
            header = json.loads(self._decode_segment(header_b64))
        except ValueError as exc:
            raise TokenFormatError("header is not valid JSON") from exc
        if not isinstance(header, dict) or header.get("alg") != ALGORITHM:
            raise TokenFormatError("unsupported token algorithm")

        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig.encode("utf-8"), sig_b64.encode("utf-8")):
            raise TokenSignatureError("token signature does not match")

        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except ValueError as exc:
            raise TokenFormatError("payload is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise TokenFormatError("payload is not a JSON object")
        return payload
