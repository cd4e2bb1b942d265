from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError

from authlab.config import Settings
from authlab.logging import get_logger
from authlab.security.context import ROLE_PREFIX, Authentication
from authlab.service.errors import BadCredentialsError, UserNotFoundError

logger = get_logger(__name__)

APPLICATION_USERNAME = "user"
APPLICATION_PASSWORD = "password"
APPLICATION_AUTHORITIES = ("ROLE_USER", "read", "write")


@dataclass
class CredentialRecord:
    username: str
    password_hash: Optional[str]
    authorities: frozenset[str]

    def erase_credentials(self) -> None:
        self.password_hash = None


class PasswordEncoder:
    """argon2id hashing shared by every credential source."""

    def __init__(
        self, *, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4
    ) -> None:
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "PasswordEncoder":
        return cls(
            time_cost=settings.password_hash_time_cost,
            memory_cost=settings.password_hash_memory_cost,
            parallelism=settings.password_hash_parallelism,
        )

    def encode(self, raw_password: str) -> str:
        return self._hasher.hash(raw_password)

    def matches(self, raw_password: str, encoded: Optional[str]) -> bool:
        if not encoded:
            return False
        try:
            return self._hasher.verify(encoded, raw_password)
        except (InvalidHash, VerificationError):
            return False


class UserLookup(Protocol):
    def load(self, username: str) -> CredentialRecord: ...


def _role_authorities(roles: Iterable[str]) -> frozenset[str]:
    return frozenset(
        role if role.startswith(ROLE_PREFIX) else ROLE_PREFIX + role for role in roles
    )


class ApplicationUserLookup:
    """Hardcoded application user standing in for a user repository.

    Every call builds a new record: authentication erases the password hash
    from the record it verified, so a shared instance would break the next
    login.
    """

    def __init__(self, encoder: PasswordEncoder) -> None:
        self._encoder = encoder

    def load(self, username: str) -> CredentialRecord:
        if username != APPLICATION_USERNAME:
            raise UserNotFoundError(username)
        return CredentialRecord(
            username=APPLICATION_USERNAME,
            password_hash=self._encoder.encode(APPLICATION_PASSWORD),
            authorities=frozenset(APPLICATION_AUTHORITIES),
        )


class ManagementUserLookup:
    """Configuration-driven user for the management plane (Basic auth)."""

    def __init__(
        self,
        encoder: PasswordEncoder,
        username: str,
        password: Optional[str],
        roles: Iterable[str],
    ) -> None:
        self._encoder = encoder
        self._username = username
        self._password = password
        self._authorities = _role_authorities(roles)
        if not password:
            logger.warning("management_user_disabled", username=username)

    @classmethod
    def from_settings(cls, encoder: PasswordEncoder, settings: Settings) -> "ManagementUserLookup":
        return cls(
            encoder,
            settings.management_username,
            settings.management_password,
            settings.management_role_list,
        )

    def load(self, username: str) -> CredentialRecord:
        if not self._password or username != self._username:
            raise UserNotFoundError(username)
        return CredentialRecord(
            username=self._username,
            password_hash=self._encoder.encode(self._password),
            authorities=self._authorities,
        )


class AuthenticationProvider:
    """Username/password authentication against one credential source."""

    def __init__(self, lookup: UserLookup, encoder: PasswordEncoder, *, name: str) -> None:
        self.lookup = lookup
        self.encoder = encoder
        self.name = name

    def authenticate(self, username: str, password: str) -> Authentication:
        try:
            record = self.lookup.load(username)
        except UserNotFoundError:
            # Same outcome as a wrong password so usernames cannot be enumerated
            logger.info("authentication_unknown_user", provider=self.name)
            raise BadCredentialsError("Bad credentials") from None
        try:
            if not self.encoder.matches(password, record.password_hash):
                logger.info("authentication_bad_password", provider=self.name)
                raise BadCredentialsError("Bad credentials")
            return Authentication(name=record.username, authorities=record.authorities)
        finally:
            record.erase_credentials()
