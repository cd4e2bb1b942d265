from __future__ import annotations

import os
import secrets
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from authlab.logging import get_logger

logger = get_logger(__name__)

# HS256 keys shorter than the hash output weaken the MAC
MIN_JWT_SECRET_BYTES = 32


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the resource server and its outbound client."""

    jwt_secret: str = env_field(None, "JWT_SECRET", validate_default=True)
    token_validity_minutes: int = env_field(
        60,
        "TOKEN_VALIDITY_MINUTES",
        gt=0,
        description="Lifetime of issued bearer tokens",
    )
    # Management plane (Basic auth on /actuator/**)
    management_username: str = env_field("actuator", "ACTUATOR_USERNAME")
    management_password: str | None = env_field(
        None,
        "ACTUATOR_PASSWORD",
        description="Management user password; management login is disabled when unset",
    )
    management_roles: str = env_field(
        "ACTUATOR_ADMIN",
        "ACTUATOR_ROLES",
        description="Comma-separated roles granted to the management user",
    )
    management_required_role: str = env_field(
        "ACTUATOR_ADMIN", "MANAGEMENT_REQUIRED_ROLE"
    )
    enable_chaos: bool = env_field(
        False,
        "ENABLE_CHAOS",
        description="Register the non-deterministic /demo endpoints",
    )
    # argon2id cost parameters for credential records
    password_hash_time_cost: int = env_field(3, "PASSWORD_HASH_TIME_COST", ge=1)
    password_hash_memory_cost: int = env_field(65536, "PASSWORD_HASH_MEMORY_COST", ge=8)
    password_hash_parallelism: int = env_field(4, "PASSWORD_HASH_PARALLELISM", ge=1)
    # Outbound service-to-service calls (client credentials grant)
    resource_server_url: str = env_field("http://localhost:8081", "RESOURCE_SERVER_URL")
    oauth_token_url: str | None = env_field(None, "OAUTH_TOKEN_URL")
    oauth_client_id: str | None = env_field(None, "OAUTH_CLIENT_ID")
    oauth_client_secret: str | None = env_field(None, "OAUTH_CLIENT_SECRET")
    oauth_scope: str | None = env_field(None, "OAUTH_SCOPE")
    http_timeout_seconds: float = env_field(10.0, "HTTP_TIMEOUT_SECONDS", gt=0)
    # Tokens from an external OpenID Connect provider; disabled when no issuer is set
    oidc_issuer_uri: str | None = env_field(None, "OIDC_ISSUER_URI")
    oidc_jwks_uri: str | None = env_field(
        None,
        "OIDC_JWKS_URI",
        description="JWKS endpoint; defaults to the Keycloak certs path under the issuer",
    )
    oidc_audience: str | None = env_field(None, "OIDC_AUDIENCE")
    build_sha: str = env_field("dev", "BUILD_SHA")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("jwt_secret", mode="before")
    @classmethod
    def _ensure_jwt_secret(cls, value: str | None) -> str:
        if not value:
            # Tokens signed with a generated key do not survive a restart
            logger.warning(
                "jwt_secret_generated",
                message="JWT_SECRET not set; issued tokens are only valid for this process",
            )
            return secrets.token_urlsafe(64)
        if len(value.encode("utf-8")) < MIN_JWT_SECRET_BYTES:
            raise ValueError(
                f"JWT_SECRET must be at least {MIN_JWT_SECRET_BYTES} bytes long"
            )
        return value

    @property
    def management_role_list(self) -> list[str]:
        return [role.strip() for role in self.management_roles.split(",") if role.strip()]


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
