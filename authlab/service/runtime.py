from __future__ import annotations

import threading
from typing import Optional

from authlab.audit.aspect import AuditAspect
from authlab.config import Settings, get_settings, reset_settings_cache
from authlab.logging import get_logger
from authlab.metrics import Metrics
from authlab.security.filters import BasicAuthFilter, BearerTokenFilter
from authlab.security.oidc import IdpTokenVerifier, KeyResolver
from authlab.security.policy import SecurityPolicy, build_default_policy
from authlab.service.chaos import RandomnessProvider
from authlab.service.tokens import TokenService
from authlab.service.users import (
    ApplicationUserLookup,
    AuthenticationProvider,
    ManagementUserLookup,
    PasswordEncoder,
)

logger = get_logger(__name__)


class Runtime:
    """Holds the service instances one application is built from."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        idp_key_resolver: Optional[KeyResolver] = None,
    ):
        self.settings = settings or get_settings()
        self.metrics = Metrics()
        self.password_encoder = PasswordEncoder.from_settings(self.settings)
        self.tokens = TokenService(self.settings)

        self.application_users = ApplicationUserLookup(self.password_encoder)
        self.management_users = ManagementUserLookup.from_settings(
            self.password_encoder, self.settings
        )
        self.application_provider = AuthenticationProvider(
            self.application_users, self.password_encoder, name="application"
        )
        self.management_provider = AuthenticationProvider(
            self.management_users, self.password_encoder, name="management"
        )

        self.idp = IdpTokenVerifier.from_settings(self.settings, key_resolver=idp_key_resolver)
        self.bearer_filter = BearerTokenFilter(
            self.tokens,
            self.application_users,
            self.metrics.failed_logins,
            idp=self.idp,
        )
        self.basic_filter = BasicAuthFilter(self.management_provider)
        self.policy: SecurityPolicy = build_default_policy(
            self.settings,
            management_filter=self.basic_filter,
            application_filter=self.bearer_filter,
        )

        self.audit = AuditAspect(self.metrics)
        self.randomness = RandomnessProvider()

        logger.info(
            "runtime_initialized",
            token_validity_minutes=self.settings.token_validity_minutes,
            management_enabled=bool(self.settings.management_password),
            chaos_enabled=self.settings.enable_chaos,
            idp_issuer=self.idp.issuer if self.idp else None,
        )


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Return the process-wide runtime, creating it on first use."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests(settings: Optional[Settings] = None) -> Runtime:
    """Rebuild the runtime singleton from the current environment."""
    global runtime
    with _runtime_lock:
        reset_settings_cache()
        runtime = Runtime(settings)
        return runtime
