"""Path-scoped authorization chains.

Each :class:`SecurityChain` owns a path matcher, an authentication filter and
an ordered list of access rules. :class:`SecurityPolicy` hands a request to
the first chain whose matcher accepts the path, so chains are mutually
exclusive and the most specific (management) chain must come first.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from authlab.config import Settings
from authlab.security.context import SecurityContext
from authlab.security.filters import AuthenticationFilter


def path_matches(pattern: str, path: str) -> bool:
    """Match ``path`` against an exact path or a ``/prefix/**`` pattern."""
    if pattern == "/**":
        return True
    if pattern.endswith("/**"):
        prefix = pattern[:-3]
        return path == prefix or path.startswith(prefix + "/")
    return path == pattern or path == pattern + "/"


class Access(str, Enum):
    PERMIT_ALL = "permit_all"
    AUTHENTICATED = "authenticated"
    HAS_ROLE = "has_role"


class Decision(str, Enum):
    GRANTED = "granted"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class AccessRule:
    patterns: tuple[str, ...]
    access: Access
    role: Optional[str] = None

    @classmethod
    def permit_all(cls, *patterns: str) -> "AccessRule":
        return cls(patterns=patterns, access=Access.PERMIT_ALL)

    @classmethod
    def authenticated(cls, *patterns: str) -> "AccessRule":
        return cls(patterns=patterns, access=Access.AUTHENTICATED)

    @classmethod
    def has_role(cls, role: str, *patterns: str) -> "AccessRule":
        return cls(patterns=patterns, access=Access.HAS_ROLE, role=role)

    def applies_to(self, path: str) -> bool:
        return any(path_matches(pattern, path) for pattern in self.patterns)

    def decide(self, context: SecurityContext) -> Decision:
        if self.access is Access.PERMIT_ALL:
            return Decision.GRANTED
        authentication = context.authentication
        if authentication is None:
            return Decision.UNAUTHENTICATED
        if self.access is Access.HAS_ROLE and not authentication.has_role(self.role or ""):
            return Decision.FORBIDDEN
        return Decision.GRANTED


@dataclass(frozen=True)
class SecurityChain:
    name: str
    matcher: str
    rules: tuple[AccessRule, ...]
    authentication_filter: AuthenticationFilter

    def matches(self, path: str) -> bool:
        return path_matches(self.matcher, path)

    def authorize(self, path: str, context: SecurityContext) -> Decision:
        for rule in self.rules:
            if rule.applies_to(path):
                return rule.decide(context)
        # Paths no rule mentions are denied to anonymous callers
        return Decision.GRANTED if context.is_authenticated else Decision.UNAUTHENTICATED


class SecurityPolicy:
    def __init__(self, chains: Sequence[SecurityChain]) -> None:
        self.chains = tuple(chains)

    def select(self, path: str) -> SecurityChain:
        for chain in self.chains:
            if chain.matches(path):
                return chain
        raise LookupError(f"no security chain matches {path!r}")


MANAGEMENT_PATTERN = "/actuator/**"
MANAGEMENT_PUBLIC_PATHS = ("/actuator/health", "/actuator/info")
APPLICATION_PUBLIC_PATHS = ("/api/public/info", "/auth/login")


def build_default_policy(
    settings: Settings,
    *,
    management_filter: AuthenticationFilter,
    application_filter: AuthenticationFilter,
) -> SecurityPolicy:
    management = SecurityChain(
        name="management",
        matcher=MANAGEMENT_PATTERN,
        rules=(
            AccessRule.permit_all(*MANAGEMENT_PUBLIC_PATHS),
            AccessRule.has_role(settings.management_required_role, MANAGEMENT_PATTERN),
        ),
        authentication_filter=management_filter,
    )
    application = SecurityChain(
        name="application",
        matcher="/**",
        rules=(
            AccessRule.permit_all(*APPLICATION_PUBLIC_PATHS),
            AccessRule.authenticated("/**"),
        ),
        authentication_filter=application_filter,
    )
    return SecurityPolicy([management, application])
