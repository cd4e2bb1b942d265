"""Request-scoped security state.

A :class:`SecurityContext` is created empty for every request by the security
middleware, attached to ``request.state`` and bound into task-local context
variables for the duration of that request only. Code running outside a
request (background jobs, tests) can bind its own context with
:func:`bind_security_context`.
"""

from __future__ import annotations

import contextlib
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Iterator, Optional

ROLE_PREFIX = "ROLE_"


@dataclass(frozen=True)
class Authentication:
    name: str
    authorities: frozenset[str] = field(default_factory=frozenset)

    def has_authority(self, authority: str) -> bool:
        return authority in self.authorities

    def has_role(self, role: str) -> bool:
        if not role.startswith(ROLE_PREFIX):
            role = ROLE_PREFIX + role
        return role in self.authorities

    @property
    def sorted_authorities(self) -> list[str]:
        return sorted(self.authorities)


class SecurityContext:
    """Holds at most one authenticated principal for one request."""

    def __init__(self) -> None:
        self._authentication: Optional[Authentication] = None

    @property
    def authentication(self) -> Optional[Authentication]:
        return self._authentication

    @property
    def is_authenticated(self) -> bool:
        return self._authentication is not None

    def set_authentication(self, authentication: Authentication) -> None:
        if self._authentication is not None:
            raise RuntimeError("security context is already populated")
        self._authentication = authentication

    def clear(self) -> None:
        self._authentication = None


@dataclass(frozen=True)
class RequestScope:
    """Request metadata the audit layer may read."""

    remote_addr: Optional[str]
    request_uri: str
    user_agent: Optional[str]
    method: str = "GET"


_security_context_var: ContextVar[Optional[SecurityContext]] = ContextVar(
    "security_context", default=None
)
_request_scope_var: ContextVar[Optional[RequestScope]] = ContextVar(
    "request_scope", default=None
)


def current_security_context() -> Optional[SecurityContext]:
    return _security_context_var.get()


def current_authentication() -> Optional[Authentication]:
    ctx = _security_context_var.get()
    return ctx.authentication if ctx is not None else None


def current_request_scope() -> Optional[RequestScope]:
    return _request_scope_var.get()


@contextlib.contextmanager
def bind_security_context(
    context: SecurityContext, scope: Optional[RequestScope] = None
) -> Iterator[SecurityContext]:
    """Make ``context`` (and optionally ``scope``) current until the block exits."""
    ctx_token = _security_context_var.set(context)
    scope_token = _request_scope_var.set(scope)
    try:
        yield context
    finally:
        _request_scope_var.reset(scope_token)
        _security_context_var.reset(ctx_token)
