from __future__ import annotations

from fastapi import Request

from authlab.security.context import Authentication
from authlab.service.errors import AuthenticationError, AuthorizationDeniedError


def get_authentication(request: Request) -> Authentication:
    context = getattr(request.state, "security_context", None)
    authentication = context.authentication if context is not None else None
    if authentication is None:
        raise AuthenticationError("Full authentication is required to access this resource.")
    return authentication


def check_role(authentication: Authentication, role: str) -> Authentication:
    """Raise unless ``authentication`` holds ``role``.

    Called inside audited operations so that a denial is recorded as a
    failed call of that operation.
    """
    if not authentication.has_role(role):
        raise AuthorizationDeniedError(f"Access Denied: role {role} required")
    return authentication
