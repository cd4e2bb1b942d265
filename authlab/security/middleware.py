from __future__ import annotations

from fastapi import Request
from starlette.concurrency import run_in_threadpool

from authlab.api.error_handling import (
    error_response,
    service_error_response,
    unexpected_error_response,
)
from authlab.logging import get_logger
from authlab.security.context import RequestScope, SecurityContext, bind_security_context
from authlab.security.policy import Decision
from authlab.service.errors import AuthenticationError

logger = get_logger(__name__)


async def security_filter_chain(request: Request, call_next):
    """Authenticate and authorize one request before it reaches a route.

    The chain is picked by path, its filter populates a fresh security
    context, and the chain's access rules decide whether the route runs.
    The context is discarded when the response is produced.
    """
    runtime = request.app.state.runtime
    path = request.url.path
    chain = runtime.policy.select(path)

    context = SecurityContext()
    request.state.security_context = context
    scope = RequestScope(
        remote_addr=request.client.host if request.client else None,
        request_uri=path,
        user_agent=request.headers.get("User-Agent"),
        method=request.method,
    )

    with bind_security_context(context, scope):
        try:
            # Credential checks hash passwords; keep them off the event loop
            await run_in_threadpool(
                chain.authentication_filter.apply,
                request.headers.get("Authorization"),
                context,
                path=path,
            )
        except AuthenticationError as exc:
            logger.warning("authentication_rejected", chain=chain.name, path=path)
            return service_error_response(request, exc)

        decision = chain.authorize(path, context)
        if decision is Decision.UNAUTHENTICATED:
            logger.info("access_unauthenticated", chain=chain.name, path=path)
            return error_response(
                request,
                401,
                "Full authentication is required to access this resource.",
            )
        if decision is Decision.FORBIDDEN:
            logger.warning(
                "access_forbidden",
                chain=chain.name,
                path=path,
                principal=context.authentication.name if context.authentication else None,
            )
            return error_response(
                request,
                403,
                "Access denied. You do not have the required permissions to access this resource.",
            )
        try:
            return await call_next(request)
        except Exception as exc:
            # Answer here so the outer middlewares still decorate the 500
            return unexpected_error_response(request, exc)
