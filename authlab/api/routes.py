# No postponed annotations here: audited handlers are wrappers whose
# __globals__ belong to the audit module, so FastAPI cannot resolve string hints.

from fastapi import APIRouter, Depends

from authlab.api.schemas import ApiResponse, LoginRequest, LoginResponse
from authlab.logging import get_logger
from authlab.security.context import Authentication
from authlab.security.dependencies import check_role, get_authentication
from authlab.service.chaos import flaky_request
from authlab.service.runtime import Runtime

logger = get_logger(__name__)

PUBLIC_MESSAGE = "This is PUBLIC information. Anyone can see this."


def create_router(runtime: Runtime) -> APIRouter:
    """Application routes bound to one runtime.

    The audit wrapper is applied here, where the operations are registered,
    so the same handler functions stay plain callables.
    """
    router = APIRouter()
    audit = runtime.audit
    metrics = runtime.metrics

    @router.post("/auth/login", response_model=LoginResponse, tags=["auth"])
    def login(body: LoginRequest) -> LoginResponse:
        # Sync handler: argon2 verification runs in the threadpool
        authentication = runtime.application_provider.authenticate(
            body.username, body.password
        )
        token = runtime.tokens.generate(
            authentication.name, authentication.sorted_authorities
        )
        metrics.successful_logins.inc()
        logger.info("login_succeeded", username=authentication.name)
        return LoginResponse(
            token=token,
            expires_in=runtime.settings.token_validity_minutes * 60,
        )

    @router.get("/api/public/info", response_model=ApiResponse, tags=["api"])
    async def public_info() -> ApiResponse:
        return ApiResponse(message=PUBLIC_MESSAGE)

    @router.get("/api/secure/data", response_model=ApiResponse, tags=["api"])
    @audit.auditable("api.secure_data")
    async def secure_data(
        authentication: Authentication = Depends(get_authentication),
    ) -> ApiResponse:
        metrics.secure_requests_total.labels(endpoint="secure").inc()
        return ApiResponse(
            message=(
                f"This is SECURE data for user: {authentication.name}. "
                "You should only see this if you are authenticated."
            )
        )

    @router.get("/api/secure/admin", response_model=ApiResponse, tags=["api"])
    @audit.auditable("api.admin_data")
    async def admin_data(
        authentication: Authentication = Depends(get_authentication),
    ) -> ApiResponse:
        check_role(authentication, "ADMIN")
        metrics.secure_requests_total.labels(endpoint="admin").inc()
        return ApiResponse(
            message=(
                f"This is ADMIN-ONLY data for user: {authentication.name}. "
                "You must have the 'ADMIN' role to see this."
            )
        )

    return router


def create_chaos_router(runtime: Runtime) -> APIRouter:
    router = APIRouter(prefix="/demo", tags=["demo"])

    @router.get("/flaky-request", response_model=ApiResponse)
    async def flaky() -> ApiResponse:
        return ApiResponse(message=await flaky_request(runtime.randomness))

    return router
