"""
SCIM Gateway - Main FastAPI Application

This FastAPI application bridges an upstream identity provider speaking core
SCIM 2.0 to a downstream authorization service that requires an extended
SCIM schema and OAuth2 client-credentials authentication.

Upstream roles are translated into downstream custom roles, and every
provisioned user is tracked in a correlation store so the upstream only ever
sees the gateway's own resource ids.

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- POST /scim/v2/Users - Create (or link) user
- GET /scim/v2/Users - List users (userName eq filter, startIndex/count paging)
- GET /scim/v2/Users/{user_id} - Get user
- PUT /scim/v2/Users/{user_id} - Replace user
- PATCH /scim/v2/Users/{user_id} - Update user (roles, active, other attributes)
- DELETE /scim/v2/Users/{user_id} - Delete user
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import get_settings
from .errors import GatewayError
from .handlers import verify_bearer_token
from .models import SCIMError, SCIMUser, SCIMUserPatch, SCIM_ERROR_SCHEMA
from .services import (
    CorrelationStore,
    DownstreamClient,
    RoleMappingTable,
    StaticTokenProvider,
    TokenManager,
    UserGateway,
)

SCIM_CONTENT_TYPE = "application/scim+json"

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# FastAPI app initialization
app = FastAPI(
    title="SCIM Gateway",
    description="SCIM 2.0 gateway translating upstream roles into downstream custom roles",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Global service instances (initialized on startup)
token_provider = None
correlation_store: Optional[CorrelationStore] = None
role_mappings: Optional[RoleMappingTable] = None
user_gateway: Optional[UserGateway] = None


@app.on_event("startup")
async def startup_event():
    """
    Initialize services on application startup.

    Reads settings and creates service instances.
    """
    global token_provider, correlation_store, role_mappings, user_gateway

    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level)
    logger.info("Starting SCIM Gateway...")

    try:
        if settings.uses_client_credentials:
            token_provider = TokenManager(
                token_url=settings.downstream_token_url,
                client_id=settings.downstream_client_id,
                client_secret=settings.downstream_client_secret,
                scope=settings.downstream_oauth_scope,
                refresh_buffer_seconds=settings.token_refresh_buffer_seconds,
                default_lifetime_seconds=settings.default_token_lifetime_seconds,
                timeout=settings.downstream_timeout_seconds,
            )
        else:
            token_provider = StaticTokenProvider(settings.downstream_access_token)

        correlation_store = CorrelationStore(settings.database_path)
        role_mappings = RoleMappingTable.from_yaml(
            settings.role_mapping_file, strict=settings.strict_role_mapping
        )
        client = DownstreamClient(
            base_url=settings.downstream_scim_base_url,
            token_provider=token_provider,
            timeout=settings.downstream_timeout_seconds,
        )
        user_gateway = UserGateway(
            store=correlation_store,
            client=client,
            role_mappings=role_mappings,
            list_concurrency=settings.list_fanout_concurrency,
        )

        logger.info(
            f"SCIM Gateway services initialized (downstream: {settings.downstream_scim_base_url}, "
            f"role mappings: {len(role_mappings)}, default role: {role_mappings.default_role.value})"
        )

    except Exception as e:
        logger.error(f"Failed to initialize services: {e}")
        raise


@app.on_event("shutdown")
async def shutdown_event():
    """Close the correlation store on shutdown."""
    if correlation_store is not None:
        correlation_store.close()
    logger.info("SCIM Gateway stopped")


def get_gateway() -> UserGateway:
    """FastAPI dependency returning the initialized user gateway."""
    if user_gateway is None:
        raise GatewayError("Gateway services are not initialized")
    return user_gateway


def scim_base_url(request: Request) -> str:
    """Upstream-facing SCIM base URL used for resource locations."""
    public_base_url = get_settings().public_base_url
    if public_base_url:
        return public_base_url
    return f"{str(request.base_url).rstrip('/')}/scim/v2"


def scim_response(content, status_code: int = status.HTTP_200_OK, headers: Optional[dict] = None):
    return JSONResponse(
        content=content,
        status_code=status_code,
        headers=headers,
        media_type=SCIM_CONTENT_TYPE,
    )


def error_response(status_code: int, detail: str, scim_type: Optional[str] = None, headers=None):
    error = SCIMError(
        schemas=[SCIM_ERROR_SCHEMA],
        status=status_code,
        detail=detail,
        scimType=scim_type,
    )
    return scim_response(error.model_dump(exclude_none=True), status_code, headers)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every request and its outcome."""
    start_time = time.monotonic()
    logger.info(f"Request: {request.method} {request.url.path}")

    response = await call_next(request)

    duration_ms = (time.monotonic() - start_time) * 1000
    log = logger.warning if response.status_code >= 400 else logger.info
    log(f"Response: {request.method} {request.url.path} {response.status_code} ({duration_ms:.0f}ms)")
    return response


@app.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Health status and service availability
    """
    services_status = {
        "token_provider": token_provider is not None,
        "correlation_store": correlation_store is not None,
        "role_mappings": role_mappings is not None,
        "user_gateway": user_gateway is not None,
    }

    all_services_ready = all(services_status.values())

    health_response = {
        "status": "healthy" if all_services_ready else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": services_status,
        "downstream_token_cached": bool(token_provider and token_provider.has_valid_token()),
        "version": "1.0.0"
    }

    status_code = 200 if all_services_ready else 503

    if not all_services_ready:
        logger.warning(f"Health check failed - services status: {services_status}")

    return JSONResponse(content=health_response, status_code=status_code)


@app.get("/ready")
async def readiness_check():
    """Readiness check endpoint."""
    ready = user_gateway is not None
    return JSONResponse(
        content={
            "status": "ready" if ready else "starting",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        status_code=200 if ready else 503,
    )


@app.post("/scim/v2/Users", dependencies=[Depends(verify_bearer_token)])
def create_user(user: SCIMUser, request: Request, gateway: UserGateway = Depends(get_gateway)):
    """
    Create a new user.

    If a downstream user with the same userName already exists it is linked
    instead of created, and its custom roles are brought in line with the
    upstream roles.

    Returns:
        SCIMUser: Created user, with a Location header
    """
    resource, location = gateway.create_user(user, scim_base_url(request))
    return scim_response(resource, status.HTTP_201_CREATED, headers={"Location": location})


@app.get("/scim/v2/Users", dependencies=[Depends(verify_bearer_token)])
def list_users(
    request: Request,
    filter: Optional[str] = Query(None),
    startIndex: int = Query(1),
    count: int = Query(100),
    gateway: UserGateway = Depends(get_gateway),
):
    """
    List users.

    Only the filter ``userName eq "<value>"`` is supported; any other filter
    matches nothing.

    Args:
        filter: SCIM filter expression
        startIndex: 1-based starting index for pagination
        count: Number of users to return

    Returns:
        SCIMListResponse: Paginated list of users
    """
    logger.info(f"Listing users: filter={filter}, startIndex={startIndex}, count={count}")
    result = gateway.list_users(scim_base_url(request), filter=filter, start_index=startIndex, count=count)
    logger.info(f"Returned {result['itemsPerPage']} users (total: {result['totalResults']})")
    return scim_response(result)


@app.get("/scim/v2/Users/{user_id}", dependencies=[Depends(verify_bearer_token)])
def get_user(user_id: str, request: Request, gateway: UserGateway = Depends(get_gateway)):
    """Get a user by its gateway id."""
    return scim_response(gateway.get_user(user_id, scim_base_url(request)))


@app.put("/scim/v2/Users/{user_id}", dependencies=[Depends(verify_bearer_token)])
def replace_user(
    user_id: str, user: SCIMUser, request: Request, gateway: UserGateway = Depends(get_gateway)
):
    """Replace a user with the full resource sent by the upstream."""
    return scim_response(gateway.replace_user(user_id, user, scim_base_url(request)))


@app.patch("/scim/v2/Users/{user_id}", dependencies=[Depends(verify_bearer_token)])
def patch_user(
    user_id: str, patch: SCIMUserPatch, request: Request, gateway: UserGateway = Depends(get_gateway)
):
    """
    Update an existing user.

    ``roles`` operations are rewritten into downstream custom role changes,
    ``active`` values are normalized to booleans, and every other operation is
    forwarded unchanged.
    """
    return scim_response(gateway.patch_user(user_id, patch.Operations, scim_base_url(request)))


@app.delete("/scim/v2/Users/{user_id}", dependencies=[Depends(verify_bearer_token)])
def delete_user(user_id: str, gateway: UserGateway = Depends(get_gateway)):
    """
    Delete a user downstream and forget its correlation.

    Returns:
        Empty response with 204 status
    """
    gateway.delete_user(user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Exception handlers
@app.exception_handler(GatewayError)
async def gateway_exception_handler(request: Request, exc: GatewayError):
    """Convert gateway errors to SCIM error format."""
    logger.error(
        f"{request.method} {request.url.path} failed: "
        f"{exc.__class__.__name__} ({exc.status_code}): {exc.detail}"
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return error_response(exc.status_code, exc.detail, exc.scim_type, headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Convert request body validation failures to SCIM 400 errors."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    detail = f"{location}: {first.get('msg')}" if location else str(first.get("msg", "Invalid request"))
    logger.warning(f"{request.method} {request.url.path} rejected: {detail}")
    return error_response(status.HTTP_400_BAD_REQUEST, detail, "invalidValue")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Convert HTTP exceptions (unknown routes, wrong methods) to SCIM error format."""
    return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Convert unhandled exceptions to SCIM error format."""
    logger.exception(f"Unhandled exception: {exc}")
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
