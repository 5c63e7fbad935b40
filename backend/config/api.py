"""
Django Ninja API configuration.
"""

from django.http import HttpRequest, HttpResponse
from ninja import NinjaAPI
from ninja.errors import AuthenticationError, HttpError, ValidationError

from apps.accounts.api import router as auth_router
from apps.core.exceptions import RateLimitExceeded, ServiceError
from apps.core.logging import get_logger
from apps.devices.api import router as devices_router
from apps.passkeys.api import router as passkeys_router

logger = get_logger(__name__)

HTTP_ERROR_CODES = {
    400: "invalid_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    409: "conflict",
    429: "rate_limited",
}

api = NinjaAPI(
    title="Passkey Authentication API",
    version="1.0.0",
    description="Passkey (WebAuthn) registration and sign-in with device recognition.",
    openapi_extra={
        "info": {
            "contact": {"name": "API Support"},
        },
        "tags": [
            {
                "name": "auth",
                "description": "Session inspection and logout",
            },
            {
                "name": "passkeys",
                "description": "Passkey registration, authentication and management",
            },
            {
                "name": "devices",
                "description": "Devices the user has signed in on",
            },
            {
                "name": "health",
                "description": "Service health and readiness checks",
            },
        ],
        "components": {
            "securitySchemes": {
                "bearerAuth": {
                    "type": "http",
                    "scheme": "bearer",
                    "bearerFormat": "JWT",
                    "description": "Session token returned by /auth/authenticate/verify. Browsers receive the same token as the session cookie.",
                }
            }
        },
    },
)


def _error_response(request: HttpRequest, message: str, code: str, status: int) -> HttpResponse:
    return api.create_response(request, {"error": message, "code": code}, status=status)


@api.exception_handler(ServiceError)
def service_error_handler(request: HttpRequest, exc: ServiceError) -> HttpResponse:
    response = _error_response(request, exc.message, exc.code, exc.status_code)
    if isinstance(exc, RateLimitExceeded):
        response["Retry-After"] = str(exc.retry_after)
    return response


@api.exception_handler(ValidationError)
def validation_error_handler(request: HttpRequest, exc: ValidationError) -> HttpResponse:
    logger.info("request_validation_failed", path=request.path, errors=len(exc.errors))
    return _error_response(request, "Invalid request", "invalid_request", 400)


@api.exception_handler(AuthenticationError)
def authentication_error_handler(request: HttpRequest, exc: AuthenticationError) -> HttpResponse:
    return _error_response(request, "Authentication required", "unauthorized", 401)


@api.exception_handler(HttpError)
def http_error_handler(request: HttpRequest, exc: HttpError) -> HttpResponse:
    code = HTTP_ERROR_CODES.get(exc.status_code, "error")
    return _error_response(request, str(exc), code, exc.status_code)


# Register routers
api.add_router("/auth", auth_router)
api.add_router("/auth", passkeys_router)
api.add_router("/devices", devices_router)


@api.get("/health", tags=["health"], operation_id="healthCheck", summary="Health check")
def health_check(request: HttpRequest) -> dict:
    """Health check endpoint for load balancer."""
    return {"status": "ok"}
