"""
Core middleware.
"""

import uuid
from collections.abc import Callable

from django.http import HttpRequest, HttpResponse

from apps.core.logging import bind_contextvars, clear_contextvars, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128


class RequestContextMiddleware:
    """
    Binds a per-request trace_id into structlog contextvars.

    The id is taken from the X-Request-ID header when a proxy supplied one,
    otherwise generated. It is echoed back on the response so client-side
    error reports can be correlated with server logs.
    """

    def __init__(self, get_response: Callable[[HttpRequest], HttpResponse]) -> None:
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        clear_contextvars()

        incoming = request.headers.get(REQUEST_ID_HEADER, "")
        trace_id = incoming[:MAX_REQUEST_ID_LENGTH] if incoming else uuid.uuid4().hex
        request.trace_id = trace_id  # type: ignore[attr-defined]
        bind_contextvars(trace_id=trace_id)

        try:
            response = self.get_response(request)
            logger.info(
                "request_completed",
                method=request.method,
                path=request.path,
                status_code=response.status_code,
            )
        finally:
            clear_contextvars()

        response[REQUEST_ID_HEADER] = trace_id
        return response
