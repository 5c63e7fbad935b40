"""
Tests for RequestContextMiddleware.
"""

import pytest
from django.http import HttpRequest, HttpResponse
from django.test import RequestFactory
from structlog.contextvars import get_contextvars

from apps.core.middleware import MAX_REQUEST_ID_LENGTH, REQUEST_ID_HEADER, RequestContextMiddleware


class TestRequestContextMiddleware:
    """Tests for per-request trace ids."""

    def test_generates_trace_id(self, request_factory: RequestFactory) -> None:
        seen = {}

        def view(request: HttpRequest) -> HttpResponse:
            seen.update(get_contextvars())
            return HttpResponse("ok")

        request = request_factory.get("/api/v1/health")
        response = RequestContextMiddleware(view)(request)

        assert len(seen["trace_id"]) == 32
        assert response[REQUEST_ID_HEADER] == seen["trace_id"]
        assert request.trace_id == seen["trace_id"]

    def test_uses_incoming_request_id(self, request_factory: RequestFactory) -> None:
        request = request_factory.get("/api/v1/health", HTTP_X_REQUEST_ID="upstream-123")

        response = RequestContextMiddleware(lambda r: HttpResponse("ok"))(request)

        assert response[REQUEST_ID_HEADER] == "upstream-123"

    def test_truncates_long_request_id(self, request_factory: RequestFactory) -> None:
        request = request_factory.get("/api/v1/health", HTTP_X_REQUEST_ID="x" * 500)

        response = RequestContextMiddleware(lambda r: HttpResponse("ok"))(request)

        assert len(response[REQUEST_ID_HEADER]) == MAX_REQUEST_ID_LENGTH

    def test_context_cleared_after_request(self, request_factory: RequestFactory) -> None:
        RequestContextMiddleware(lambda r: HttpResponse("ok"))(request_factory.get("/"))

        assert "trace_id" not in get_contextvars()

    def test_context_cleared_when_view_raises(self, request_factory: RequestFactory) -> None:
        def view(request: HttpRequest) -> HttpResponse:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            RequestContextMiddleware(view)(request_factory.get("/"))

        assert "trace_id" not in get_contextvars()
