"""Request-id, timing and API-key middleware."""

import hmac
import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _client(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id and logs method, path, status and duration.

    An incoming ``X-Request-ID`` is reused; otherwise a short id is
    generated. The id is exposed on ``request.state.request_id`` and echoed
    in the response.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]
        request.state.request_id = request_id
        started = time.perf_counter()

        response = await call_next(request)

        elapsed = time.perf_counter() - started
        logger.info(
            "[%s] %s %s -> %d in %.3fs (client=%s)",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            elapsed,
            _client(request),
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Process-Time"] = f"{elapsed:.3f}"
        return response


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Requires the configured key as ``Authorization: Bearer`` or ``X-API-Key``.

    Health probes and the OpenAPI docs stay open.
    """

    open_prefixes = ("/health", "/docs", "/redoc", "/openapi.json")

    def __init__(self, app, api_key: str):
        super().__init__(app)
        self.api_key = api_key

    def _provided_key(self, request: Request) -> str:
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer "):
            return auth[len("Bearer "):]
        return request.headers.get("X-API-Key", "")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path.startswith(self.open_prefixes):
            return await call_next(request)

        provided = self._provided_key(request)
        if provided and hmac.compare_digest(provided, self.api_key):
            return await call_next(request)

        logger.warning("Rejected %s %s without a valid API key (client=%s)", request.method, request.url.path, _client(request))
        return JSONResponse(
            status_code=401,
            content={"error": "Unauthorized", "detail": "Invalid or missing API key"},
        )
