"""Middleware for request ids and HTTP error logging."""

import logging
import time
from typing import Callable
from uuid import uuid4

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from imgrelay.core.logging import request_id_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id and logs error responses.

    - 4xx responses: logged at WARN level
    - 5xx responses: logged at ERROR level

    The request body is never read here; uploads stream through untouched.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and log errors.

        Args:
            request: Incoming HTTP request
            call_next: Next middleware/handler in chain

        Returns:
            HTTP response
        """
        start_time = time.time()
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        token = request_id_context.set(request_id)

        try:
            response = await call_next(request)
        finally:
            request_id_context.reset(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        duration_ms = (time.time() - start_time) * 1000

        log_fields = {
            "http_status": response.status_code,
            "method": request.method,
            "path": request.url.path,
            "request_id": request_id,
            "duration_ms": duration_ms,
        }
        if 400 <= response.status_code < 500:
            logger.warning("Client error response", extra=log_fields)
        elif response.status_code >= 500:
            logger.error("Server error response", extra=log_fields)

        return response
