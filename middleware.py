"""
Middleware for automatic request logging and timing.
"""

import time
import uuid
import logging
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from logging_service import request_logger

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log every request with timing and metadata."""

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()

        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        client_ip = self._get_client_ip(request)
        user_agent = request.headers.get("user-agent")
        content_length = request.headers.get("content-length")
        request_size = int(content_length) if content_length and content_length.isdigit() else None

        # Route handlers read these and may add error/fallback markers
        request.state.request_id = request_id
        request.state.client_ip = client_ip

        response = await call_next(request)

        response_time_ms = (time.perf_counter() - start_time) * 1000
        response_size = response.headers.get("content-length")

        await request_logger.log_request(
            method=request.method,
            path=str(request.url.path),
            status_code=response.status_code,
            response_time_ms=response_time_ms,
            request_id=request_id,
            client_ip=client_ip,
            user_agent=user_agent,
            request_size=request_size,
            response_size=int(response_size) if response_size and response_size.isdigit() else None,
            success=200 <= response.status_code < 400,
            error_type=getattr(request.state, "error_type", None),
            error_message=getattr(request.state, "error_message", None),
            authority_fallback=getattr(request.state, "authority_fallback", False),
        )

        response.headers["X-Response-Time"] = f"{response_time_ms:.2f}ms"
        response.headers["X-Request-ID"] = request_id

        return response

    def _get_client_ip(self, request: Request) -> Optional[str]:
        """Extract client IP from request headers."""
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            # X-Forwarded-For can contain multiple IPs, take the first one
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()

        if request.client:
            return request.client.host

        return None


def setup_logging_config(level: str = "INFO"):
    """Setup logging configuration for the application."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
        ]
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)  # Reduce uvicorn noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("triage").setLevel(getattr(logging, level.upper(), logging.INFO))
    logging.getLogger("main").setLevel(getattr(logging, level.upper(), logging.INFO))
