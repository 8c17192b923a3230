"""
Middleware for performance monitoring and observability.
"""

import time
import uuid
import logging
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("fleet_coverage")

MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


class PerformanceMiddleware(BaseHTTPMiddleware):
    """
    Middleware to track request performance and add request IDs.

    Features:
    - Adds X-Request-ID header (uses provided value, the idempotency key, or a new UUID)
    - Tracks request duration
    - Logs request/response details
    - Warns on slow tier changes
    """

    def __init__(self, app: ASGIApp, slow_mutation_ms: float = 250):
        super().__init__(app)
        self.slow_mutation_ms = slow_mutation_ms

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID")
        if not request_id:
            request_id = request.headers.get("X-Idempotency-Key")
            if not request_id:
                request_id = str(uuid.uuid4())

        # Store request ID in request state for access by endpoints
        request.state.request_id = request_id

        start_time = time.time()

        logger.info(
            f"Request started | "
            f"request_id={request_id} | "
            f"method={request.method} | "
            f"path={request.url.path} | "
            f"client={request.client.host if request.client else 'unknown'}"
        )

        try:
            response = await call_next(request)

            duration_ms = (time.time() - start_time) * 1000

            logger.info(
                f"Request completed | "
                f"request_id={request_id} | "
                f"method={request.method} | "
                f"path={request.url.path} | "
                f"status={response.status_code} | "
                f"duration_ms={duration_ms:.2f}"
            )

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time-Ms"] = f"{duration_ms:.2f}"

            # Tier changes hold a row lock for their whole duration
            if duration_ms > self.slow_mutation_ms and request.method in MUTATING_METHODS:
                logger.warning(
                    f"Slow insurance change | "
                    f"request_id={request_id} | "
                    f"path={request.url.path} | "
                    f"duration_ms={duration_ms:.2f} | "
                    f"threshold_ms={self.slow_mutation_ms:.0f}"
                )

            return response

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000

            logger.error(
                f"Request failed | "
                f"request_id={request_id} | "
                f"method={request.method} | "
                f"path={request.url.path} | "
                f"duration_ms={duration_ms:.2f} | "
                f"error={str(e)}"
            )
            raise


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware to inject request context into logs.

    Makes request_id available to all downstream handlers.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not hasattr(request.state, "request_id"):
            request.state.request_id = request.headers.get(
                "X-Request-ID",
                str(uuid.uuid4())
            )

        response = await call_next(request)
        return response
