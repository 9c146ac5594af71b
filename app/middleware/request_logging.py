"""
Request Logging Middleware

- Assigns a unique request_id to every request
- Sets user_id context from the bearer token subject
- Logs request start & end with timing
"""

import logging
import time

from jose import JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.config import settings
from app.logging_config import (
    generate_request_id,
    organization_id_ctx,
    request_id_ctx,
    user_id_ctx,
)

logger = logging.getLogger("membership.request")


def _extract_user_id(request: Request) -> str:
    """Best-effort subject from the Authorization header; auth itself happens in deps."""
    auth = request.headers.get("authorization", "")
    if not auth.startswith("Bearer "):
        return "-"
    try:
        payload = jwt.decode(
            auth[7:], settings.SECRET_KEY, algorithms=[settings.ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        return "-"
    return str(payload.get("sub", "-"))


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        rid = generate_request_id()
        request_id_ctx.set(rid)
        organization_id_ctx.set("-")
        user_id_ctx.set(_extract_user_id(request))

        method = request.method
        path = request.url.path
        client_ip = request.client.host if request.client else "-"

        logger.info("→ %s %s from %s", method, path, client_ip)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            elapsed = (time.perf_counter() - start) * 1000
            logger.exception("✗ %s %s (%.1fms, unhandled exception)", method, path, elapsed)
            raise

        elapsed = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = rid

        logger.info(
            "← %s %s %d %.1fms",
            method, path, response.status_code, elapsed,
            extra={"status_code": response.status_code, "duration_ms": round(elapsed, 1)},
        )
        return response
