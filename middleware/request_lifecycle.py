"""
Per-request logging context for HTTP traffic.

Each request gets a short id (echoed back as X-Request-ID) and, when a valid
Bearer token is present, the caller's user id in the logging context.
WebSocket frames bypass this; the gateway sets its own connection context.
"""

import time
import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response, JSONResponse
from logging_config import get_logger, request_id_var, user_id_var
from routes.deps import verify_token

logger = get_logger("http")

BEARER = "bearer "


def _caller(request: Request) -> str:
    header = request.headers.get("authorization", "")
    if header.lower().startswith(BEARER):
        return verify_token(header[len(BEARER):]) or "-"
    return "-"


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)


class RequestLifecycleMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = uuid.uuid4().hex[:8]
        request_id_var.set(request_id)
        user_id_var.set(_caller(request))

        route = f"{request.method} {request.url.path}"
        started = time.perf_counter()
        logger.debug(f"{route} started", extra={"data": {"query": dict(request.query_params) or None}})

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                f"{route} crashed after {_elapsed_ms(started)}ms: {exc}",
                exc_info=True,
                extra={"data": {"duration_ms": _elapsed_ms(started)}},
            )
            response = JSONResponse(status_code=500, content={"detail": "Internal server error", "request_id": request_id})
        else:
            level = logger.info if response.status_code < 400 else logger.warning
            level(
                f"{route} -> {response.status_code}",
                extra={"data": {"status": response.status_code, "duration_ms": _elapsed_ms(started)}},
            )

        response.headers["X-Request-ID"] = request_id
        return response
