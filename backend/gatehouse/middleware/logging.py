"""
Gatehouse — Request Logging Middleware
=======================================

What:  One access-log line per request on the `gatehouse.access` logger.
Why:   Besides method, path and status, the line names the acting user and the
       resolved context, which is what tenancy and authorization issues are
       debugged from.
How:   Times the downstream call, then reads the RequestState the lifecycle
       middleware left on `request.state` (if any).

Log level policy:
    5xx → ERROR, 4xx → WARNING, everything else → INFO
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from gatehouse.middleware.request_id import request_id_var

logger = logging.getLogger("gatehouse.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        # Health probes run every few seconds
        if path == "/health":
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        rid = request_id_var.get("")

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        state = getattr(request.state, "lifecycle", None)
        user_id = state.current_user_id if state is not None else None
        context = state.context.asset_string if state is not None and state.context is not None else "-"

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] user=%s context=%s from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            user_id if user_id is not None else "-",
            context,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "user_id": user_id,
                "context": context,
                "client_ip": client_ip,
            },
        )
        return response
