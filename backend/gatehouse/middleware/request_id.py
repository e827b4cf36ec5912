"""
Gatehouse — Request ID Middleware
==================================

What:  Assigns a correlation id to each request and echoes it in the response.
Why:   Every log line, page view and error report of one request carries the
       same id, so a support ticket quoting it finds everything at once.
How:   Accepts a caller-supplied X-Request-ID or generates a short uuid,
       stores it in a ContextVar and on request.state, returns it in a header.
When:  Outermost Gatehouse middleware; runs before the lifecycle pipeline.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local; concurrent requests on one thread each see their own id
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]

        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = rid
        return response
