"""
Gatehouse — Request Lifecycle Middleware
=========================================

What:  Runs the per-request pipeline around every route handler.
Why:   The ordering guarantees (CSRF before resolution, resolution before
       authorization, authorization before telemetry) and the single rescue
       boundary only hold if one component owns the sequence.

Pipeline:
    ┌─ rescue boundary ─────────────────────────────────────────────┐
    │ 1. fresh RequestState on request.state.lifecycle              │
    │ 2. domain root account for the host                           │
    │ 3. CsrfGuard                                                   │
    │ 4. Authenticator                                               │
    │ 5. TelemetryRecorder.set_page_view                             │
    │ 6. route handler (context/feed resolution, PermissionGate)     │
    │ 7. recent activity on the caller's course enrollment           │
    └────────────────────────────────────────────────────────────────┘
    8. TelemetryRecorder.log_page_view   (skipped after a rescue)
    9. response headers: user ids, cache buster, frame options, CSRF token

    Any exception inside the boundary goes to ErrorRescueHandler, whose
    response replaces whatever was in progress. The pending page view of a
    rescued request is never persisted.
"""

import logging

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from gatehouse.config import settings
from gatehouse.dependencies import LifecycleServices
from gatehouse.domain import Course, Membership
from gatehouse.middleware.csrf import form_authenticity_token
from gatehouse.services.permission_gate import NO_CACHE_HEADERS
from gatehouse.state import RequestState

logger = logging.getLogger(__name__)


class LifecycleMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        services: LifecycleServices = request.app.state.services
        state = RequestState.from_request(request)
        request.state.lifecycle = state

        try:
            response = await self._run_pipeline(request, call_next, services, state)
        except Exception as exc:
            response = await services.rescue.handle(request, state, exc)
        else:
            await services.telemetry.log_page_view(state, response)

        self._finish_headers(state, response)
        return response

    async def _run_pipeline(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
        services: LifecycleServices,
        state: RequestState,
    ) -> Response:
        directory = services.directory
        state.domain_root_account = (
            await directory.find_root_account(state.host) or await directory.default_account()
        )

        redirect = await services.csrf.verify(request, state)
        if redirect is not None:
            return redirect

        await services.authenticator.authenticate(request, state)
        services.telemetry.set_page_view(state)

        response = await call_next(request)

        if isinstance(state.context, Course) and isinstance(state.context_membership, Membership):
            await directory.record_recent_activity(state.context_membership)
        return response

    @staticmethod
    def _finish_headers(state: RequestState, response: Response) -> None:
        if state.current_user is not None:
            response.headers.setdefault("X-User-Id", str(state.current_user.id))
        if state.real_current_user is not None:
            response.headers.setdefault("X-Real-User-Id", str(state.real_current_user.id))

        if not (state.cancel_cache_buster or state.is_xhr or state.is_api):
            response.headers.update(NO_CACHE_HEADERS)

        if settings.block_html_frames and not state.embeddable:
            response.headers["X-Frame-Options"] = "SAMEORIGIN"

        if state.resend_csrf_token:
            response.headers[settings.csrf_header] = form_authenticity_token(state.session)
