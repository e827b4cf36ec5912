"""
Gatehouse — Error Rescue Handler
=================================

What:  The last-resort boundary. Turns any exception that escaped the
       pipeline or a route handler into a response shaped for the caller.
Why:   Only unexpected faults get here (expected outcomes are rendered where
       they are detected), so every one of them is worth a persisted report
       whose id the user can quote.

State machine:
    handle(exc)
      ├── BuildReport     persist an ErrorReport (exactly once, never raises)
      ├── ClassifyStatus  exception → (HTTP status, category, status label)
      └── Respond         by representation:
            JSON (API)    {"status", "error_report_id", "message"}
                          + WWW-Authenticate for invalid access tokens
            TEXT / XHR    {"errors": {"base": "Unexpected error, ID: <id>"}, "status"}
            PAGE          shared/errors/<label>_message.html, else the 500 page
    If Respond itself raises: a minimal static page, and one more
    BuildReport attempt for the inner fault.

Classification:
    ContextNotFoundError / ContextRequiredError  → 404 not_found
    InvalidAccessTokenError                      → 401 invalid_access_token
    CsrfInvalidError                             → 401, label "AUT"
    other GatehouseError                         → its own status, default
    anything else                                → 500 default
"""

import logging
import traceback
from http import HTTPStatus
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, Response

from gatehouse.exceptions import GatehouseError
from gatehouse.negotiation import Representation
from gatehouse.services.permission_gate import NO_CACHE_HEADERS
from gatehouse.services.telemetry_store import TelemetryStore
from gatehouse.state import RequestState
from gatehouse.templating import template_exists, templates

logger = logging.getLogger(__name__)

API_MESSAGES = {
    "not_found": "The specified resource does not exist.",
    "invalid_access_token": "Invalid access token.",
}
DEFAULT_API_MESSAGE = "An error occurred."

FAILSAFE_PAGE = (
    "<!DOCTYPE html><html><head><title>Error</title></head>"
    "<body><h1>{status} {phrase}</h1>"
    "<p>We're sorry, but something went wrong.</p></body></html>"
)


def classify(exc: BaseException) -> Tuple[int, str, str]:
    """
    Returns:
        (HTTP status, report category, status label shown to browsers)
    """
    if isinstance(exc, GatehouseError):
        status = exc.status_code
        return status, exc.category, exc.status_label or str(status)
    return 500, "default", "500"


def status_phrase(status: int) -> str:
    """404 → 'not_found', 500 → 'internal_server_error'"""
    try:
        return HTTPStatus(status).phrase.lower().replace(" ", "_").replace("-", "_")
    except ValueError:
        return "error"


class ErrorRescueHandler:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def handle(self, request: Request, state: RequestState, exc: BaseException) -> Response:
        status, category, label = classify(exc)
        logger.error(
            "[%s] Rescued %s: %s",
            state.request_id,
            type(exc).__name__,
            exc,
            exc_info=(type(exc), exc, exc.__traceback__),
        )

        report_id = await self.build_report(state, exc, category)
        try:
            response = self._respond(request, state, exc, status, category, label, report_id)
        except Exception as inner:
            logger.error("[%s] Error page failed; serving failsafe", state.request_id, exc_info=True)
            response = HTMLResponse(
                FAILSAFE_PAGE.format(status=status, phrase=HTTPStatus(status).phrase),
                status_code=status,
            )
            await self.build_report(state, inner, "default")

        response.headers.update(NO_CACHE_HEADERS)
        return response

    # ── BuildReport ───────────────────────────────────────────────────────

    async def build_report(
        self, state: RequestState, exc: BaseException, category: str
    ) -> Optional[int]:
        """Persist an ErrorReport; returns its id, or None if even that failed."""
        try:
            async with self.session_factory() as db:
                report = await TelemetryStore(db).create_error_report(
                    category=category,
                    message=str(exc)[:4000],
                    exception_class=type(exc).__name__,
                    backtrace="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
                    url=state.url,
                    user_id=state.current_user_id,
                    user_agent=state.user_agent,
                    request_context_id=state.request_id,
                    account_id=state.domain_root_account.id if state.domain_root_account else None,
                    http_method=state.method,
                    format=state.representation.value,
                )
                await db.commit()
                return report.id
        except Exception:
            logger.error("[%s] Could not store error report", state.request_id, exc_info=True)
            return None

    # ── Respond ───────────────────────────────────────────────────────────

    def _respond(
        self,
        request: Request,
        state: RequestState,
        exc: BaseException,
        status: int,
        category: str,
        label: str,
        report_id: Optional[int],
    ) -> Response:
        if state.is_api or state.representation is Representation.JSON:
            return self._respond_api(status, category, report_id)

        if report_id is not None:
            state.session["last_error_id"] = report_id

        if state.representation is Representation.TEXT or state.is_xhr:
            return JSONResponse(
                {
                    "errors": {"base": f"Unexpected error, ID: {report_id if report_id is not None else 'unknown'}"},
                    "status": label,
                },
                status_code=status,
            )

        template = f"shared/errors/{label[:3]}_message.html"
        if not template_exists(template):
            template = "shared/errors/500_message.html"
        return templates.TemplateResponse(
            request,
            template,
            {
                "status": label,
                "error_report_id": report_id,
                "exception_class": type(exc).__name__,
                "request_id": state.request_id,
            },
            status_code=status,
        )

    @staticmethod
    def _respond_api(status: int, category: str, report_id: Optional[int]) -> JSONResponse:
        body = {"status": status_phrase(status)}
        if report_id is not None:
            body["error_report_id"] = report_id
        body["message"] = API_MESSAGES.get(category, DEFAULT_API_MESSAGE)

        headers = {}
        if category == "invalid_access_token":
            headers["WWW-Authenticate"] = 'Bearer realm="gatehouse"'
        return JSONResponse(body, status_code=status, headers=headers)
