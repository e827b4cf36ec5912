"""
Gatehouse — Permission Gate
============================

What:  Decides whether a principal may perform any of a set of actions on an
       object, and renders the denial when it may not.
Why:   Every protected route asks the same question; getting the caching or
       the exception handling wrong here means either a stale grant leaking
       into another (context, user) pair or a permission bypass on error.

Algorithm (authorize):
    1. If `obj` is the request's resolved context AND `user` is the current
       user, read the request's permission cache for (context, user), filling
       it with the full permission set on a miss.
    2. Otherwise evaluate `obj` for `user` directly; nothing is cached.
    3. Granted when ANY requested action is true.
    4. Any exception during evaluation is logged and counts as denial.

Denial rendering (render_unauthorized), by representation:
    PAGE     clear crumbs, hide the left side, remember the location on GET,
             try delegated login for anonymous callers, else render
             shared/unauthorized.html (401) with a context-specific message
    ARCHIVE  302 back to the same URL without the format
    JSON     {"status": "unauthorized", "message": ...} (401)
    TEXT     same JSON body (401)
    Every denial carries cache-suppression headers.
"""

import logging
from enum import Enum
from typing import Any, Iterable, Optional
from urllib.parse import urlencode

from pydantic import BaseModel
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response

from gatehouse.domain import Course, Membership, User, utcnow
from gatehouse.negotiation import Representation, strip_format
from gatehouse.services.directory_base import ContextDirectory
from gatehouse.state import RequestState
from gatehouse.templating import templates

logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {
    "Pragma": "no-cache",
    "Cache-Control": "no-cache, no-store, max-age=0, must-revalidate",
}

GENERIC_UNAUTHORIZED = "You are not authorized to perform this action."

UNPUBLISHED_MESSAGES = {
    "course": "This course has not been published by the instructor yet.",
    "account": "This account has not been activated yet.",
    "group": "This group has not been published yet.",
}

NOT_STARTED_MESSAGE = (
    "The course you are trying to access has not started yet.  It will start {date}."
)

QUOTA_MESSAGES = {
    "account": "Account storage quota exceeded",
    "course": "Course storage quota exceeded",
    "group": "Group storage quota exceeded",
    "user": "User storage quota exceeded",
}


class DenialReason(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    EVALUATION_ERROR = "evaluation_error"
    UNPUBLISHED = "unpublished"
    NOT_STARTED = "not_started"


class AuthorizationDecision(BaseModel):
    granted: bool
    reason: Optional[DenialReason] = None

    def __bool__(self) -> bool:
        return self.granted


class PermissionGate:
    def __init__(self, directory: ContextDirectory):
        self.directory = directory

    # ══════════════════════════════════════════════════════════════════════
    # Evaluation
    # ══════════════════════════════════════════════════════════════════════

    async def authorize(
        self,
        state: RequestState,
        obj: Any,
        user: Optional[User],
        actions: Iterable[str],
    ) -> AuthorizationDecision:
        """
        Evaluate `actions` on `obj` for `user` with any-match semantics.

        Args:
            state:   The request's state (resolved context, cache, session)
            obj:     Object whose permissions are checked
            user:    Acting principal, None for anonymous
            actions: One or more action names

        Returns:
            AuthorizationDecision; never raises for evaluation faults.
        """
        actions = [actions] if isinstance(actions, str) else list(actions)
        if obj is None:
            return AuthorizationDecision(granted=False, reason=self._denial_reason(user))

        try:
            if obj == state.context and user == state.current_user:
                rights = await self._cached_rights(state, obj, user)
            else:
                rights = await self.directory.grants_rights(obj, user, state.session, actions)
            granted = any(rights.get(action, False) for action in actions)
        except Exception as e:
            logger.warning(
                "[%s] %s raised an error while granting rights: %r",
                state.request_id,
                getattr(obj, "asset_string", obj),
                e,
            )
            return AuthorizationDecision(granted=False, reason=DenialReason.EVALUATION_ERROR)

        if granted:
            return AuthorizationDecision(granted=True)
        return AuthorizationDecision(granted=False, reason=self._denial_reason(user))

    async def is_authorized(
        self, state: RequestState, obj: Any, user: Optional[User], *actions: str
    ) -> bool:
        decision = await self.authorize(state, obj, user, actions)
        return decision.granted

    async def authorized_action(
        self,
        request: Request,
        state: RequestState,
        obj: Any,
        user: Optional[User],
        *actions: str,
    ) -> Optional[Response]:
        """None when allowed, otherwise the denial response to return."""
        decision = await self.authorize(state, obj, user, actions)
        if decision.granted:
            return None
        return await self.render_unauthorized(request, state, obj)

    async def _cached_rights(self, state: RequestState, obj: Any, user: Optional[User]):
        key = (obj.asset_string, user.id if user else None)
        rights = state.permission_cache.get(key)
        if rights is None:
            rights = await self.directory.grants_rights(obj, user, state.session, None)
            state.permission_cache[key] = rights
        return rights

    @staticmethod
    def _denial_reason(user: Optional[User]) -> DenialReason:
        return DenialReason.FORBIDDEN if user is not None else DenialReason.UNAUTHENTICATED

    # ══════════════════════════════════════════════════════════════════════
    # Denial rendering
    # ══════════════════════════════════════════════════════════════════════

    async def render_unauthorized(
        self, request: Request, state: RequestState, obj: Any = None
    ) -> Response:
        state.show_left_side = False
        state.clear_crumbs()

        if state.representation is Representation.PAGE:
            response = self._render_unauthorized_page(request, state)
        elif state.representation is Representation.ARCHIVE:
            response = RedirectResponse(self._url_without_format(request), status_code=302)
        else:
            response = JSONResponse(
                {"status": "unauthorized", "message": GENERIC_UNAUTHORIZED},
                status_code=401,
            )

        response.headers.update(NO_CACHE_HEADERS)
        return response

    def _render_unauthorized_page(self, request: Request, state: RequestState) -> Response:
        if state.is_get:
            state.store_location()

        if state.current_user is None:
            delegated_url = self.delegated_login_url(state)
            if delegated_url:
                return RedirectResponse(delegated_url, status_code=302)

        message, reason = self.unauthorized_message(state)
        return templates.TemplateResponse(
            request,
            "shared/unauthorized.html",
            {
                "message": message,
                "reason": reason.value if reason else None,
                "is_delegated": self.delegated_login_url(state) is not None,
                "state": state,
            },
            status_code=401,
        )

    def unauthorized_message(self, state: RequestState):
        """Pick the explanation shown on the unauthorized page."""
        context = state.context
        membership = state.context_membership
        if not isinstance(membership, Membership) or context is None:
            return GENERIC_UNAUTHORIZED, None
        if context.kind in UNPUBLISHED_MESSAGES and context.awaiting_publication:
            return UNPUBLISHED_MESSAGES[context.kind], DenialReason.UNPUBLISHED
        if isinstance(context, Course):
            start_date = None
            if membership.state_based_on_date() == "inactive":
                start_date = membership.start_at or context.start_at
            if start_date and start_date > utcnow():
                date = f"{start_date:%b} {start_date.day}, {start_date.year}"
                return NOT_STARTED_MESSAGE.format(date=date), DenialReason.NOT_STARTED
        return GENERIC_UNAUTHORIZED, None

    def delegated_login_url(self, state: RequestState) -> Optional[str]:
        account = state.domain_root_account
        if account is None or not account.delegated_login_url:
            return None
        if "local_login" in state.params:
            return None
        return account.delegated_login_url

    @staticmethod
    def _url_without_format(request: Request) -> str:
        path = strip_format(request.url.path)
        query = [(k, v) for k, v in request.query_params.multi_items() if k != "format"]
        return f"{path}?{urlencode(query)}" if query else path

    # ══════════════════════════════════════════════════════════════════════
    # Storage quota
    # ══════════════════════════════════════════════════════════════════════

    async def quota_exceeded(
        self,
        state: RequestState,
        body_size: int,
        redirect: Optional[str] = None,
    ) -> Optional[Response]:
        """
        Check the resolved context's storage quota.

        Returns:
            None while `body_size` still fits, otherwise the response that
            reports the overrun in the caller's representation.
        """
        if state.context is None:
            return None
        quota = await self.directory.quota_for(state.context)
        if body_size + quota.used <= quota.quota:
            return None

        message = QUOTA_MESSAGES.get(state.context.kind, "Storage quota exceeded")
        logger.info(
            "[%s] Storage quota exceeded for %s (%d + %d > %d)",
            state.request_id, state.context.asset_string, body_size, quota.used, quota.quota,
        )
        if state.representation is Representation.PAGE:
            state.session["flash_error"] = message
            return RedirectResponse(redirect or "/", status_code=302)
        return JSONResponse({"errors": {"base": message}}, status_code=400)
