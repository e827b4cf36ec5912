"""
Gatehouse — CSRF Guard
=======================

What:  Anti-forgery check for state-changing browser requests.
Why:   Session cookies ride along on cross-site form posts; a per-session
       token the attacker cannot read stops those posts.
How:   Runs once per request inside the lifecycle pipeline, before any
       context is resolved:

         GET / HEAD / OPTIONS or an API path     → skipped
         no token in session, empty session,
           not XHR                               → redirect to login?needs_cookies=1
         form `authenticity_token` or
           X-CSRF-Token header equals the
           session token                         → pass
         otherwise                               → CsrfInvalidError (401 "AUT")

       Form tokens arrive with "+" turned into " " by some clients; spaces
       are turned back before comparing.
"""

import hmac
import logging
import secrets
from typing import Any, MutableMapping, Optional
from urllib.parse import parse_qsl

from starlette.requests import Request
from starlette.responses import RedirectResponse, Response

from gatehouse.config import settings
from gatehouse.exceptions import CsrfInvalidError
from gatehouse.state import RequestState

logger = logging.getLogger(__name__)

SAFE_METHODS = ("GET", "HEAD", "OPTIONS")


def form_authenticity_token(session: MutableMapping[str, Any]) -> str:
    """The session's token, issued on first use."""
    token = session.get(settings.csrf_session_key)
    if not token:
        token = secrets.token_urlsafe(32)
        session[settings.csrf_session_key] = token
    return token


def reset_session(state: RequestState) -> None:
    """Clear the session and send the caller a fresh token with this response."""
    state.session.clear()
    state.resend_csrf_token = True


class CsrfGuard:
    async def verify(self, request: Request, state: RequestState) -> Optional[Response]:
        """
        Returns:
            None to continue, or a redirect for cookie-less browsers.

        Raises:
            CsrfInvalidError: The request's token does not match the session's.
        """
        if state.method in SAFE_METHODS or state.is_api:
            return None

        session = state.session
        if session.get(settings.csrf_session_key) is None and len(session) == 0 and not state.is_xhr:
            logger.info("[%s] Session missing on %s %s; cookies disabled?", state.request_id, state.method, state.path)
            return RedirectResponse(f"{settings.login_path}?needs_cookies=1", status_code=302)

        expected = form_authenticity_token(session)
        candidates = [await self._form_token(request), request.headers.get(settings.csrf_header)]
        if any(c and hmac.compare_digest(c.encode(), expected.encode()) for c in candidates):
            return None

        raise CsrfInvalidError(context={"path": state.path, "method": state.method})

    @staticmethod
    async def _form_token(request: Request) -> Optional[str]:
        if not request.headers.get("content-type", "").startswith("application/x-www-form-urlencoded"):
            return None
        body = await request.body()
        for key, value in parse_qsl(body.decode("latin-1"), keep_blank_values=True):
            if key == settings.csrf_param:
                return value.replace(" ", "+")
        return None
