"""
Gatehouse — Session Routes
===========================

What:  POST /logout
How:   Clears the session; the response carries a fresh X-CSRF-Token so a
       page that stays open can keep posting.
"""

from fastapi import APIRouter, Depends
from starlette.responses import JSONResponse, RedirectResponse, Response

from gatehouse.config import settings
from gatehouse.dependencies import get_request_state
from gatehouse.middleware.csrf import reset_session
from gatehouse.negotiation import Representation
from gatehouse.schemas import SessionResetResponse
from gatehouse.state import RequestState

router = APIRouter(tags=["Sessions"])


@router.post("/logout", response_model=SessionResetResponse, summary="End the session")
async def logout(state: RequestState = Depends(get_request_state)) -> Response:
    reset_session(state)
    state.current_user = None
    if state.representation is Representation.PAGE:
        return RedirectResponse(settings.login_path, status_code=302)
    return JSONResponse(SessionResetResponse().model_dump())
