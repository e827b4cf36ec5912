"""
Gatehouse — Page View Follow-up Route
======================================

What:  POST /page_views/{page_view_id}
Why:   The browser reports how long the user interacted with a page after
       the page itself was served. The report must amend the original view,
       never create a second one.
How:   The handler only moves the path id and form fields into the request
       parameters; TelemetryRecorder merges them into the stored view when
       the lifecycle finishes. Clients send it as XHR with X-CSRF-Token.
"""

from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Request
from starlette.responses import Response

from gatehouse.dependencies import get_request_state
from gatehouse.state import RequestState

router = APIRouter(tags=["Telemetry"])

FOLLOW_UP_FIELDS = ("interaction_seconds", "page_view_contributed")


@router.post("/page_views/{page_view_id}", status_code=204, summary="Amend a page view")
async def update_page_view(
    request: Request,
    page_view_id: str,
    state: RequestState = Depends(get_request_state),
) -> Response:
    state.params["page_view_id"] = page_view_id
    if request.headers.get("content-type", "").startswith("application/x-www-form-urlencoded"):
        form = dict(parse_qsl((await request.body()).decode("utf-8"), keep_blank_values=True))
        for field in FOLLOW_UP_FIELDS:
            if field in form:
                state.params[field] = form[field]
    state.page_view_update = True
    return Response(status_code=204)
