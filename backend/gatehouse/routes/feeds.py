"""
Gatehouse — Token Feed Routes
==============================

What:  GET /feeds/calendars/{feed_code}[.ics|.json]
Why:   Calendar clients cannot log in; the feed code in the URL is the
       credential.
How:   TokenFeedResolver turns the code into a context and, for enrollment,
       group-membership and user feeds, a principal. A failed resolution is
       rendered as the unauthorized-feed page (400).

Event content itself comes from the calendar service; this route only
establishes who and what the feed is for.
"""

import logging

from fastapi import APIRouter, Depends, Request
from starlette.responses import JSONResponse, Response

from gatehouse.dependencies import LifecycleServices, get_request_state, get_services
from gatehouse.domain import utcnow
from gatehouse.schemas import FeedResponse
from gatehouse.state import RequestState

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/feeds", tags=["Feeds"])

CALENDAR_FEED_KINDS = ("course", "group", "user")


def _split_extension(feed_code: str):
    for ext in (".ics", ".json"):
        if feed_code.endswith(ext):
            return feed_code[: -len(ext)], ext[1:]
    return feed_code, "ics"


@router.get(
    "/calendars/{feed_code}",
    responses={
        200: {"description": "Calendar feed", "model": FeedResponse},
        400: {"description": "The feed code does not resolve"},
    },
    summary="Calendar feed by token",
)
async def calendar_feed(
    request: Request,
    feed_code: str,
    state: RequestState = Depends(get_request_state),
    services: LifecycleServices = Depends(get_services),
) -> Response:
    code, extension = _split_extension(feed_code)
    resolution = await services.feeds.resolve_feed(code, only=CALENDAR_FEED_KINDS)
    if not resolution.ok:
        return services.feeds.render_problem(request, resolution)

    services.feeds.apply(state, resolution)
    context = state.context
    principal_id = state.current_user.id if state.current_user is not None else None

    if extension == "json":
        body = FeedResponse(
            context_type=context.context_type,
            context_id=context.id,
            name=context.name,
            principal_id=principal_id,
            generated_at=utcnow(),
        )
        return JSONResponse(body.model_dump(mode="json"))

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Gatehouse//Calendar Feed//EN",
        f"X-WR-CALNAME:{context.name} Calendar",
        "END:VCALENDAR",
    ]
    return Response("\r\n".join(lines) + "\r\n", media_type="text/calendar")
