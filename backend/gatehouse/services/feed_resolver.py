"""
Gatehouse — Token Feed Resolver
================================

What:  Recovers a context (and, for membership tokens, an acting user) from
       the opaque feed code in a calendar/announcement feed URL.
Why:   Feed readers cannot log in. The unguessable uuid in the URL is the
       credential, so the matching rules are security rules.
How:   The feed code is `<kind>_<token>`, split on the first underscore.
       Codes starting with `group_membership` take the third
       underscore-delimited segment as the token instead.

Kind dispatch:
    enrollment        enrollment whose uuid equals the token exactly; course
                      must be available.
                      The enrollment's user becomes the acting principal.
    group_membership  active group membership whose uuid equals the token
                      exactly; group must be available.
                      The membership's user becomes the acting principal.
    course, group,    entity by token. A non-public entity additionally
    user, account     requires the token to equal its uuid exactly.
                      A user feed acts as that user.

Anti-enumeration:
    Every problem renders shared/unauthorized_feed.html with HTTP 400. Only
    the message text differs, so "wrong token", "private" and "unpublished"
    look the same to a prober checking status codes and page structure.
"""

import logging
from enum import Enum
from typing import Any, Collection, Optional, Tuple

from pydantic import BaseModel, ConfigDict
from starlette.requests import Request
from starlette.responses import Response

from gatehouse.domain import CONTEXT_KINDS
from gatehouse.services.directory_base import ContextDirectory
from gatehouse.state import RequestState
from gatehouse.templating import templates

logger = logging.getLogger(__name__)

FEED_PROBLEM_TEMPLATE = "shared/unauthorized_feed.html"

# Kinds reachable by a bare entity token
FEED_CONTEXT_KINDS = ("course", "group", "user", "account")


class FeedProblem(str, Enum):
    MISMATCHED_TOKEN = "mismatched_token"
    FEED_UNPUBLISHED = "feed_unpublished"
    PRIVATE_FEED = "private_feed"
    INVALID_TOKEN = "invalid_token"
    INVALID_PARAMETERS = "invalid_parameters"
    NOT_FOUND = "not_found"


MISMATCHED_MESSAGE = "The verification code does not match any currently enrolled user."
INVALID_CODE_MESSAGE = "The verification code is invalid."
UNPUBLISHED_MESSAGES = {
    "course": "Feeds for this course cannot be accessed until it is published.",
    "group": "Feeds for this group cannot be accessed until it is published.",
}
PRIVATE_MESSAGES = {
    "course": "The matching course has gone private, so public feeds like this one will no longer be visible.",
    "group": "The matching group has gone private, so public feeds like this one will no longer be visible.",
}
PRIVATE_MESSAGE = "The matching context has gone private, so public feeds like this one will no longer be visible."
INVALID_PARAMETERS_MESSAGE = "Invalid feed parameters."
NOT_FOUND_MESSAGE = "Could not find feed."


class FeedResolution(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    context: Optional[Any] = None
    principal: Optional[Any] = None
    context_type: Optional[str] = None
    problem: Optional[FeedProblem] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.problem is None and self.context is not None


def split_feed_code(feed_code: str) -> Tuple[str, Optional[str]]:
    """
    'enrollment_abc'           → ('enrollment', 'abc')
    'group_membership_abc'     → ('group_membership', 'abc')
    'course'                   → ('course', None)
    """
    if feed_code.startswith("group_membership"):
        return "group_membership", feed_code.split("_", 2)[-1]
    pieces = feed_code.split("_", 1)
    return pieces[0], (pieces[1] if len(pieces) > 1 else None)


class TokenFeedResolver:
    def __init__(self, directory: ContextDirectory):
        self.directory = directory

    async def resolve_feed(
        self, feed_code: str, only: Optional[Collection[str]] = None
    ) -> FeedResolution:
        """
        Resolve a feed code.

        Args:
            feed_code: `<kind>_<token>` from the URL
            only:      Context kinds the route accepts; others are rejected

        Returns:
            FeedResolution; `problem` is set for every failure. Never raises
            for bad input.
        """
        kind, token = split_feed_code(feed_code)

        if kind == "enrollment":
            resolution = await self._resolve_membership(
                token, "course", self.directory.find_enrollment_by_uuid
            )
        elif kind == "group_membership":
            resolution = await self._resolve_membership(
                token, "group", self.directory.find_group_membership_by_uuid
            )
        else:
            resolution = await self._resolve_entity(kind, token)

        context = resolution.context
        if context is not None and only is not None and context.kind not in only:
            resolution = FeedResolution(
                context_type=resolution.context_type,
                problem=FeedProblem.INVALID_PARAMETERS,
                message=INVALID_PARAMETERS_MESSAGE,
            )
        elif context is None and resolution.problem is None:
            resolution.problem = FeedProblem.NOT_FOUND
            resolution.message = NOT_FOUND_MESSAGE

        if resolution.problem is not None:
            logger.info("Feed code rejected: kind=%s problem=%s", kind, resolution.problem.value)
        return resolution

    async def _resolve_membership(self, token: Optional[str], context_kind: str, find) -> FeedResolution:
        context_type = "Course" if context_kind == "course" else "Group"
        membership = await find(token) if token else None
        # The token names the acting user; only an exact match counts
        if membership is None or membership.uuid != token:
            return FeedResolution(
                context_type=context_type,
                problem=FeedProblem.MISMATCHED_TOKEN,
                message=MISMATCHED_MESSAGE,
            )

        context = await self.directory.find_context(context_kind, membership.context_id)
        if context is not None and not context.available:
            return FeedResolution(
                context_type=context_type,
                problem=FeedProblem.FEED_UNPUBLISHED,
                message=UNPUBLISHED_MESSAGES[context_kind],
            )
        if context is None:
            return FeedResolution(context_type=context_type)

        principal = await self.directory.find_context("user", membership.user_id)
        return FeedResolution(context=context, principal=principal, context_type=context_type)

    async def _resolve_entity(self, kind: str, token: Optional[str]) -> FeedResolution:
        if kind not in FEED_CONTEXT_KINDS:
            return FeedResolution(problem=FeedProblem.INVALID_TOKEN, message=INVALID_CODE_MESSAGE)

        context_type = CONTEXT_KINDS[kind].context_type
        context = await self.directory.find_by_uuid(kind, token) if token else None
        if context is None:
            return FeedResolution(
                context_type=context_type,
                problem=FeedProblem.MISMATCHED_TOKEN,
                message=INVALID_CODE_MESSAGE,
            )
        # Exact equality; the directory lookup itself may be lenient
        if not context.is_public and token != context.uuid:
            return FeedResolution(
                context_type=context_type,
                problem=FeedProblem.PRIVATE_FEED,
                message=PRIVATE_MESSAGES.get(kind, PRIVATE_MESSAGE),
            )

        principal = context if kind == "user" else None
        return FeedResolution(context=context, principal=principal, context_type=context_type)

    # ══════════════════════════════════════════════════════════════════════
    # Applying and rendering
    # ══════════════════════════════════════════════════════════════════════

    @staticmethod
    def apply(state: RequestState, resolution: FeedResolution) -> None:
        """Make a successful resolution the request's context and principal."""
        state.context = resolution.context
        state.context_type = resolution.context_type
        state.context_id = str(resolution.context.id)
        state.context_resolved = True
        if resolution.principal is not None:
            state.current_user = resolution.principal

    @staticmethod
    def render_problem(request: Request, resolution: FeedResolution) -> Response:
        return templates.TemplateResponse(
            request,
            FEED_PROBLEM_TEMPLATE,
            {"problem": resolution.message or NOT_FOUND_MESSAGE},
            status_code=400,
        )
