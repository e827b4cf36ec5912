"""
Gatehouse — Per-Request State
==============================

What:  The single value every pipeline stage reads and writes for one request.
Why:   Resolved context, permission cache, breadcrumbs and the pending page
       view must never outlive their request. Keeping them on one explicit
       object (instead of module globals or middleware attributes) makes that
       a property of construction: LifecycleMiddleware builds a new
       RequestState on entry and drops it on exit.
How:   A mutable Pydantic model stored on `request.state.lifecycle`.
       Route handlers reach it through `gatehouse.dependencies.get_request_state`.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from starlette.requests import Request

from gatehouse.domain import Account, Crumb, User
from gatehouse.middleware.request_id import request_id_var
from gatehouse.negotiation import Representation, is_api_path, is_xhr, negotiate


class AccessedAsset(BaseModel):
    """What `log_asset_access` captured for finalization."""

    code: str
    group_code: str = "unknown"
    category: Optional[str] = None
    membership_type: Optional[str] = None
    level: Optional[str] = None


PermissionKey = Tuple[str, Optional[int]]


class RequestState(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    # ── Request facts ─────────────────────────────────────────────────────
    request_id: str
    representation: Representation = Representation.PAGE
    is_api: bool = False
    is_xhr: bool = False
    method: str = "GET"
    path: str = "/"
    url: str = ""
    host: str = ""
    user_agent: Optional[str] = None
    params: Dict[str, str] = Field(default_factory=dict)
    # The live session mapping; typed Any so validation never copies it
    session: Any = None

    # ── Principals ────────────────────────────────────────────────────────
    domain_root_account: Optional[Account] = None
    current_user: Optional[User] = None
    real_current_user: Optional[User] = None
    developer_key_id: Optional[int] = None

    # ── Context ───────────────────────────────────────────────────────────
    context: Optional[Any] = None
    context_type: Optional[str] = None
    context_id: Optional[str] = None
    # Membership for course/account/group contexts, the User for user contexts
    context_membership: Optional[Any] = None
    context_resolved: bool = False
    contexts: Optional[List[Any]] = None
    crumbs: List[Crumb] = Field(default_factory=list)
    show_left_side: bool = True

    # ── Authorization ─────────────────────────────────────────────────────
    permission_cache: Dict[PermissionKey, Dict[str, bool]] = Field(default_factory=dict)

    # ── Telemetry ─────────────────────────────────────────────────────────
    page_view: Optional[Any] = None
    page_before_render: Optional[datetime] = None
    # Set by the follow-up route; amends an earlier view even without XHR
    page_view_update: bool = False
    log_page_views: bool = True
    accessed_asset: Optional[AccessedAsset] = None

    # ── Response decoration ───────────────────────────────────────────────
    cancel_cache_buster: bool = False
    resend_csrf_token: bool = False
    embeddable: bool = False

    @classmethod
    def from_request(cls, request: Request) -> "RequestState":
        """Allocate a fresh state for an inbound request."""
        session = request.scope.get("session")
        return cls(
            request_id=request_id_var.get("") or uuid.uuid4().hex[:8],
            representation=negotiate(request),
            is_api=is_api_path(request.url.path),
            is_xhr=is_xhr(request),
            method=request.method,
            path=request.url.path,
            url=str(request.url),
            host=request.url.netloc,
            user_agent=request.headers.get("user-agent"),
            params=dict(request.query_params),
            session=session if session is not None else {},
        )

    @property
    def is_get(self) -> bool:
        return self.method in ("GET", "HEAD")

    @property
    def current_user_id(self) -> Optional[int]:
        return self.current_user.id if self.current_user else None

    def store_location(self, url: Optional[str] = None) -> None:
        """Remember where to send the caller back to after login."""
        self.session["return_to"] = url or self.url

    def clear_crumbs(self) -> None:
        self.crumbs.clear()

    def add_crumb(self, name: str, url: Optional[str] = None, crumb_id: Optional[str] = None) -> None:
        self.crumbs.append(Crumb(name=name, url=url, id=crumb_id))
