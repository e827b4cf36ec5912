"""
Gatehouse — Context-Scoped Route Handlers
==========================================

What:  Home pages of courses, accounts, groups, users, sections and
       collection items, the current user's own pages, and their /api/v1
       mirrors.
Why:   These are the routes that exercise the whole lifecycle: context
       resolution, the permission gate, asset-access telemetry and the
       rescue boundary all meet here.
How:   Every handler follows the same shape:

         1. ContextResolver.require_context  (LOGIN_REQUIRED → login redirect)
         2. PermissionGate.authorized_action (denial response, if any)
         3. TelemetryRecorder.log_asset_access
         4. render in the negotiated representation

       Missing contexts raise ContextRequiredError, which the lifecycle
       middleware hands to the rescue handler (404).
"""

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Request
from starlette.responses import JSONResponse, RedirectResponse, Response

from gatehouse.config import settings
from gatehouse.dependencies import LifecycleServices, get_request_state, get_services
from gatehouse.middleware.csrf import form_authenticity_token
from gatehouse.negotiation import Representation
from gatehouse.schemas import (
    ContextResponse,
    CrumbSchema,
    ErrorResponse,
    FileAcceptedResponse,
    PertinentContextsResponse,
    UnauthorizedResponse,
)
from gatehouse.services.context_resolver import ResolutionProblem
from gatehouse.state import RequestState
from gatehouse.templating import templates

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Contexts"])

_ERROR_RESPONSES = {
    401: {"description": "Not authorized", "model": UnauthorizedResponse},
    404: {"description": "No such context", "model": ErrorResponse},
}


# ══════════════════════════════════════════════════════════════════════════
# Shared handler steps
# ══════════════════════════════════════════════════════════════════════════

async def _guarded_context(
    request: Request,
    state: RequestState,
    services: LifecycleServices,
    id_kind: Optional[str] = None,
    *actions: str,
) -> Optional[Response]:
    """Resolve and authorize; returns a response only when the handler must stop."""
    resolution = await services.contexts.require_context(state, request.path_params, id_kind)
    if resolution.problem is ResolutionProblem.LOGIN_REQUIRED:
        if state.is_get:
            state.store_location()
        return RedirectResponse(settings.login_path, status_code=302)
    return await services.gate.authorized_action(
        request, state, state.context, state.current_user, *(actions or ("read",))
    )


def _context_body(state: RequestState) -> ContextResponse:
    context = state.context
    return ContextResponse(
        context_type=context.context_type,
        context_id=context.id,
        asset_string=context.asset_string,
        name=context.name,
        short_name=context.short_name,
        url=context.url_path,
        available=context.available,
        membership_type=getattr(state.context_membership, "membership_type", None),
        crumbs=[CrumbSchema(**crumb.model_dump()) for crumb in state.crumbs],
    )


def _render_context(request: Request, state: RequestState, pertinent: Optional[List[Any]] = None) -> Response:
    if state.representation is Representation.PAGE:
        return templates.TemplateResponse(
            request,
            "contexts/show.html",
            {
                "context": state.context,
                "crumbs": state.crumbs,
                "membership_type": getattr(state.context_membership, "membership_type", None),
                "csrf_token": form_authenticity_token(state.session),
                "flash_error": state.session.pop("flash_error", None),
                "pertinent": pertinent or [],
            },
        )
    return JSONResponse(_context_body(state).model_dump(mode="json"))


async def _show(
    request: Request,
    state: RequestState,
    services: LifecycleServices,
    id_kind: Optional[str] = None,
    category: str = "home",
) -> Response:
    stop = await _guarded_context(request, state, services, id_kind)
    if stop is not None:
        return stop
    services.telemetry.log_asset_access(
        state, f"{category}:{state.context.asset_string}", category, level="view"
    )
    return _render_context(request, state)


# ══════════════════════════════════════════════════════════════════════════
# Browser routes
# ══════════════════════════════════════════════════════════════════════════

@router.get("/courses/{course_id}", responses=_ERROR_RESPONSES, summary="Course home")
async def show_course(
    request: Request,
    state: RequestState = Depends(get_request_state),
    services: LifecycleServices = Depends(get_services),
) -> Response:
    return await _show(request, state, services)


@router.get("/courses/{course_id}/assignments", responses=_ERROR_RESPONSES, summary="Course assignments")
async def course_assignments(
    request: Request,
    state: RequestState = Depends(get_request_state),
    services: LifecycleServices = Depends(get_services),
) -> Response:
    return await _show(request, state, services, category="assignments")


@router.get("/courses/{course_id}/export", summary="Course content export")
@router.get("/courses/{course_id}/export.zip", include_in_schema=False)
async def export_course(
    request: Request,
    state: RequestState = Depends(get_request_state),
    services: LifecycleServices = Depends(get_services),
) -> Response:
    """Archive download; callers without `manage_content` are bounced back."""
    stop = await _guarded_context(request, state, services, None, "manage_content", "update")
    if stop is not None:
        return stop
    services.telemetry.disable_page_views(state)
    return Response(
        content=b"",
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{state.context.asset_string}.zip"'},
    )


@router.post(
    "/courses/{course_id}/files",
    status_code=201,
    response_model=FileAcceptedResponse,
    responses={400: {"description": "Storage quota exceeded"}, **_ERROR_RESPONSES},
    summary="Upload a file into a course",
)
async def upload_course_file(
    request: Request,
    state: RequestState = Depends(get_request_state),
    services: LifecycleServices = Depends(get_services),
) -> Response:
    stop = await _guarded_context(request, state, services, None, "manage_files", "update")
    if stop is not None:
        return stop

    body_size = int(request.headers.get("content-length") or 0)
    over_quota = await services.gate.quota_exceeded(state, body_size, redirect=state.context.url_path)
    if over_quota is not None:
        return over_quota

    services.telemetry.log_asset_access(
        state, f"files:{state.context.asset_string}", "files", level="participate"
    )
    body = FileAcceptedResponse(context=state.context.asset_string, size=body_size)
    return JSONResponse(body.model_dump(), status_code=201)


@router.get("/accounts/{id}", responses=_ERROR_RESPONSES, summary="Account home")
async def show_account(
    request: Request,
    state: RequestState = Depends(get_request_state),
    services: LifecycleServices = Depends(get_services),
) -> Response:
    return await _show(request, state, services, id_kind="account")


@router.get("/groups/{group_id}", responses=_ERROR_RESPONSES, summary="Group home")
async def show_group(
    request: Request,
    state: RequestState = Depends(get_request_state),
    services: LifecycleServices = Depends(get_services),
) -> Response:
    return await _show(request, state, services)


@router.get("/users/{id}", responses=_ERROR_RESPONSES, summary="User page")
async def show_user(
    request: Request,
    state: RequestState = Depends(get_request_state),
    services: LifecycleServices = Depends(get_services),
) -> Response:
    return await _show(request, state, services, id_kind="user")


@router.get("/sections/{id}", responses=_ERROR_RESPONSES, summary="Section home")
async def show_section(
    request: Request,
    state: RequestState = Depends(get_request_state),
    services: LifecycleServices = Depends(get_services),
) -> Response:
    return await _show(request, state, services, id_kind="course_section")


@router.get("/collection_items/{collection_item_id}", responses=_ERROR_RESPONSES, summary="Collection item")
async def show_collection_item(
    request: Request,
    state: RequestState = Depends(get_request_state),
    services: LifecycleServices = Depends(get_services),
) -> Response:
    return await _show(request, state, services)


# ── The current user's own pages ─────────────────────────────────────────

@router.get("/", summary="Dashboard")
@router.get("/profile", summary="Profile")
@router.get("/calendar", summary="Calendar")
@router.get("/assignments", summary="Assignments across courses")
@router.get("/files", summary="Personal files")
@router.get("/dashboard/files", summary="Dashboard files")
async def show_own_page(
    request: Request,
    state: RequestState = Depends(get_request_state),
    services: LifecycleServices = Depends(get_services),
) -> Response:
    stop = await _guarded_context(request, state, services)
    if stop is not None:
        return stop
    pertinent = await services.contexts.pertinent_contexts(state, include_groups=True)
    return _render_context(request, state, pertinent)


# ══════════════════════════════════════════════════════════════════════════
# API mirrors
# ══════════════════════════════════════════════════════════════════════════

@router.get("/api/v1/courses/{course_id}", response_model=ContextResponse, responses=_ERROR_RESPONSES)
async def api_show_course(
    request: Request,
    state: RequestState = Depends(get_request_state),
    services: LifecycleServices = Depends(get_services),
) -> Response:
    return await _show(request, state, services)


@router.get("/api/v1/accounts/{id}", response_model=ContextResponse, responses=_ERROR_RESPONSES)
async def api_show_account(
    request: Request,
    state: RequestState = Depends(get_request_state),
    services: LifecycleServices = Depends(get_services),
) -> Response:
    return await _show(request, state, services, id_kind="account")


@router.get("/api/v1/groups/{group_id}", response_model=ContextResponse, responses=_ERROR_RESPONSES)
async def api_show_group(
    request: Request,
    state: RequestState = Depends(get_request_state),
    services: LifecycleServices = Depends(get_services),
) -> Response:
    return await _show(request, state, services)


@router.get("/api/v1/users/{id}", response_model=ContextResponse, responses=_ERROR_RESPONSES)
async def api_show_user(
    request: Request,
    state: RequestState = Depends(get_request_state),
    services: LifecycleServices = Depends(get_services),
) -> Response:
    return await _show(request, state, services, id_kind="user")


@router.get("/api/v1/sections/{id}", response_model=ContextResponse, responses=_ERROR_RESPONSES)
async def api_show_section(
    request: Request,
    state: RequestState = Depends(get_request_state),
    services: LifecycleServices = Depends(get_services),
) -> Response:
    return await _show(request, state, services, id_kind="course_section")


@router.get(
    "/api/v1/collection_items/{collection_item_id}",
    response_model=ContextResponse,
    responses=_ERROR_RESPONSES,
)
async def api_show_collection_item(
    request: Request,
    state: RequestState = Depends(get_request_state),
    services: LifecycleServices = Depends(get_services),
) -> Response:
    return await _show(request, state, services)


@router.get(
    "/api/v1/users/{id}/contexts",
    response_model=PertinentContextsResponse,
    responses=_ERROR_RESPONSES,
    summary="Contexts that belong with a user",
    description=(
        "The user, their courses active today and their groups. Narrow with "
        "`only_contexts=course_5,group_9`; add readable extras with "
        "`include_contexts=account_2`."
    ),
)
async def api_user_contexts(
    request: Request,
    state: RequestState = Depends(get_request_state),
    services: LifecycleServices = Depends(get_services),
) -> Response:
    stop = await _guarded_context(request, state, services, "user")
    if stop is not None:
        return stop
    contexts = await services.contexts.pertinent_contexts(state, include_groups=True)
    body = PertinentContextsResponse(contexts=[c.asset_string for c in contexts])
    return JSONResponse(body.model_dump())
