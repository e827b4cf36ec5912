"""
Gatehouse — Telemetry Recorder
===============================

What:  Records page views and per-asset accesses for usage reports.
Why:   Reports are only useful if each human page load counts once. A page
       view and its client follow-up must land on one row, and a follow-up
       must not count the asset as viewed a second time.
How:   Two phases around the route handler, both driven by the lifecycle
       middleware:

         set_page_view   (before)  decide whether this request gets a view;
                                   build it in memory, stamp the render start
         log_page_view   (after)   merge a follow-up, log the asset access,
                                   compute render time, persist once

Gating:
    A page view is generated when page views are enabled and either
      - a developer-key (API) client flags the request with `user_request`, or
      - an authenticated human makes a non-XHR GET.
    With no user, or with page views disabled for the request, nothing is
    stored and the in-memory view is dropped.

Failure policy:
    Telemetry never fails a request. Transient storage faults are retried
    with tenacity; anything left over is logged and swallowed.
"""

import logging
import uuid
from typing import Any, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.responses import Response
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from gatehouse.config import settings
from gatehouse.domain import utcnow
from gatehouse.models import PageView
from gatehouse.services.telemetry_store import TelemetryStore
from gatehouse.state import AccessedAsset, RequestState

logger = logging.getLogger(__name__)

PAGE_VIEW_HEADER = "X-Page-View-Id"


def _truthy(value: Optional[str]) -> bool:
    return value is not None and value.lower() not in ("", "0", "false", "no")


class TelemetryRecorder:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @staticmethod
    def page_views_enabled() -> bool:
        return settings.page_views_enabled

    # ══════════════════════════════════════════════════════════════════════
    # Before the handler
    # ══════════════════════════════════════════════════════════════════════

    def set_page_view(self, state: RequestState) -> None:
        if not self.page_views_enabled():
            return
        api_user_request = state.developer_key_id is not None and "user_request" in state.params
        human_page_load = (
            state.developer_key_id is None
            and state.current_user is not None
            and not state.is_xhr
            and state.method == "GET"
        )
        if api_user_request or human_page_load:
            self.generate_page_view(state)

    def generate_page_view(self, state: RequestState) -> PageView:
        """Build the request's page view; a request never gets a second one."""
        if state.page_view is not None:
            return state.page_view
        real_user = state.real_current_user
        state.page_view = PageView(
            id=uuid.uuid4(),
            request_id=state.request_id,
            user_id=state.current_user_id,
            real_user_id=real_user.id if real_user is not None else None,
            developer_key_id=state.developer_key_id,
            url=state.url,
            http_method=state.method,
            user_agent=state.user_agent,
            user_request=(
                "user_request" in state.params
                or (state.current_user is not None and not state.is_xhr and state.method == "GET")
            ),
            participated=False,
            generated_by_hand=False,
            contributed=False,
        )
        state.page_before_render = utcnow()
        return state.page_view

    def generate_new_page_view(self, state: RequestState) -> Optional[PageView]:
        """For handlers that know they produced a view the gate would not have."""
        if not self.page_views_enabled():
            return None
        page_view = self.generate_page_view(state)
        page_view.generated_by_hand = True
        return page_view

    @staticmethod
    def disable_page_views(state: RequestState) -> None:
        state.log_page_views = False

    @staticmethod
    def log_asset_access(
        state: RequestState,
        asset: Any,
        category: str,
        group: Any = None,
        level: Optional[str] = None,
        membership_type: Optional[str] = None,
    ) -> None:
        """
        Note that the handler touched an asset; recorded at finalization.

        Args:
            asset:           Asset string ("wiki_page_4") or an object with asset_string
            category:        Report bucket ("files", "wiki", "assignments", ...)
            group:           Grouping asset (string or object), "unknown" if absent
            level:           "view" (default), "participate" or "submit"
            membership_type: Overrides the membership type of the resolved context
        """
        if state.current_user is None or state.context is None or asset is None:
            return
        if membership_type is None and state.context_membership is not None:
            membership_type = getattr(state.context_membership, "membership_type", None)
        state.accessed_asset = AccessedAsset(
            code=asset if isinstance(asset, str) else asset.asset_string,
            group_code=group if isinstance(group, str) else getattr(group, "asset_string", "unknown"),
            category=category,
            membership_type=membership_type,
            level=level,
        )

    # ══════════════════════════════════════════════════════════════════════
    # After the handler
    # ══════════════════════════════════════════════════════════════════════

    async def log_page_view(self, state: RequestState, response: Response) -> None:
        if not self.page_views_enabled():
            return
        try:
            if state.current_user is None or not state.log_page_views:
                if state.page_view is not None:
                    logger.debug("[%s] Discarding unsaved page view", state.request_id)
                state.page_view = None
                return

            page_view_id = await self._persist(state, response)
            if page_view_id is not None:
                response.headers[PAGE_VIEW_HEADER] = str(page_view_id)
        except Exception:
            logger.error("[%s] Pageview error!", state.request_id, exc_info=True)

    @retry(
        retry=retry_if_exception_type(OperationalError),
        stop=stop_after_attempt(settings.telemetry_retry_attempts),
        wait=wait_exponential_jitter(initial=0.05, max=settings.telemetry_retry_max_wait, jitter=0.1),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _persist(self, state: RequestState, response: Response) -> Optional[uuid.UUID]:
        """
        One transaction for everything this request records.

        Returns:
            The id of the page view that was stored or updated, if any.
        """
        async with self.session_factory() as db:
            store = TelemetryStore(db)
            page_view = state.page_view
            updated = False

            # Client follow-up amending an earlier view
            follow_up_id = state.params.get("page_view_id")
            follow_up = state.is_xhr or state.page_view_update
            if follow_up and follow_up_id and not (page_view is not None and page_view.generated_by_hand):
                existing = await store.find_page_view(follow_up_id)
                if existing is not None:
                    page_view = existing
                    self._merge_interaction(page_view, state)
                    updated = True

            # A follow-up only counts the asset again for participation
            accessed = state.accessed_asset
            if accessed is not None and (accessed.level == "participate" or not updated):
                access = await store.find_or_initialize_access(state.current_user.id, accessed.code)
                accessed.level = accessed.level or "view"
                access.log(state.context, accessed)
                await db.flush()
                if page_view is not None:
                    page_view.participated = accessed.level in ("participate", "submit")
                    page_view.asset_user_access_id = access.id
                updated = True

            if (
                page_view is not None
                and not state.is_xhr
                and state.method == "GET"
                and "html" in response.headers.get("content-type", "")
            ):
                if page_view.render_time is None:
                    page_view.render_time = self._render_time(state)
                updated = True

            if page_view is None or not updated:
                await db.commit()
                return None

            if page_view.context_id is None and state.context is not None:
                page_view.context_type = state.context.context_type
                page_view.context_id = state.context.id
            if state.domain_root_account is not None:
                page_view.account_id = state.domain_root_account.id

            stored = await store.save_page_view(page_view)
            await db.commit()
            return stored.id

    @staticmethod
    def _merge_interaction(page_view: PageView, state: RequestState) -> None:
        seconds = state.params.get("interaction_seconds")
        if seconds is not None:
            try:
                page_view.interaction_seconds = float(seconds)
            except ValueError:
                logger.info("[%s] Ignoring interaction_seconds=%r", state.request_id, seconds)
        if "page_view_contributed" in state.params:
            page_view.contributed = _truthy(state.params["page_view_contributed"])

    @staticmethod
    def _render_time(state: RequestState) -> Optional[float]:
        try:
            return (utcnow() - state.page_before_render).total_seconds()
        except Exception:
            return None
