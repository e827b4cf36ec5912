"""
Gatehouse — Context Resolver
=============================

What:  Works out which context (course, account, group, user, section,
       collection item) a request concerns, the caller's membership in it,
       and the breadcrumb trail leading to it.
Why:   Almost every route is scoped to a context; resolving it in one place
       keeps the priority rules and the caching identical everywhere.
How:   First match wins, in this order:

         course_id            → Course (deleted courses are invisible)
         account_id           → Account (aliases: self, default, site_admin)
         group_id             → Group
         user_id              → User (alias: self)
         course_section_id    → CourseSection
         collection_item_id   → CollectionItem
         path /profile, /, /dashboard/files, /calendar, /assignments, /files
                              → the current user

       Reserved ids are looked up in an alias table before the kind switch.
       The result is stored on the RequestState; a second call returns the
       stored result without touching the directory.

Anonymous callers only see contexts the public may read. For a non-root
account the readable ancestors are added as breadcrumbs, collapsing the
middle of long chains into a single "..." crumb.
"""

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from gatehouse.config import settings
from gatehouse.domain import CONTEXT_KINDS, Account, parse_context_reference
from gatehouse.exceptions import ContextRequiredError
from gatehouse.negotiation import Representation
from gatehouse.services.directory_base import ContextDirectory
from gatehouse.services.permission_gate import PermissionGate
from gatehouse.state import RequestState

logger = logging.getLogger(__name__)

ELLIPSIS = "..."

# (parameter, context kind) in resolution priority
CONTEXT_PARAMS: Tuple[Tuple[str, str], ...] = (
    ("course_id", "course"),
    ("account_id", "account"),
    ("group_id", "group"),
    ("user_id", "user"),
    ("course_section_id", "course_section"),
    ("collection_item_id", "collection_item"),
)

PRINCIPAL_PATH_PREFIXES = ("/profile", "/dashboard/files", "/calendar", "/assignments", "/files")


class AccountAlias(str, Enum):
    SELF = "self"
    DEFAULT = "default"
    SITE_ADMIN = "site_admin"


class UserAlias(str, Enum):
    SELF = "self"


class ResolutionProblem(str, Enum):
    LOGIN_REQUIRED = "login_required"


class ContextResolution(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    context: Optional[Any] = None
    membership: Optional[Any] = None
    context_type: Optional[str] = None
    problem: Optional[ResolutionProblem] = None


AliasLookup = Callable[[RequestState], Awaitable[Optional[Any]]]


class ContextResolver:
    def __init__(self, directory: ContextDirectory, gate: PermissionGate):
        self.directory = directory
        self.gate = gate
        self._aliases: Dict[str, Dict[str, AliasLookup]] = {
            "account": {
                AccountAlias.SELF.value: self._domain_root_account,
                AccountAlias.DEFAULT.value: lambda state: self.directory.default_account(),
                AccountAlias.SITE_ADMIN.value: lambda state: self.directory.site_admin_account(),
            },
            "user": {
                UserAlias.SELF.value: self._current_user,
            },
        }

    # ══════════════════════════════════════════════════════════════════════
    # Resolution
    # ══════════════════════════════════════════════════════════════════════

    async def resolve(
        self,
        state: RequestState,
        params: Optional[Mapping[str, Any]] = None,
        id_kind: Optional[str] = None,
    ) -> ContextResolution:
        """
        Resolve the request's context once and cache it on `state`.

        Args:
            state:   The request's state
            params:  Path parameters; merged over the query parameters
            id_kind: Context kind a bare `id` parameter stands for
                     (e.g. "account" on /accounts/{id})

        Returns:
            ContextResolution with the context (or None) and membership.
        """
        if state.context_resolved:
            return self._current(state)

        merged: Dict[str, str] = dict(state.params)
        merged.update({k: str(v) for k, v in (params or {}).items()})
        if id_kind and "id" in merged:
            merged.setdefault(f"{id_kind}_id", merged["id"])

        context, membership, context_type, context_id = await self._find(state, merged)

        if context is not None and state.current_user is None:
            if not await self.gate.is_authorized(state, context, None, "read"):
                logger.info(
                    "[%s] %s is not readable anonymously; treating as missing",
                    state.request_id, context.asset_string,
                )
                context, membership = None, None

        state.context = context
        state.context_membership = membership
        state.context_type = context_type
        state.context_id = context_id
        state.context_resolved = True

        if context is not None:
            if isinstance(context, Account) and not context.is_root:
                await self._add_lineage_crumbs(state, context)
            state.add_crumb(context.short_name, context.url_path, f"crumb_{context.asset_string}")

        return self._current(state)

    async def _find(self, state: RequestState, params: Mapping[str, str]):
        """The single switch over context kinds."""
        for param, kind in CONTEXT_PARAMS:
            raw = params.get(param)
            if not raw:
                continue
            context_type = CONTEXT_KINDS[kind].context_type
            context = await self._lookup(state, kind, raw)
            if kind == "course" and context is not None and context.deleted:
                context = None
            membership = await self._membership_for(state, kind, context)
            context_id = str(context.id) if (context is not None and kind == "account") else raw
            return context, membership, context_type, context_id

        if any(state.path.startswith(prefix) for prefix in PRINCIPAL_PATH_PREFIXES) or state.path == "/":
            user = state.current_user
            return user, user, "User" if user else None, str(user.id) if user else None

        return None, None, None, None

    async def _lookup(self, state: RequestState, kind: str, raw: str) -> Optional[Any]:
        alias = self._aliases.get(kind, {}).get(raw)
        if alias is not None:
            return await alias(state)
        if not raw.isdigit():
            return None
        return await self.directory.find_context(kind, int(raw))

    async def _membership_for(self, state: RequestState, kind: str, context: Any) -> Optional[Any]:
        user = state.current_user
        if context is None or user is None:
            return None
        if kind == "user":
            return context if context == user else None
        if kind not in ("course", "account", "group"):
            return None
        memberships = await self.directory.memberships_for(context, user)
        if not memberships:
            return None
        # Best of several enrollments: by state, then rank, then id
        return min(memberships, key=lambda m: m.sort_key)

    async def _domain_root_account(self, state: RequestState) -> Optional[Any]:
        return state.domain_root_account

    async def _current_user(self, state: RequestState) -> Optional[Any]:
        return state.current_user

    @staticmethod
    def _current(state: RequestState) -> ContextResolution:
        return ContextResolution(
            context=state.context,
            membership=state.context_membership,
            context_type=state.context_type,
        )

    # ── Breadcrumbs ───────────────────────────────────────────────────────

    async def _add_lineage_crumbs(self, state: RequestState, account: Account) -> None:
        chain = await self.directory.account_chain(account)
        ancestors = []
        for ancestor in chain:
            if ancestor.id == account.id:
                continue
            if await self.gate.is_authorized(state, ancestor, state.current_user, "read"):
                ancestors.append(ancestor)

        limit = settings.max_account_lineage_in_crumbs
        count = len(ancestors)
        # Root first; for long chains keep the root and the last ones
        for idx, ancestor in enumerate(reversed(ancestors)):
            if idx == 1 and count >= limit:
                state.add_crumb(ELLIPSIS)
            elif count >= limit and 0 < idx <= count - limit:
                continue
            else:
                state.add_crumb(ancestor.short_name, ancestor.url_path, f"crumb_{ancestor.asset_string}")

    # ══════════════════════════════════════════════════════════════════════
    # Routes scoped to a context
    # ══════════════════════════════════════════════════════════════════════

    async def require_context(
        self,
        state: RequestState,
        params: Optional[Mapping[str, Any]] = None,
        id_kind: Optional[str] = None,
    ) -> ContextResolution:
        """
        Resolve, insisting on a context.

        Returns:
            The resolution; its `problem` is LOGIN_REQUIRED when the caller
            should be sent to log in instead (under /profile, or an anonymous
            browser request).

        Raises:
            ContextRequiredError: No context and logging in would not help.
        """
        resolution = await self.resolve(state, params, id_kind)
        if resolution.context is not None:
            return resolution

        if state.path.startswith("/profile") or (
            state.current_user is None and state.representation is Representation.PAGE
        ):
            if state.is_get:
                state.store_location()
            resolution.problem = ResolutionProblem.LOGIN_REQUIRED
            return resolution

        raise ContextRequiredError(state.context_type, state.context_id)

    # ══════════════════════════════════════════════════════════════════════
    # Pertinent contexts
    # ══════════════════════════════════════════════════════════════════════

    async def pertinent_contexts(self, state: RequestState, include_groups: bool = False) -> List[Any]:
        """
        The resolved context plus the contexts that belong with it.

        For a user context that is the user's courses active by date (and
        groups, when asked), narrowed by `only_contexts`. Every context listed
        in `include_contexts` that the caller may read is added. Computed
        once per request.
        """
        if state.contexts is not None:
            return state.contexts
        if state.context is None:
            raise ValueError("Need a starting context")

        contexts: List[Any] = [state.context]
        only = [
            ref for ref in (
                parse_context_reference(item)
                for item in state.params.get("only_contexts", "").split(",")
                if item.strip()
            )
            if ref is not None
        ]

        if state.context.kind == "user":
            courses = []
            for enrollment in await self.directory.current_enrollments(state.context):
                if enrollment.state_based_on_date() != "active":
                    continue
                course = await self.directory.find_context("course", enrollment.context_id)
                if course is not None and course not in courses:
                    courses.append(course)
            groups = await self.directory.current_groups(state.context) if include_groups else []
            if only:
                course_ids = {cid for kind, cid in only if kind == "course"}
                group_ids = {gid for kind, gid in only if kind == "group"}
                courses = [c for c in courses if c.id in course_ids]
                groups = [g for g in groups if g.id in group_ids]
            contexts.extend(courses)
            contexts.extend(groups)

        for asset_string in state.params.get("include_contexts", "").split(","):
            asset_string = asset_string.strip()
            if not asset_string or any(c.asset_string == asset_string for c in contexts):
                continue
            context = await self.directory.find_by_asset_string(asset_string)
            if context is not None and await self.gate.is_authorized(
                state, context, state.current_user, "read"
            ):
                contexts.append(context)

        unique: List[Any] = []
        for context in contexts:
            if context not in unique:
                unique.append(context)
        state.contexts = unique
        return unique
