"""
Gatehouse — In-Memory Context Directory
========================================

What:  A ContextDirectory held entirely in dictionaries.
Why:   Lets the service run standalone for development and gives tests a
       directory they can seed, inspect and sabotage.
How:   Seed with `add()`, `add_membership()`, `grant()` and friends.
       Every lookup bumps `lookups` so tests can prove that a cached value
       was served without going back to the directory.

Permission model:
    Grants are explicit (object, user-or-public, action) triples, plus two
    built-in rules: a user may read and manage their own User context, and
    a membership that is active by date grants `read` on an available context.
    `fail_permissions_for(obj)` makes every evaluation on `obj` raise.
"""

import logging
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from gatehouse.domain import (
    AccessToken,
    Account,
    Group,
    Membership,
    MembershipKind,
    Quota,
    User,
    utcnow,
)
from gatehouse.services.directory_base import ContextDirectory

logger = logging.getLogger(__name__)

_MEMBERSHIP_CONTEXT_KIND = {
    MembershipKind.ENROLLMENT: "course",
    MembershipKind.ACCOUNT_USER: "account",
    MembershipKind.GROUP_MEMBERSHIP: "group",
}


class MemoryDirectory(ContextDirectory):
    def __init__(self, default_account: Optional[Account] = None, site_admin: Optional[Account] = None):
        self._contexts: Dict[Tuple[str, int], Any] = {}
        self._memberships: List[Membership] = []
        self._grants: Dict[Tuple[str, Optional[int]], Set[str]] = defaultdict(set)
        self._tokens: Dict[str, AccessToken] = {}
        self._quotas: Dict[str, Quota] = {}
        self._hosts: Dict[str, int] = {}
        self._failing: Set[str] = set()
        self.lookups = 0
        self.recent_activity: Dict[int, Any] = {}

        self._default_account = default_account or Account(id=1, name="Default Account")
        self._site_admin = site_admin or Account(id=2, name="Site Admin")
        self.add(self._default_account, self._site_admin)

    # ══════════════════════════════════════════════════════════════════════
    # Seeding
    # ══════════════════════════════════════════════════════════════════════

    def add(self, *contexts: Any) -> None:
        for context in contexts:
            self._contexts[(context.kind, context.id)] = context

    def add_membership(self, *memberships: Membership) -> None:
        self._memberships.extend(memberships)

    def grant(self, obj: Any, user: Optional[User], *actions: str) -> None:
        """Grant `actions` on `obj` to `user`, or to everyone when user is None."""
        self._grants[(obj.asset_string, user.id if user else None)].update(actions)

    def issue_token(self, token: str, user: User, developer_key_id: Optional[int] = None) -> AccessToken:
        access_token = AccessToken(token=token, user_id=user.id, developer_key_id=developer_key_id)
        self._tokens[token] = access_token
        return access_token

    def set_quota(self, context: Any, quota: int, used: int = 0) -> None:
        self._quotas[context.asset_string] = Quota(quota=quota, used=used)

    def map_host(self, host: str, account: Account) -> None:
        self._hosts[host] = account.id

    def fail_permissions_for(self, obj: Any) -> None:
        self._failing.add(obj.asset_string)

    # ══════════════════════════════════════════════════════════════════════
    # ContextDirectory
    # ══════════════════════════════════════════════════════════════════════

    async def find_root_account(self, host: str) -> Optional[Account]:
        self.lookups += 1
        account_id = self._hosts.get(host)
        return self._contexts.get(("account", account_id)) if account_id is not None else None

    async def default_account(self) -> Account:
        return self._default_account

    async def site_admin_account(self) -> Account:
        return self._site_admin

    async def account_chain(self, account: Account) -> List[Account]:
        self.lookups += 1
        chain = [account]
        seen = {account.id}
        current = account
        while current.parent_account_id is not None and current.parent_account_id not in seen:
            parent = self._contexts.get(("account", current.parent_account_id))
            if parent is None:
                break
            chain.append(parent)
            seen.add(parent.id)
            current = parent
        return chain

    async def find_context(self, kind: str, context_id: int) -> Optional[Any]:
        self.lookups += 1
        return self._contexts.get((kind, context_id))

    async def find_by_uuid(self, kind: str, token: str) -> Optional[Any]:
        self.lookups += 1
        wanted = token.lower()
        for (context_kind, _), context in self._contexts.items():
            if context_kind == kind and context.uuid.lower() == wanted:
                return context
        return None

    async def memberships_for(self, context: Any, user: User) -> List[Membership]:
        self.lookups += 1
        return [
            m for m in self._memberships
            if m.user_id == user.id
            and m.context_id == context.id
            and _MEMBERSHIP_CONTEXT_KIND[m.kind] == context.kind
        ]

    async def find_enrollment_by_uuid(self, token: str) -> Optional[Membership]:
        self.lookups += 1
        return self._membership_by_uuid(MembershipKind.ENROLLMENT, token)

    async def find_group_membership_by_uuid(self, token: str) -> Optional[Membership]:
        self.lookups += 1
        membership = self._membership_by_uuid(MembershipKind.GROUP_MEMBERSHIP, token)
        if membership is not None and membership.state != "active":
            return None
        return membership

    async def current_enrollments(self, user: User) -> List[Membership]:
        self.lookups += 1
        return [
            m for m in self._memberships
            if m.user_id == user.id
            and m.kind is MembershipKind.ENROLLMENT
            and m.state not in ("deleted", "rejected")
        ]

    async def current_groups(self, user: User) -> List[Group]:
        self.lookups += 1
        groups = []
        for m in self._memberships:
            if m.user_id == user.id and m.kind is MembershipKind.GROUP_MEMBERSHIP and m.state == "active":
                group = self._contexts.get(("group", m.context_id))
                if group is not None and group.available:
                    groups.append(group)
        return groups

    async def record_recent_activity(self, membership: Membership) -> None:
        self.recent_activity[membership.id] = utcnow()

    async def grants_rights(
        self,
        obj: Any,
        user: Optional[User],
        session: Optional[Mapping[str, Any]],
        actions: Optional[Sequence[str]] = None,
    ) -> Dict[str, bool]:
        self.lookups += 1
        if obj.asset_string in self._failing:
            raise RuntimeError(f"permission evaluation failed for {obj.asset_string}")

        granted = set(self._grants.get((obj.asset_string, None), set()))
        if user is not None:
            granted |= self._grants.get((obj.asset_string, user.id), set())
            if obj.kind == "user" and obj.id == user.id:
                granted |= {"read", "manage"}
            # Unpublished courses stay closed to their members
            if obj.available and any(
                m.state_based_on_date() == "active" for m in self._memberships_in(obj, user)
            ):
                granted.add("read")

        if actions is None:
            return {action: True for action in granted}
        return {action: action in granted for action in actions}

    async def find_access_token(self, token: str) -> Optional[AccessToken]:
        self.lookups += 1
        return self._tokens.get(token)

    async def quota_for(self, context: Any) -> Quota:
        return self._quotas.get(context.asset_string, Quota(quota=50 * 1024 * 1024))

    # ── Helpers ───────────────────────────────────────────────────────────

    def _membership_by_uuid(self, kind: MembershipKind, token: str) -> Optional[Membership]:
        wanted = token.lower()
        for m in self._memberships:
            if m.kind is kind and m.uuid.lower() == wanted:
                return m
        return None

    def _memberships_in(self, obj: Any, user: User) -> List[Membership]:
        return [
            m for m in self._memberships
            if m.user_id == user.id
            and m.context_id == obj.id
            and _MEMBERSHIP_CONTEXT_KIND[m.kind] == obj.kind
        ]
