"""
Gatehouse — Context Directory Interface (Abstract Base Class)
==============================================================

What:  The contract Gatehouse needs from the platform's domain layer.
Why:   Courses, accounts, enrollments and their permission rules are owned by
       the platform. Gatehouse only looks things up and asks questions, so
       the whole domain is reduced to this one interface.
How:   Abstract base class. `MemoryDirectory` implements it for development
       and tests; a deployment plugs in an implementation backed by its own
       models. Services receive the directory in their constructor.

Contract notes:
    - Lookups return None for "no such thing"; they raise only for faults.
    - `find_by_uuid` MAY match leniently (e.g. case-insensitively). Callers
      that need exact equality (feed tokens) compare `uuid` themselves.
    - `grants_rights` returns action → bool for the requested actions, or
      for every action it knows about when `actions` is None. It may raise;
      PermissionGate treats any exception as denial.
    - `account_chain` starts with the account itself and ends at its root.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Sequence

from gatehouse.domain import AccessToken, Account, Group, Membership, Quota, User, parse_asset_string


class ContextDirectory(ABC):
    """Lookup and permission interface over the platform's domain entities."""

    # ── Accounts ──────────────────────────────────────────────────────────

    @abstractmethod
    async def find_root_account(self, host: str) -> Optional[Account]:
        """Root account serving the given host, if the host is mapped."""

    @abstractmethod
    async def default_account(self) -> Account:
        """The installation's default root account."""

    @abstractmethod
    async def site_admin_account(self) -> Account:
        """The installation's site-admin account."""

    @abstractmethod
    async def account_chain(self, account: Account) -> List[Account]:
        """The account followed by its ancestors up to the root."""

    # ── Contexts ──────────────────────────────────────────────────────────

    @abstractmethod
    async def find_context(self, kind: str, context_id: int) -> Optional[Any]:
        """Context of `kind` with id `context_id`, deleted ones included."""

    @abstractmethod
    async def find_by_uuid(self, kind: str, token: str) -> Optional[Any]:
        """Context of `kind` whose uuid matches `token`."""

    async def find_by_asset_string(self, asset_string: str) -> Optional[Any]:
        parsed = parse_asset_string(asset_string)
        if parsed is None:
            return None
        return await self.find_context(*parsed)

    # ── Memberships ───────────────────────────────────────────────────────

    @abstractmethod
    async def memberships_for(self, context: Any, user: User) -> List[Membership]:
        """Every membership `user` holds in `context`, any state."""

    @abstractmethod
    async def find_enrollment_by_uuid(self, token: str) -> Optional[Membership]:
        """Enrollment whose feed token matches."""

    @abstractmethod
    async def find_group_membership_by_uuid(self, token: str) -> Optional[Membership]:
        """Active group membership whose feed token matches."""

    @abstractmethod
    async def current_enrollments(self, user: User) -> List[Membership]:
        """The user's non-deleted enrollments."""

    @abstractmethod
    async def current_groups(self, user: User) -> List[Group]:
        """Groups the user is an active member of."""

    @abstractmethod
    async def record_recent_activity(self, membership: Membership) -> None:
        """Stamp the membership's last-activity time."""

    # ── Permissions and principals ────────────────────────────────────────

    @abstractmethod
    async def grants_rights(
        self,
        obj: Any,
        user: Optional[User],
        session: Optional[Mapping[str, Any]],
        actions: Optional[Sequence[str]] = None,
    ) -> Dict[str, bool]:
        """Evaluate `obj`'s permissions for `user`."""

    @abstractmethod
    async def find_access_token(self, token: str) -> Optional[AccessToken]:
        """API access token record, if the token is known."""

    @abstractmethod
    async def quota_for(self, context: Any) -> Quota:
        """Storage quota and usage for a context."""
