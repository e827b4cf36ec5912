"""
Gatehouse — Domain Value Types
===============================

What:  Read-only shapes of the entities Gatehouse reasons about.
Why:   The entities themselves belong to the platform; Gatehouse only needs
       their identity, visibility, availability and lineage.
How:   Frozen Pydantic models. `Context` is a closed tagged union over six
       kinds, discriminated on the `kind` literal, so adding a kind means
       adding a variant here and one arm in ContextResolver.
Who:   Produced by a ContextDirectory, consumed by every service.

Kinds:
    course, account, group, user, course_section, collection_item

Derived names follow one convention everywhere:
    kind "course_section" → context_type "CourseSection"
                          → asset_string "course_section_7"
                          → url_path "/sections/7"
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, ClassVar, Dict, Literal, Optional, Tuple, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_uuid() -> str:
    return uuid4().hex


# ══════════════════════════════════════════════════════════════════════════
# Contexts
# ══════════════════════════════════════════════════════════════════════════

class ContextBase(BaseModel):
    """Fields and naming shared by every context kind."""

    model_config = ConfigDict(frozen=True)

    context_type: ClassVar[str] = "Context"
    url_segment: ClassVar[str] = "contexts"
    available_states: ClassVar[Tuple[str, ...]] = ("available",)

    id: int
    name: str
    uuid: str = Field(default_factory=_new_uuid)
    is_public: bool = False
    workflow_state: str = "available"

    @property
    def short_name(self) -> str:
        return self.name

    @property
    def asset_string(self) -> str:
        return f"{self.kind}_{self.id}"

    @property
    def url_path(self) -> str:
        return f"/{self.url_segment}/{self.id}"

    @property
    def available(self) -> bool:
        return self.workflow_state in self.available_states

    @property
    def deleted(self) -> bool:
        return self.workflow_state == "deleted"

    @property
    def awaiting_publication(self) -> bool:
        return not self.available and not self.deleted


class Course(ContextBase):
    context_type: ClassVar[str] = "Course"
    url_segment: ClassVar[str] = "courses"

    kind: Literal["course"] = "course"
    course_code: Optional[str] = None
    account_id: Optional[int] = None
    start_at: Optional[datetime] = None

    @property
    def short_name(self) -> str:
        return self.course_code or self.name

    @property
    def awaiting_publication(self) -> bool:
        """Created or claimed but not yet published by its teacher."""
        return self.workflow_state in ("created", "claimed")


class Account(ContextBase):
    context_type: ClassVar[str] = "Account"
    url_segment: ClassVar[str] = "accounts"
    available_states: ClassVar[Tuple[str, ...]] = ("active",)

    kind: Literal["account"] = "account"
    workflow_state: str = "active"
    parent_account_id: Optional[int] = None
    root_account_id: Optional[int] = None
    delegated_login_url: Optional[str] = None

    @property
    def is_root(self) -> bool:
        return self.root_account_id is None


class Group(ContextBase):
    context_type: ClassVar[str] = "Group"
    url_segment: ClassVar[str] = "groups"

    kind: Literal["group"] = "group"
    course_id: Optional[int] = None


class User(ContextBase):
    context_type: ClassVar[str] = "User"
    url_segment: ClassVar[str] = "users"
    available_states: ClassVar[Tuple[str, ...]] = ("registered", "pre_registered")

    kind: Literal["user"] = "user"
    workflow_state: str = "registered"


class CourseSection(ContextBase):
    context_type: ClassVar[str] = "CourseSection"
    url_segment: ClassVar[str] = "sections"
    available_states: ClassVar[Tuple[str, ...]] = ("active",)

    kind: Literal["course_section"] = "course_section"
    workflow_state: str = "active"
    course_id: Optional[int] = None


class CollectionItem(ContextBase):
    context_type: ClassVar[str] = "CollectionItem"
    url_segment: ClassVar[str] = "collection_items"
    available_states: ClassVar[Tuple[str, ...]] = ("active",)

    kind: Literal["collection_item"] = "collection_item"
    workflow_state: str = "active"


Context = Annotated[
    Union[Course, Account, Group, User, CourseSection, CollectionItem],
    Field(discriminator="kind"),
]

# kind → variant class
CONTEXT_KINDS: Dict[str, type] = {
    cls.model_fields["kind"].default: cls
    for cls in (Course, Account, Group, User, CourseSection, CollectionItem)
}

# "Course" → "course"
CONTEXT_TYPES: Dict[str, str] = {cls.context_type: kind for kind, cls in CONTEXT_KINDS.items()}


def parse_asset_string(value: str) -> Optional[Tuple[str, int]]:
    """
    Split "course_section_7" into ("course_section", 7).

    Returns None for anything that is not `<known kind>_<integer id>`.
    """
    kind, sep, raw_id = value.strip().rpartition("_")
    if not sep or kind not in CONTEXT_KINDS or not raw_id.isdigit():
        return None
    return kind, int(raw_id)


def parse_context_reference(value: str) -> Optional[Tuple[str, int]]:
    """Accepts both "Course:5" and "course_5"."""
    if ":" in value:
        context_type, _, raw_id = value.strip().partition(":")
        kind = CONTEXT_TYPES.get(context_type.strip())
        raw_id = raw_id.strip()
        if kind is None or not raw_id.isdigit():
            return None
        return kind, int(raw_id)
    return parse_asset_string(value)


# ══════════════════════════════════════════════════════════════════════════
# Memberships
# ══════════════════════════════════════════════════════════════════════════

class MembershipKind(str, Enum):
    ENROLLMENT = "enrollment"
    ACCOUNT_USER = "account_user"
    GROUP_MEMBERSHIP = "group_membership"


# Lower sorts first when picking the best of several memberships
MEMBERSHIP_STATE_ORDER: Dict[str, int] = {
    "active": 0,
    "invited": 1,
    "creation_pending": 2,
    "completed": 3,
    "inactive": 4,
    "rejected": 5,
    "deleted": 6,
}

_MEMBERSHIP_TYPES = {
    MembershipKind.ENROLLMENT: "Enrollment",
    MembershipKind.ACCOUNT_USER: "AccountUser",
    MembershipKind.GROUP_MEMBERSHIP: "GroupMembership",
}


class Membership(BaseModel):
    """A principal's relation to one context. Read-only to Gatehouse."""

    model_config = ConfigDict(frozen=True)

    id: int
    kind: MembershipKind
    user_id: int
    context_id: int
    state: str = "active"
    rank: int = 0
    uuid: str = Field(default_factory=_new_uuid)
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None

    @property
    def membership_type(self) -> str:
        return _MEMBERSHIP_TYPES[self.kind]

    def state_based_on_date(self, now: Optional[datetime] = None) -> str:
        """Active memberships outside their date window read as inactive/completed."""
        if self.state != "active":
            return self.state
        now = now or utcnow()
        if self.start_at and self.start_at > now:
            return "inactive"
        if self.end_at and self.end_at < now:
            return "completed"
        return "active"

    @property
    def sort_key(self) -> Tuple[int, int, int]:
        return (MEMBERSHIP_STATE_ORDER.get(self.state, len(MEMBERSHIP_STATE_ORDER)), self.rank, self.id)


# ══════════════════════════════════════════════════════════════════════════
# Supporting values
# ══════════════════════════════════════════════════════════════════════════

class Crumb(BaseModel):
    name: str
    url: Optional[str] = None
    id: Optional[str] = None


class AccessToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    user_id: int
    developer_key_id: Optional[int] = None


class Quota(BaseModel):
    quota: int
    used: int = 0
