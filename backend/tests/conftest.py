"""
Gatehouse — Test Configuration (conftest.py)
=============================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy (all function-scoped):
    ├── seed:             The cast: accounts, courses, groups, users, memberships
    ├── directory:        MemoryDirectory seeded with `seed`
    ├── session_factory:  SQLite (aiosqlite) database in tmp_path with all tables
    ├── make_state:       Builds a RequestState without an HTTP request
    ├── gate / resolver:  Services over `directory`
    ├── app:              create_app() wired to the fixtures above
    └── test_client:      HTTPX AsyncClient for endpoint testing

Acting as a user:
    The app fixture authenticates with HeaderAuthenticator: send
    `X-Test-User-Id: 3` to be user 3. Without the header it falls back to the
    real SessionAuthenticator (bearer tokens on API paths).
"""

import os
from datetime import timedelta
from types import SimpleNamespace

# Override settings for testing BEFORE any gatehouse imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./gatehouse_test.db"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["SESSION_SECRET"] = "test-secret-not-for-production"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from gatehouse.database import Base, build_engine, build_session_factory
from gatehouse.domain import (
    Account,
    CollectionItem,
    Course,
    CourseSection,
    Group,
    Membership,
    MembershipKind,
    User,
    utcnow,
)
from gatehouse.negotiation import Representation
from gatehouse.services.authenticator import SessionAuthenticator
from gatehouse.services.context_resolver import ContextResolver
from gatehouse.services.memory_directory import MemoryDirectory
from gatehouse.services.permission_gate import PermissionGate
from gatehouse.state import RequestState


class HeaderAuthenticator(SessionAuthenticator):
    """Takes the acting user from test headers, else behaves like the session one."""

    async def authenticate(self, request, state):
        user_id = request.headers.get("X-Test-User-Id")
        if user_id is None:
            return await super().authenticate(request, state)
        state.current_user = await self.directory.find_context("user", int(user_id))
        real_user_id = request.headers.get("X-Test-Real-User-Id")
        if real_user_id is not None:
            state.real_current_user = await self.directory.find_context("user", int(real_user_id))
        developer_key = request.headers.get("X-Test-Developer-Key")
        if developer_key is not None:
            state.developer_key_id = int(developer_key)


# ══════════════════════════════════════════════════════════════════════════
# Directory fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def seed():
    """
    Provides the objects every test talks about.

    Accounts:  Default Account (1, root) → Science (10) → Physics (11)
               → Optics (12) → Lasers (13)
    Courses:   BIO101 (5, published), CHEM (6, unpublished), Old (7, deleted),
               Open Astronomy (8, public), Future Physics (17, starts next month)
    Users:     Sam Student (3), Tess Teacher (4), Ada Admin (20), Otto Outsider (21)
    """
    root = Account(id=1, name="Default Account")
    science = Account(id=10, name="Science", parent_account_id=1, root_account_id=1)
    physics = Account(id=11, name="Physics", parent_account_id=10, root_account_id=1)
    optics = Account(id=12, name="Optics", parent_account_id=11, root_account_id=1)
    lasers = Account(id=13, name="Lasers", parent_account_id=12, root_account_id=1)

    next_month = utcnow() + timedelta(days=30)
    return SimpleNamespace(
        root=root,
        site_admin=Account(id=2, name="Site Admin"),
        science=science,
        physics=physics,
        optics=optics,
        lasers=lasers,
        course=Course(id=5, name="Introduction to Biology", course_code="BIO101",
                      account_id=10, uuid="coursetoken5"),
        unpublished=Course(id=6, name="Chemistry", course_code="CHEM", workflow_state="created"),
        deleted=Course(id=7, name="Old Course", workflow_state="deleted"),
        public_course=Course(id=8, name="Open Astronomy", is_public=True, uuid="publictoken8"),
        future_course=Course(id=17, name="Future Physics", start_at=next_month),
        group=Group(id=9, name="Lab Partners", course_id=5, uuid="grouptoken9"),
        section=CourseSection(id=15, name="Section A", course_id=5),
        item=CollectionItem(id=16, name="Reading List"),
        student=User(id=3, name="Sam Student", uuid="usertoken3"),
        teacher=User(id=4, name="Tess Teacher"),
        admin=User(id=20, name="Ada Admin"),
        outsider=User(id=21, name="Otto Outsider"),
        enrollment=Membership(id=100, kind=MembershipKind.ENROLLMENT, user_id=3, context_id=5,
                              uuid="enrollmenttoken100"),
        teacher_enrollment=Membership(id=101, kind=MembershipKind.ENROLLMENT, user_id=4, context_id=5),
        unpublished_enrollment=Membership(id=102, kind=MembershipKind.ENROLLMENT, user_id=3, context_id=6,
                                          uuid="enrollmenttoken102"),
        group_membership=Membership(id=103, kind=MembershipKind.GROUP_MEMBERSHIP, user_id=3, context_id=9,
                                    uuid="groupmembertoken103"),
        account_user=Membership(id=104, kind=MembershipKind.ACCOUNT_USER, user_id=20, context_id=10),
        future_enrollment=Membership(id=105, kind=MembershipKind.ENROLLMENT, user_id=3, context_id=17,
                                     start_at=next_month),
    )


@pytest.fixture
def directory(seed):
    """A MemoryDirectory holding everything in `seed`, with grants."""
    directory = MemoryDirectory(default_account=seed.root, site_admin=seed.site_admin)
    directory.add(
        seed.science, seed.physics, seed.optics, seed.lasers,
        seed.course, seed.unpublished, seed.deleted, seed.public_course, seed.future_course,
        seed.group, seed.section, seed.item,
        seed.student, seed.teacher, seed.admin, seed.outsider,
    )
    directory.add_membership(
        seed.enrollment, seed.teacher_enrollment, seed.unpublished_enrollment,
        seed.group_membership, seed.account_user, seed.future_enrollment,
    )
    directory.grant(seed.course, seed.teacher, "read", "update", "manage_content", "manage_files")
    directory.grant(seed.public_course, None, "read")
    for account in (seed.root, seed.science, seed.physics, seed.optics, seed.lasers):
        directory.grant(account, seed.admin, "read", "manage")
    directory.grant(seed.section, seed.teacher, "read")
    directory.grant(seed.item, seed.student, "read")
    return directory


@pytest.fixture
def gate(directory):
    return PermissionGate(directory)


@pytest.fixture
def resolver(directory, gate):
    return ContextResolver(directory, gate)


# ══════════════════════════════════════════════════════════════════════════
# Database fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """
    Provides a session factory over a fresh SQLite file.

    What:    The real telemetry schema (create_all), no mocks.
    Why:     The SAVEPOINT/merge behaviour of TelemetryStore only shows up
             against a real database.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'telemetry.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    await engine.dispose()


# ══════════════════════════════════════════════════════════════════════════
# State fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def make_state(seed):
    """
    Builds a RequestState as the lifecycle middleware would.

    Usage:
        state = make_state(path="/courses/5", user=seed.student)
    """
    def _make(
        path="/",
        user=None,
        params=None,
        method="GET",
        representation=Representation.PAGE,
        is_api=False,
        is_xhr=False,
        session=None,
        root_account=None,
        developer_key_id=None,
    ):
        return RequestState(
            request_id="test0001",
            representation=representation,
            is_api=is_api,
            is_xhr=is_xhr,
            method=method,
            path=path,
            url=f"http://test{path}",
            host="test",
            params=dict(params or {}),
            session=session if session is not None else {},
            domain_root_account=root_account or seed.root,
            current_user=user,
            developer_key_id=developer_key_id,
        )

    return _make


# ══════════════════════════════════════════════════════════════════════════
# Application fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def app(directory, session_factory):
    from gatehouse.main import create_app
    return create_app(
        directory=directory,
        authenticator=HeaderAuthenticator(directory),
        session_factory=session_factory,
    )


@pytest_asyncio.fixture
async def test_client(app):
    """
    Provides an async HTTP test client for endpoint testing.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
