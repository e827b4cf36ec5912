"""
Gatehouse — Permission Gate Unit Tests
========================================

What we test:
    ✅ Any-match evaluation and denial reasons
    ✅ Per-request permission cache: filled once, only for (context, current user)
    ✅ Evaluation errors deny instead of raising
    ✅ Denial rendering per representation (page, delegated login, archive, JSON)
    ✅ Unpublished / not-started explanations
    ✅ Storage quota check
"""

import json
import logging

import pytest
from starlette.requests import Request

from gatehouse.negotiation import Representation
from gatehouse.services.permission_gate import (
    GENERIC_UNAUTHORIZED,
    NO_CACHE_HEADERS,
    QUOTA_MESSAGES,
    UNPUBLISHED_MESSAGES,
    DenialReason,
)


def build_request(path="/courses/5", query="", method="GET"):
    """A bare Starlette request; enough for rendering denials."""
    return Request(
        {
            "type": "http",
            "method": method,
            "scheme": "http",
            "server": ("test", 80),
            "root_path": "",
            "path": path,
            "query_string": query.encode(),
            "headers": [(b"host", b"test")],
        }
    )


class TestAuthorize:
    @pytest.mark.asyncio
    async def test_any_requested_action_suffices(self, gate, make_state, seed):
        state = make_state(user=seed.teacher)

        decision = await gate.authorize(state, seed.course, seed.teacher, ["delete", "update"])

        assert decision.granted
        assert bool(decision) is True

    @pytest.mark.asyncio
    async def test_membership_grants_read_only(self, gate, make_state, seed):
        state = make_state(user=seed.student)

        assert await gate.is_authorized(state, seed.course, seed.student, "read")
        decision = await gate.authorize(state, seed.course, seed.student, ["update"])
        assert not decision
        assert decision.reason is DenialReason.FORBIDDEN

    @pytest.mark.asyncio
    async def test_anonymous_denial_reason(self, gate, make_state, seed):
        state = make_state()

        decision = await gate.authorize(state, seed.course, None, "read")

        assert decision.reason is DenialReason.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_missing_object_is_denied(self, gate, make_state, seed):
        state = make_state(user=seed.teacher)

        assert not await gate.is_authorized(state, None, seed.teacher, "read")

    @pytest.mark.asyncio
    async def test_evaluation_error_denies_and_logs(self, gate, directory, make_state, seed, caplog):
        directory.fail_permissions_for(seed.course)
        state = make_state(user=seed.teacher)

        with caplog.at_level(logging.WARNING, logger="gatehouse.services.permission_gate"):
            decision = await gate.authorize(state, seed.course, seed.teacher, ["read"])

        assert decision.granted is False
        assert decision.reason is DenialReason.EVALUATION_ERROR
        assert "course_5" in caplog.text


class TestPermissionCache:
    @pytest.mark.asyncio
    async def test_context_rights_fetched_once(self, gate, directory, make_state, seed):
        state = make_state(user=seed.teacher)
        state.context = seed.course

        assert await gate.is_authorized(state, seed.course, seed.teacher, "read")
        lookups = directory.lookups
        assert await gate.is_authorized(state, seed.course, seed.teacher, "update")
        assert not await gate.is_authorized(state, seed.course, seed.teacher, "delete")

        assert directory.lookups == lookups
        assert state.permission_cache[("course_5", 4)]["manage_files"] is True

    @pytest.mark.asyncio
    async def test_other_objects_are_not_cached(self, gate, make_state, seed):
        state = make_state(user=seed.teacher)
        state.context = seed.course

        await gate.is_authorized(state, seed.group, seed.teacher, "read")
        await gate.is_authorized(state, seed.course, seed.student, "read")

        assert state.permission_cache == {}

    @pytest.mark.asyncio
    async def test_cache_does_not_outlive_the_request(self, gate, directory, make_state, seed):
        first = make_state(user=seed.teacher)
        first.context = seed.course
        await gate.is_authorized(first, seed.course, seed.teacher, "read")

        second = make_state(user=seed.teacher)
        second.context = seed.course
        lookups = directory.lookups
        await gate.is_authorized(second, seed.course, seed.teacher, "read")

        assert directory.lookups == lookups + 1
        assert second.permission_cache is not first.permission_cache


class TestRenderUnauthorized:
    @pytest.mark.asyncio
    async def test_page_denial(self, gate, make_state, seed):
        session = {}
        state = make_state(path="/courses/5", user=seed.outsider, session=session)
        state.add_crumb("BIO101", "/courses/5")

        response = await gate.authorized_action(
            build_request(), state, seed.course, seed.outsider, "read"
        )

        assert response.status_code == 401
        assert 'id="unauthorized_message"' in response.body.decode()
        assert GENERIC_UNAUTHORIZED in response.body.decode()
        assert state.crumbs == []
        assert state.show_left_side is False
        assert session["return_to"] == "http://test/courses/5"
        for header, value in NO_CACHE_HEADERS.items():
            assert response.headers[header] == value

    @pytest.mark.asyncio
    async def test_granted_returns_none(self, gate, make_state, seed):
        state = make_state(user=seed.student)

        assert await gate.authorized_action(build_request(), state, seed.course, seed.student, "read") is None

    @pytest.mark.asyncio
    async def test_anonymous_goes_to_delegated_login(self, gate, make_state, seed):
        sso_root = seed.root.model_copy(update={"delegated_login_url": "https://sso.example.edu/login"})
        state = make_state(path="/courses/5", root_account=sso_root)

        response = await gate.render_unauthorized(build_request(), state, seed.course)

        assert response.status_code == 302
        assert response.headers["location"] == "https://sso.example.edu/login"

    @pytest.mark.asyncio
    async def test_local_login_skips_delegation(self, gate, make_state, seed):
        sso_root = seed.root.model_copy(update={"delegated_login_url": "https://sso.example.edu/login"})
        state = make_state(path="/courses/5", root_account=sso_root, params={"local_login": "1"})

        response = await gate.render_unauthorized(build_request(query="local_login=1"), state, seed.course)

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_archive_bounces_to_plain_url(self, gate, make_state, seed):
        state = make_state(
            path="/courses/5/export.zip", user=seed.student, representation=Representation.ARCHIVE
        )
        request = build_request(path="/courses/5/export.zip", query="format=zip&section=2")

        response = await gate.render_unauthorized(request, state, seed.course)

        assert response.status_code == 302
        assert response.headers["location"] == "/courses/5/export?section=2"
        assert response.headers["Cache-Control"] == NO_CACHE_HEADERS["Cache-Control"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("representation", [Representation.JSON, Representation.TEXT])
    async def test_json_body(self, gate, make_state, seed, representation):
        state = make_state(user=seed.student, representation=representation)

        response = await gate.render_unauthorized(build_request(), state, seed.course)

        assert response.status_code == 401
        assert json.loads(response.body) == {"status": "unauthorized", "message": GENERIC_UNAUTHORIZED}


class TestUnauthorizedMessage:
    def test_unpublished_course(self, gate, make_state, seed):
        state = make_state(user=seed.student)
        state.context = seed.unpublished
        state.context_membership = seed.unpublished_enrollment

        message, reason = gate.unauthorized_message(state)

        assert message == UNPUBLISHED_MESSAGES["course"]
        assert reason is DenialReason.UNPUBLISHED

    def test_course_not_started(self, gate, make_state, seed):
        state = make_state(user=seed.student)
        state.context = seed.future_course
        state.context_membership = seed.future_enrollment
        start = seed.future_enrollment.start_at

        message, reason = gate.unauthorized_message(state)

        assert reason is DenialReason.NOT_STARTED
        assert f"{start:%b} {start.day}, {start.year}" in message

    def test_unpublished_group(self, gate, make_state, seed):
        state = make_state(user=seed.student)
        state.context = seed.group.model_copy(update={"workflow_state": "pending"})
        state.context_membership = seed.group_membership

        message, reason = gate.unauthorized_message(state)

        assert message == UNPUBLISHED_MESSAGES["group"]
        assert reason is DenialReason.UNPUBLISHED

    def test_inactive_account(self, gate, make_state, seed):
        state = make_state(user=seed.admin)
        state.context = seed.science.model_copy(update={"workflow_state": "pending"})
        state.context_membership = seed.account_user

        message, reason = gate.unauthorized_message(state)

        assert message == UNPUBLISHED_MESSAGES["account"]
        assert reason is DenialReason.UNPUBLISHED

    def test_deleted_group_is_generic(self, gate, make_state, seed):
        state = make_state(user=seed.student)
        state.context = seed.group.model_copy(update={"workflow_state": "deleted"})
        state.context_membership = seed.group_membership

        message, reason = gate.unauthorized_message(state)

        assert message == GENERIC_UNAUTHORIZED
        assert reason is None

    def test_generic_without_membership(self, gate, make_state, seed):
        state = make_state(user=seed.outsider)
        state.context = seed.unpublished

        message, reason = gate.unauthorized_message(state)

        assert message == GENERIC_UNAUTHORIZED
        assert reason is None

    @pytest.mark.asyncio
    async def test_page_carries_reason(self, gate, make_state, seed):
        state = make_state(path="/courses/6", user=seed.student)
        state.context = seed.unpublished
        state.context_membership = seed.unpublished_enrollment

        response = await gate.render_unauthorized(build_request(path="/courses/6"), state, seed.unpublished)

        body = response.body.decode()
        assert 'data-reason="unpublished"' in body
        assert UNPUBLISHED_MESSAGES["course"] in body


class TestQuota:
    @pytest.mark.asyncio
    async def test_within_quota(self, gate, directory, make_state, seed):
        directory.set_quota(seed.course, quota=1000, used=400)
        state = make_state(user=seed.teacher)
        state.context = seed.course

        assert await gate.quota_exceeded(state, 600) is None

    @pytest.mark.asyncio
    async def test_page_redirects_with_flash(self, gate, directory, make_state, seed):
        directory.set_quota(seed.course, quota=1000, used=400)
        session = {}
        state = make_state(user=seed.teacher, session=session)
        state.context = seed.course

        response = await gate.quota_exceeded(state, 601, redirect="/courses/5")

        assert response.status_code == 302
        assert response.headers["location"] == "/courses/5"
        assert session["flash_error"] == QUOTA_MESSAGES["course"]

    @pytest.mark.asyncio
    async def test_json_error(self, gate, directory, make_state, seed):
        directory.set_quota(seed.course, quota=1000, used=400)
        state = make_state(user=seed.teacher, representation=Representation.JSON)
        state.context = seed.course

        response = await gate.quota_exceeded(state, 601)

        assert response.status_code == 400
        assert json.loads(response.body) == {"errors": {"base": "Course storage quota exceeded"}}
