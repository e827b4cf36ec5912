"""
Gatehouse — Error Rescue Handler Tests
========================================

What we test:
    ✅ Classification of Gatehouse and foreign exceptions
    ✅ One ErrorReport per rescued exception, with request details
    ✅ Response shape per representation (API, XHR/text, page)
    ✅ Missing report id when the report itself cannot be stored
    ✅ Fail-safe page when rendering the error page fails
"""

import json
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import select
from starlette.requests import Request

from gatehouse.exceptions import (
    ContextRequiredError,
    CsrfInvalidError,
    InvalidAccessTokenError,
)
from gatehouse.models import ErrorReport
from gatehouse.negotiation import Representation
from gatehouse.services import error_rescue
from gatehouse.services.error_rescue import ErrorRescueHandler, classify, status_phrase
from gatehouse.services.permission_gate import NO_CACHE_HEADERS


def build_request(path="/courses/5"):
    return Request(
        {
            "type": "http",
            "method": "GET",
            "scheme": "http",
            "server": ("test", 80),
            "root_path": "",
            "path": path,
            "query_string": b"",
            "headers": [(b"host", b"test")],
        }
    )


async def error_reports(session_factory):
    async with session_factory() as db:
        return (await db.execute(select(ErrorReport).order_by(ErrorReport.id))).scalars().all()


class TestClassify:
    @pytest.mark.parametrize(
        "exc, expected",
        [
            (ContextRequiredError("Course", "999"), (404, "not_found", "404")),
            (ContextRequiredError(), (404, "not_found", "404")),
            (InvalidAccessTokenError(), (401, "invalid_access_token", "401")),
            (CsrfInvalidError(), (401, "default", "AUT")),
            (ValueError("boom"), (500, "default", "500")),
        ],
    )
    def test_classify(self, exc, expected):
        assert classify(exc) == expected

    @pytest.mark.parametrize(
        "status, phrase",
        [(404, "not_found"), (401, "unauthorized"), (500, "internal_server_error"), (799, "error")],
    )
    def test_status_phrase(self, status, phrase):
        assert status_phrase(status) == phrase


class TestApiResponses:
    @pytest.fixture(autouse=True)
    def _handler(self, session_factory):
        self.handler = ErrorRescueHandler(session_factory)

    def _api_state(self, make_state, seed):
        return make_state(
            path="/api/v1/courses/999", user=seed.student,
            representation=Representation.JSON, is_api=True,
        )

    @pytest.mark.asyncio
    async def test_not_found(self, session_factory, make_state, seed):
        state = self._api_state(make_state, seed)

        response = await self.handler.handle(
            build_request("/api/v1/courses/999"), state, ContextRequiredError("Course", "999")
        )

        reports = await error_reports(session_factory)
        assert response.status_code == 404
        assert json.loads(response.body) == {
            "status": "not_found",
            "error_report_id": reports[0].id,
            "message": "The specified resource does not exist.",
        }
        assert len(reports) == 1
        assert reports[0].category == "not_found"
        assert reports[0].exception_class == "ContextRequiredError"
        assert reports[0].request_context_id == "test0001"
        assert reports[0].user_id == seed.student.id
        assert reports[0].account_id == seed.root.id
        assert reports[0].url == "http://test/api/v1/courses/999"
        assert "Cannot find Course for ID: 999" in reports[0].backtrace

    @pytest.mark.asyncio
    async def test_invalid_token_challenge(self, make_state, seed):
        state = self._api_state(make_state, seed)

        response = await self.handler.handle(build_request(), state, InvalidAccessTokenError())

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == 'Bearer realm="gatehouse"'
        assert json.loads(response.body)["message"] == "Invalid access token."

    @pytest.mark.asyncio
    async def test_unexpected_error(self, make_state, seed):
        state = self._api_state(make_state, seed)

        response = await self.handler.handle(build_request(), state, KeyError("missing"))

        body = json.loads(response.body)
        assert response.status_code == 500
        assert body["status"] == "internal_server_error"
        assert body["message"] == "An error occurred."
        for header, value in NO_CACHE_HEADERS.items():
            assert response.headers[header] == value


class TestBrowserResponses:
    @pytest.fixture(autouse=True)
    def _handler(self, session_factory):
        self.handler = ErrorRescueHandler(session_factory)

    @pytest.mark.asyncio
    async def test_xhr_gets_report_id(self, session_factory, make_state, seed):
        session = {}
        state = make_state(user=seed.student, is_xhr=True, representation=Representation.TEXT, session=session)

        response = await self.handler.handle(build_request(), state, RuntimeError("boom"))

        reports = await error_reports(session_factory)
        assert response.status_code == 500
        assert json.loads(response.body) == {
            "errors": {"base": f"Unexpected error, ID: {reports[0].id}"},
            "status": "500",
        }
        assert session["last_error_id"] == reports[0].id

    @pytest.mark.asyncio
    async def test_not_found_page(self, make_state, seed):
        state = make_state(user=seed.student)

        response = await self.handler.handle(build_request(), state, ContextRequiredError("Course", "999"))

        assert response.status_code == 404
        assert 'id="error_404_message"' in response.body.decode()
        assert "test0001" in response.body.decode()

    @pytest.mark.asyncio
    async def test_csrf_failure_uses_generic_page(self, make_state, seed):
        state = make_state(method="POST", user=seed.student)

        response = await self.handler.handle(build_request(), state, CsrfInvalidError())

        body = response.body.decode()
        assert response.status_code == 401
        assert 'id="error_500_message"' in body
        assert 'data-status="AUT"' in body


class TestReportFailures:
    @pytest.mark.asyncio
    async def test_unstored_report_has_no_id(self, make_state, seed):
        handler = ErrorRescueHandler(MagicMock(side_effect=RuntimeError("no database")))
        api_state = make_state(is_api=True, representation=Representation.JSON)
        xhr_state = make_state(is_xhr=True, representation=Representation.TEXT)

        api_response = await handler.handle(build_request(), api_state, ValueError("x"))
        xhr_response = await handler.handle(build_request(), xhr_state, ValueError("x"))

        assert "error_report_id" not in json.loads(api_response.body)
        assert json.loads(xhr_response.body)["errors"]["base"] == "Unexpected error, ID: unknown"

    @pytest.mark.asyncio
    async def test_failsafe_when_error_page_breaks(self, session_factory, make_state, seed):
        handler = ErrorRescueHandler(session_factory)
        state = make_state(user=seed.student)

        with patch.object(
            error_rescue.templates, "TemplateResponse", side_effect=RuntimeError("template broke")
        ):
            response = await handler.handle(build_request(), state, ContextRequiredError("Course", "9"))

        reports = await error_reports(session_factory)
        assert response.status_code == 404
        assert "404 Not Found" in response.body.decode()
        assert response.headers["Cache-Control"] == NO_CACHE_HEADERS["Cache-Control"]
        # The original fault and the rendering fault
        assert [r.exception_class for r in reports] == ["ContextRequiredError", "RuntimeError"]
