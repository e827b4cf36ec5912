"""
Gatehouse — Service Wiring and FastAPI Dependencies
====================================================

What:  Builds the service graph once per application and hands it, together
       with the per-request state, to route handlers.
How:   `create_app` stores a LifecycleServices on `app.state.services`; the
       lifecycle middleware stores the RequestState on `request.state.lifecycle`.
       Routes declare `Depends(get_services)` / `Depends(get_request_state)`.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.requests import Request

from gatehouse.middleware.csrf import CsrfGuard
from gatehouse.services.authenticator import Authenticator
from gatehouse.services.context_resolver import ContextResolver
from gatehouse.services.directory_base import ContextDirectory
from gatehouse.services.error_rescue import ErrorRescueHandler
from gatehouse.services.feed_resolver import TokenFeedResolver
from gatehouse.services.permission_gate import PermissionGate
from gatehouse.services.telemetry import TelemetryRecorder
from gatehouse.state import RequestState


class LifecycleServices:
    """Stateless services shared by every request of one application."""

    def __init__(
        self,
        directory: ContextDirectory,
        authenticator: Authenticator,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self.directory = directory
        self.authenticator = authenticator
        self.session_factory = session_factory
        self.csrf = CsrfGuard()
        self.gate = PermissionGate(directory)
        self.contexts = ContextResolver(directory, self.gate)
        self.feeds = TokenFeedResolver(directory)
        self.telemetry = TelemetryRecorder(session_factory)
        self.rescue = ErrorRescueHandler(session_factory)


def get_services(request: Request) -> LifecycleServices:
    return request.app.state.services


def get_request_state(request: Request) -> RequestState:
    state = getattr(request.state, "lifecycle", None)
    if state is None:
        raise RuntimeError("LifecycleMiddleware is not installed")
    return state
