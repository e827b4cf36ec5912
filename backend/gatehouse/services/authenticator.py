"""
Gatehouse — Authenticator Interface and Session Implementation
===============================================================

What:  Establishes who is acting for a request: the current user, the real
       user behind a masquerade, and the developer key of an API client.
Why:   Login itself is out of Gatehouse's hands; the pipeline only needs a
       principal. Swapping the strategy (SSO, a gateway header, tests) means
       passing a different Authenticator to `create_app`.

SessionAuthenticator:
    API requests (/api/v1/...) may present `Authorization: Bearer <token>`
    or an `access_token` parameter. A token that resolves to nobody raises
    InvalidAccessTokenError; the rescue handler answers it with 401 and a
    WWW-Authenticate challenge. Without a token, `session["user_id"]` names
    the user and `session["real_user_id"]` the masquerading admin.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from starlette.requests import Request

from gatehouse.exceptions import InvalidAccessTokenError
from gatehouse.services.directory_base import ContextDirectory
from gatehouse.state import RequestState

logger = logging.getLogger(__name__)


class Authenticator(ABC):
    """Fills the principal fields of a RequestState."""

    @abstractmethod
    async def authenticate(self, request: Request, state: RequestState) -> None:
        """
        Set state.current_user (and real_current_user, developer_key_id).

        Raises:
            InvalidAccessTokenError: A presented API token is not valid.
        """


class SessionAuthenticator(Authenticator):
    def __init__(self, directory: ContextDirectory):
        self.directory = directory

    async def authenticate(self, request: Request, state: RequestState) -> None:
        token = self._bearer_token(request, state) if state.is_api else None
        if token is not None:
            access_token = await self.directory.find_access_token(token)
            user = (
                await self.directory.find_context("user", access_token.user_id)
                if access_token is not None else None
            )
            if user is None:
                raise InvalidAccessTokenError(context={"path": state.path})
            state.current_user = user
            state.developer_key_id = access_token.developer_key_id
            return

        user_id = state.session.get("user_id")
        if user_id is None:
            return
        state.current_user = await self.directory.find_context("user", int(user_id))
        if state.current_user is None:
            logger.info("[%s] Session names unknown user %s", state.request_id, user_id)
            return

        real_user_id = state.session.get("real_user_id")
        if real_user_id is not None and int(real_user_id) != state.current_user.id:
            state.real_current_user = await self.directory.find_context("user", int(real_user_id))

    @staticmethod
    def _bearer_token(request: Request, state: RequestState) -> Optional[str]:
        header = request.headers.get("authorization", "")
        scheme, _, credentials = header.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
        return state.params.get("access_token") or None
