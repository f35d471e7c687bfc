import logging
from typing import Optional

import httpx
from pydantic import ValidationError as SchemaError

from bakery.schemas import User

from .client import BakeryClient
from .errors import NotAuthenticated

logger = logging.getLogger(__name__)


class AuthSession:
    """
    Current buyer identity as seen by the storefront.

    Fails closed: a missing, expired or unverifiable token means
    "not logged in", never an anonymous order.
    """

    def __init__(self, client: BakeryClient) -> None:
        self._client = client
        self._user: Optional[User] = None

    @property
    def user(self) -> Optional[User]:
        return self._user

    async def login(self, email: str, password: str) -> User:
        try:
            data = await self._client.login(email, password)
        except httpx.HTTPError as e:
            logger.error("Login request failed: %s", str(e))
            raise NotAuthenticated("Could not reach the server. Please try again.") from e

        if not data.get("success"):
            raise NotAuthenticated(data.get("message") or "Invalid email or password")

        self._client.set_token(data["token"])
        self._user = User.model_validate(data["user"])
        logger.info("👤 Logged in as user %s", self._user.id)
        return self._user

    def adopt(self, token: str, user: Optional[User] = None) -> None:
        """Resume a session from a stored token."""
        self._client.set_token(token)
        self._user = user

    def invalidate(self) -> None:
        self._client.set_token(None)
        self._user = None

    logout = invalidate

    def spend_rewards(self, points: int) -> None:
        """Mirrors a redemption the backend has already applied."""
        if self._user is not None:
            self._user = self._user.model_copy(update={"rewards": max(0, self._user.rewards - points)})

    async def current_user(self) -> Optional[User]:
        if not self._client.token:
            self._user = None
            return None
        if self._user is not None:
            return self._user

        try:
            data = await self._client.me()
        except httpx.HTTPError as e:
            logger.warning("Could not load the current user: %s", str(e))
            return None

        if not data.get("success") or not data.get("user"):
            self.invalidate()
            return None
        try:
            self._user = User.model_validate(data["user"])
        except SchemaError:
            logger.warning("Malformed user profile from /auth/me")
            self.invalidate()
            return None
        return self._user

    async def require_user(self) -> User:
        user = await self.current_user()
        if user is None:
            raise NotAuthenticated()
        return user
