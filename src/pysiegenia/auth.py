"""Session authentication against a Siegenia device."""

from __future__ import annotations

import logging

from .const import DEFAULT_USER
from .exceptions import ApiError
from .websocket import DeviceLink

_LOGGER = logging.getLogger(__name__)


class DeviceAuth:
    """Handles login and the session token of one device.

    The device issues a token on every successful login. After a reconnect
    the token is tried first; when the device refuses it, the stored
    credentials are used instead.
    """

    def __init__(self, user: str = DEFAULT_USER, password: str = "") -> None:
        """Initialize the authentication handler."""
        self._user = user
        self._password = password
        self._token: str | None = None

    @property
    def user(self) -> str:
        return self._user

    @property
    def token(self) -> str | None:
        """Return the token of the current session, if logged in."""
        return self._token

    async def async_login(self, link: DeviceLink) -> str | None:
        """Log in, preferring the session token over the credentials.

        Returns:
            str | None: The token issued by the device.

        Raises:
            ApiError: If the device refuses the credentials.
            RequestTimeout: If the device does not answer.
            ConnectionNotInitialized: If the link is not connected.

        """
        if self._token:
            response = await link.login_token(self._token)
            if response.ok:
                _LOGGER.debug("Token login to %s successful.", link.host)
                self._store_token(response.data)
                return self._token
            _LOGGER.info(
                "Token login to %s refused (%s), using credentials.",
                link.host,
                response.status,
            )
            self._token = None

        response = await link.login_user(self._user, self._password)
        if not response.ok:
            _LOGGER.error("Login to %s failed: %s", link.host, response.status)
            raise ApiError(response.status, response.command)
        self._store_token(response.data)
        _LOGGER.info("Login to %s as %s successful.", link.host, self._user)
        return self._token

    def _store_token(self, data: object) -> None:
        if isinstance(data, dict) and data.get("token"):
            self._token = data["token"]
        elif self._token is None:
            _LOGGER.warning("No token found in login response.")

    async def async_logout(self, link: DeviceLink) -> None:
        """End the session and forget the token."""
        self._token = None
        response = await link.logout()
        if not response.ok:
            _LOGGER.debug("Logout from %s answered %s", link.host, response.status)
