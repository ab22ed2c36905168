"""WebSocket client for Siegenia devices."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from contextlib import suppress
from dataclasses import dataclass
import inspect
import json
import logging
import ssl
from typing import Any

import websockets

from .const import (
    ABNORMAL_CLOSURE,
    CLOSE_TIMEOUT,
    CMD_GET_DEVICE,
    CMD_GET_DEVICE_DETAILS,
    CMD_GET_DEVICE_PARAMS,
    CMD_GET_DEVICE_STATE,
    CMD_KEEP_ALIVE,
    CMD_LOGIN,
    CMD_LOGOUT,
    CMD_REBOOT_DEVICE,
    CMD_RENEW_CERT,
    CMD_RESET_DEVICE,
    CMD_SET_DEVICE_PARAMS,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_PORT,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SCHEME,
    INITIAL_HEARTBEAT_DELAY,
    OPEN_TIMEOUT,
    RECONNECT_BASE_DELAY,
    RECONNECT_MAX_DELAY,
    RECONNECT_STEP_DELAY,
    REQUEST_ID_START,
    SENSITIVE_KEYS,
    SUPPORTED_SCHEMES,
    WEBSOCKET_PATH,
)
from .exceptions import (
    ApiError,
    ConnectionAlreadyActive,
    ConnectionNotInitialized,
    ProtocolError,
    PySiegeniaException,
    RequestTimeout,
    TransportError,
)
from .models import DeviceConfig, DeviceResponse, LinkEvent, LinkState

_LOGGER = logging.getLogger(__name__)

Listener = Callable[..., Any]
Connector = Callable[..., Awaitable[Any]]

_CONNECT_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    websockets.exceptions.WebSocketException,
)


def compute_reconnect_delay(
    error_counter: int,
    base: float = RECONNECT_BASE_DELAY,
    step: float = RECONNECT_STEP_DELAY,
    maximum: float = RECONNECT_MAX_DELAY,
) -> float:
    """Return the delay in seconds before the next reconnect attempt."""
    return min(max(error_counter, 0) * step + base, maximum)


def _redact(request: Mapping[str, Any]) -> dict[str, Any]:
    return {
        key: "***" if key in SENSITIVE_KEYS else value
        for key, value in request.items()
    }


@dataclass
class PendingRequest:
    """A request waiting for its correlated response."""

    command: str | None
    future: asyncio.Future
    timer: asyncio.TimerHandle


class DeviceLink:
    """Maintains the WebSocket connection to a single Siegenia device.

    Requests are correlated with their responses by an integer id. Messages
    that match no pending request are unsolicited pushes and are delivered
    to ``DATA`` listeners. When the connection drops, the link reconnects
    with a growing delay until :meth:`disconnect` is called.

    Attributes:
        host (str): Address of the device.
        port (int): TCP port of the device web interface.
        scheme (str): ``ws`` or ``wss``.
        _websocket: The open connection, or None.
        _listener_task (Optional[asyncio.Task]): Task reading inbound messages.
        _heartbeat_task (Optional[asyncio.Task]): Task running the keep-alive chain.
        _reconnect_task (Optional[asyncio.Task]): Scheduled reconnect attempt.
        _pending (dict[int, PendingRequest]): Requests awaiting a response.
        _error_counter (int): Consecutive closes without a valid message.
        _stop (bool): Set by disconnect() to suppress reconnects.

    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        scheme: str = DEFAULT_SCHEME,
        *,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        initial_heartbeat_delay: float = INITIAL_HEARTBEAT_DELAY,
        reconnect_base_delay: float = RECONNECT_BASE_DELAY,
        reconnect_step_delay: float = RECONNECT_STEP_DELAY,
        reconnect_max_delay: float = RECONNECT_MAX_DELAY,
        request_id_start: int = REQUEST_ID_START,
        connector: Connector | None = None,
    ) -> None:
        """Initialize the link.

        Args:
            host (str): IP address or hostname of the device.
            port (int): Port of the device WebSocket endpoint.
            scheme (str): ``wss`` (default) or ``ws``.
            request_timeout (float): Seconds to wait for a response.
            heartbeat_interval (float): Seconds between keep-alive requests.
            initial_heartbeat_delay (float): Delay of the first keep-alive
                after the connection opened.
            reconnect_base_delay (float): Backoff delay before any error.
            reconnect_step_delay (float): Backoff increase per error.
            reconnect_max_delay (float): Upper bound of the backoff delay.
            request_id_start (int): Counter start; the first id sent is
                one higher.
            connector (Callable): Coroutine function opening the
                connection. Defaults to ``websockets.connect``.

        Raises:
            ValueError: If ``scheme`` is neither ``ws`` nor ``wss``.

        """
        if scheme not in SUPPORTED_SCHEMES:
            err_msg = f"Unsupported scheme: {scheme}"
            raise ValueError(err_msg)

        self.host = host
        self.port = port
        self.scheme = scheme
        self._request_timeout = request_timeout
        self._heartbeat_interval = heartbeat_interval
        self._initial_heartbeat_delay = initial_heartbeat_delay
        self._reconnect_base_delay = reconnect_base_delay
        self._reconnect_step_delay = reconnect_step_delay
        self._reconnect_max_delay = reconnect_max_delay
        self._connector = connector or websockets.connect

        self._websocket: Any = None
        self._listener_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._state = LinkState.DISCONNECTED
        self._was_connected = False
        self._stop = False
        self._error_counter = 0
        self._request_id = request_id_start
        self._pending: dict[int, PendingRequest] = {}
        self._listeners: dict[LinkEvent, list[Listener]] = {
            event: [] for event in LinkEvent
        }
        self._listener_jobs: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, config: DeviceConfig, **kwargs: Any) -> DeviceLink:
        """Create a link for a device configuration."""
        return cls(
            config.host,
            config.port,
            config.scheme,
            request_timeout=config.request_timeout,
            heartbeat_interval=config.heartbeat_interval,
            **kwargs,
        )

    @property
    def origin(self) -> str:
        """Return the origin sent with the handshake."""
        return f"{self.scheme}://{self.host}:{self.port}"

    @property
    def url(self) -> str:
        """Return the WebSocket URL of the device."""
        return self.origin + WEBSOCKET_PATH

    @property
    def state(self) -> LinkState:
        """Return the connection state."""
        return self._state

    @property
    def connected(self) -> bool:
        """Return True while a transport is open."""
        return self._websocket is not None

    @property
    def was_connected(self) -> bool:
        """Return True once the link has been connected at least once."""
        return self._was_connected

    @property
    def error_counter(self) -> int:
        """Return the number of consecutive closes without a valid message."""
        return self._error_counter

    @property
    def pending_requests(self) -> frozenset[int]:
        """Return the ids of requests still awaiting a response."""
        return frozenset(self._pending)

    # --- Events ---

    def on(self, event: LinkEvent, listener: Listener) -> Callable[[], None]:
        """Register a listener for an event and return a function removing it.

        Listener arguments per event: CONNECTED and RECONNECTED none,
        CLOSED ``(code, reason)``, ERROR ``(error)``, DATA
        ``(status, data, command)``. Coroutine functions are scheduled as
        tasks.
        """
        self._listeners[event].append(listener)

        def remove() -> None:
            with suppress(ValueError):
                self._listeners[event].remove(listener)

        return remove

    def _emit(self, event: LinkEvent, *args: Any) -> None:
        for listener in list(self._listeners[event]):
            try:
                result = listener(*args)
            except Exception:
                _LOGGER.exception("Error in %s listener for %s", event.value, self.host)
                continue
            if inspect.isawaitable(result):
                job = asyncio.ensure_future(result)
                self._listener_jobs.add(job)
                job.add_done_callback(self._listener_job_done)

    def _listener_job_done(self, job: asyncio.Future) -> None:
        self._listener_jobs.discard(job)
        if not job.cancelled() and job.exception() is not None:
            _LOGGER.error(
                "Error in async listener for %s",
                self.host,
                exc_info=job.exception(),
            )

    # --- Connection lifecycle ---

    def _connect_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "origin": self.origin,
            "open_timeout": OPEN_TIMEOUT,
            "close_timeout": CLOSE_TIMEOUT,
            # keepAlive requests replace protocol pings
            "ping_interval": None,
        }
        if self.scheme == "wss":
            # Devices use a self-signed certificate
            ssl_context = ssl.create_default_context()
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE
            kwargs["ssl"] = ssl_context
        return kwargs

    async def connect(self) -> bool:
        """Open the connection and start the heartbeat.

        Emits CONNECTED on the first successful connection and RECONNECTED
        afterwards. A failed attempt is reported through ERROR and CLOSED
        and schedules a reconnect.

        Returns:
            bool: True if the connection was opened.

        Raises:
            ConnectionAlreadyActive: If a connection is open or opening.

        """
        if self._websocket is not None or self._state is LinkState.CONNECTING:
            err_msg = f"Connection to {self.host} already active"
            raise ConnectionAlreadyActive(err_msg)

        self._stop = False
        self._state = LinkState.CONNECTING
        _LOGGER.info("Connecting to %s", self.url)
        try:
            websocket = await self._connector(self.url, **self._connect_kwargs())
        except asyncio.CancelledError:
            self._state = LinkState.DISCONNECTED
            raise
        except _CONNECT_ERRORS as err:
            _LOGGER.warning("Connection to %s failed: %s", self.url, err)
            self._state = LinkState.ERROR
            err_msg = f"Connection to {self.url} failed: {err}"
            self._emit(
                LinkEvent.ERROR,
                TransportError(err_msg, ABNORMAL_CLOSURE, str(err)),
            )
            self._handle_close(ABNORMAL_CLOSURE, str(err))
            return False

        if self._stop:
            _LOGGER.info("Disconnect requested while connecting to %s", self.host)
            self._state = LinkState.DISCONNECTED
            await websocket.close()
            return False

        self._websocket = websocket
        self._state = LinkState.CONNECTED
        _LOGGER.info("WebSocket connection to %s open, starting heartbeat", self.host)
        self._listener_task = asyncio.create_task(self._listen(websocket))
        self.heartbeat(self._initial_heartbeat_delay)
        if not self._was_connected:
            self._was_connected = True
            self._emit(LinkEvent.CONNECTED)
        else:
            self._emit(LinkEvent.RECONNECTED)
        return True

    async def _listen(self, websocket: Any) -> None:
        """Read inbound messages until the connection closes."""
        try:
            async for message in websocket:
                self._handle_message(message)
        except websockets.exceptions.ConnectionClosedError as err:
            _LOGGER.warning("Connection to %s closed with error: %s", self.host, err)
        except asyncio.CancelledError:
            _LOGGER.info("Listener for %s cancelled", self.host)
            self._stop = True
            raise
        except Exception as err:
            _LOGGER.exception("Unexpected error in listener loop for %s", self.host)
            self._state = LinkState.ERROR
            err_msg = f"Listener for {self.host} failed: {err}"
            self._emit(
                LinkEvent.ERROR, TransportError(err_msg, ABNORMAL_CLOSURE, str(err))
            )
            self._terminate(websocket)
        finally:
            code = getattr(websocket, "close_code", None) or ABNORMAL_CLOSURE
            reason = getattr(websocket, "close_reason", None) or ""
            self._handle_close(code, reason)

    def _terminate(self, websocket: Any) -> None:
        transport = getattr(websocket, "transport", None)
        if transport is not None:
            transport.abort()

    def _handle_close(self, code: int, reason: str) -> None:
        self._websocket = None
        self._listener_task = None
        self._state = LinkState.DISCONNECTED
        self._error_counter += 1
        self._cancel_heartbeat()
        _LOGGER.info(
            "WebSocket to %s closed (code=%s, reason='%s')",
            self.host,
            code,
            reason or "No reason given",
        )
        if not self._stop:
            delay = compute_reconnect_delay(
                self._error_counter,
                self._reconnect_base_delay,
                self._reconnect_step_delay,
                self._reconnect_max_delay,
            )
            _LOGGER.warning("Reconnecting to %s in %.1f seconds", self.host, delay)
            self._reconnect_task = asyncio.get_running_loop().create_task(
                self._reconnect_after(delay)
            )
        self._emit(LinkEvent.CLOSED, code, reason)

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reconnect_task = None
        if self._stop:
            return
        _LOGGER.info("Reconnecting to %s (errors: %d)", self.host, self._error_counter)
        try:
            await self.connect()
        except ConnectionAlreadyActive:
            _LOGGER.debug("Reconnect to %s skipped, already connected", self.host)

    async def disconnect(self, force: bool = False) -> None:
        """Close the connection and stop reconnecting.

        Args:
            force (bool): Abort the transport instead of a closing handshake.

        """
        self._stop = True
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

        websocket = self._websocket
        if websocket is None:
            return

        _LOGGER.info("Disconnecting from %s%s", self.host, " (forced)" if force else "")
        self._state = LinkState.CLOSING
        self._cancel_heartbeat()
        if force:
            self._terminate(websocket)
        else:
            try:
                await websocket.close()
            except websockets.exceptions.WebSocketException as err:
                _LOGGER.warning("Error closing connection to %s: %s", self.host, err)

        listener = self._listener_task
        if listener is not None and listener is not asyncio.current_task():
            with suppress(asyncio.CancelledError):
                await listener

    # --- Heartbeat ---

    def heartbeat(self, delay: float | None = None) -> None:
        """Start the keep-alive chain, replacing a running one.

        The chain stops at the first failed or non-ok keep-alive and emits
        ERROR; reconnecting is left to the close handling.
        """
        self._cancel_heartbeat()
        if delay is None:
            delay = self._heartbeat_interval
        self._heartbeat_task = asyncio.get_running_loop().create_task(
            self._heartbeat_loop(delay)
        )

    async def _heartbeat_loop(self, delay: float) -> None:
        while True:
            await asyncio.sleep(delay)
            try:
                response = await self.send_request(
                    CMD_KEEP_ALIVE, {"extend_session": True}
                )
            except PySiegeniaException as err:
                _LOGGER.warning("Heartbeat to %s failed: %s", self.host, err)
                self._emit(LinkEvent.ERROR, err)
                return
            if not response.ok:
                _LOGGER.warning(
                    "Heartbeat response from %s is not ok: %s",
                    self.host,
                    response.status,
                )
                self._emit(LinkEvent.ERROR, ApiError(response.status, CMD_KEEP_ALIVE))
                return
            delay = self._heartbeat_interval

    def _cancel_heartbeat(self) -> None:
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # --- Requests ---

    async def send_request(
        self,
        command: str | Mapping[str, Any],
        params: Any = None,
        *,
        expect_response: bool = True,
        timeout: float | None = None,
    ) -> DeviceResponse | None:
        """Send a request and wait for its response.

        Args:
            command (str | Mapping): Command name, or a complete envelope
                for commands with extra top-level fields.
            params (Any): Optional ``params`` member of the envelope.
            expect_response (bool): When False the request is sent without
                waiting for (or correlating) a response.
            timeout (float | None): Overrides the link's request timeout.

        Returns:
            DeviceResponse | None: The response, or None when no response
            is expected.

        Raises:
            ConnectionNotInitialized: If no connection is open.
            RequestTimeout: If no response arrived in time.
            TransportError: If the connection closed while sending.

        """
        websocket = self._websocket
        if websocket is None:
            err_msg = f"Connection to {self.host} not initialized"
            raise ConnectionNotInitialized(err_msg)

        self._request_id += 1
        request_id = self._request_id
        if isinstance(command, str):
            request: dict[str, Any] = {"command": command}
        else:
            request = dict(command)
        if params is not None:
            request["params"] = params
        request["id"] = request_id
        command_name = request.get("command")

        future = None
        if expect_response:
            loop = asyncio.get_running_loop()
            future = loop.create_future()
            timer = loop.call_later(
                self._request_timeout if timeout is None else timeout,
                self._expire_request,
                request_id,
            )
            self._pending[request_id] = PendingRequest(command_name, future, timer)

        _LOGGER.debug("%s: SEND %s", self.host, _redact(request))
        try:
            await websocket.send(json.dumps(request))
        except websockets.exceptions.ConnectionClosed as err:
            pending = self._pending.pop(request_id, None)
            if pending is not None:
                pending.timer.cancel()
            err_msg = f"Connection to {self.host} closed while sending {command_name}"
            close = err.rcvd or err.sent
            raise TransportError(
                err_msg,
                close.code if close is not None else None,
                close.reason if close is not None else None,
            ) from err

        if future is None:
            return None
        return await future

    def _expire_request(self, request_id: int) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return
        _LOGGER.debug("%s: TIMEOUT for %s", self.host, request_id)
        if not pending.future.done():
            pending.future.set_exception(RequestTimeout(request_id, pending.command))

    def _handle_message(self, raw: Any) -> None:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as err:
            self._emit(
                LinkEvent.ERROR,
                ProtocolError(f"Invalid JSON from {self.host}: {err}", raw),
            )
            return
        if not isinstance(message, dict):
            self._emit(
                LinkEvent.ERROR,
                ProtocolError(f"Unexpected message from {self.host}", raw),
            )
            return

        if self._error_counter > 1:
            _LOGGER.debug("%s: message resets error counter", self.host)
        self._error_counter = 0
        _LOGGER.debug("%s: RECEIVED %s", self.host, message)

        request_id = message.get("id")
        pending = None
        if isinstance(request_id, int) and not isinstance(request_id, bool):
            pending = self._pending.pop(request_id, None)

        if pending is not None:
            pending.timer.cancel()
            if not pending.future.done():
                pending.future.set_result(
                    DeviceResponse(
                        message.get("status"),
                        message.get("data"),
                        pending.command,
                    )
                )
            return

        self._emit(
            LinkEvent.DATA,
            message.get("status"),
            message.get("data"),
            message.get("command"),
        )

    # --- Command vocabulary ---

    async def login_user(
        self, user: str, password: str, long_life: bool = False
    ) -> DeviceResponse:
        """Log in with user name and password."""
        return await self.send_request(
            {
                "command": CMD_LOGIN,
                "user": user,
                "password": password,
                "long_life": long_life,
            }
        )

    async def login_token(self, token: str) -> DeviceResponse:
        """Log in with a token from a previous login."""
        return await self.send_request({"command": CMD_LOGIN, "token": token})

    async def logout(self) -> DeviceResponse:
        """End the session on the device."""
        return await self.send_request(CMD_LOGOUT)

    async def get_device_info(self) -> DeviceResponse:
        """Request type, name, serial number and firmware versions."""
        return await self.send_request(CMD_GET_DEVICE)

    async def get_device_state(self) -> DeviceResponse:
        """Request the device state (``deviceactive``)."""
        return await self.send_request(CMD_GET_DEVICE_STATE)

    async def get_device_params(self) -> DeviceResponse:
        """Request the current parameter set."""
        return await self.send_request(CMD_GET_DEVICE_PARAMS)

    async def set_device_params(self, params: Mapping[str, Any]) -> DeviceResponse:
        """Write a nested parameter body, as built by map_value_for_write."""
        return await self.send_request(CMD_SET_DEVICE_PARAMS, params)

    async def get_device_details(self) -> DeviceResponse:
        """Request network and maintenance details."""
        return await self.send_request(CMD_GET_DEVICE_DETAILS)

    async def reset_device(self) -> DeviceResponse:
        """Reset the device to factory settings."""
        return await self.send_request(CMD_RESET_DEVICE)

    async def reboot_device(self) -> DeviceResponse:
        """Restart the device."""
        return await self.send_request(CMD_REBOOT_DEVICE)

    async def renew_cert(self) -> DeviceResponse:
        """Ask the device to renew its TLS certificate."""
        return await self.send_request(CMD_RENEW_CERT)
