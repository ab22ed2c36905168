"""Device session: setup sequence, value updates and writes."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import logging
from typing import Any

from .auth import DeviceAuth
from .const import (
    CHANNEL_DETAILS,
    CHANNEL_INFO,
    CHANNEL_PARAMS,
    CMD_GET_DEVICE,
    CMD_GET_DEVICE_DETAILS,
    CMD_GET_DEVICE_PARAMS,
    CMD_GET_DEVICE_STATE,
    DEVICE_TYPES,
    PUSH_COMMAND_ALIASES,
)
from .exceptions import (
    ConnectionAlreadyActive,
    MappingError,
    PySiegeniaException,
    SetupError,
    UnknownDeviceType,
)
from .mapper import (
    get_special_device_objects,
    map_to_objects,
    map_to_states,
    map_value_for_write,
    normalize_device_type,
)
from .models import (
    DeviceConfig,
    DeviceResponse,
    LinkEvent,
    PropertyDefinition,
    SetupStage,
)
from .store import PropertyStore
from .websocket import DeviceLink

_LOGGER = logging.getLogger(__name__)


class DeviceSession:
    """Connects one device and keeps its properties in a PropertyStore.

    After the first connection the session runs the setup sequence
    (device info, login, state, parameters, details), publishing a
    property for every field. Pushes from the device then update the
    property values, and writes to writable properties are sent back as
    ``setDeviceParams`` requests.
    """

    def __init__(
        self,
        config: DeviceConfig,
        store: PropertyStore,
        link: DeviceLink | None = None,
        auth: DeviceAuth | None = None,
    ) -> None:
        """Initialize the session."""
        self.config = config
        self.store = store
        self.link = link or DeviceLink.from_config(config)
        self.auth = auth or DeviceAuth(config.user, config.password)
        self.device_id = config.device_id
        self.device_type: int | None = None
        self.stage = SetupStage.IDLE
        self._writable: dict[str, PropertyDefinition] = {}
        self._unsubscribe: list[Callable[[], None]] = []
        self._setup_task: asyncio.Task | None = None
        self._setup_result: asyncio.Future | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def name(self) -> str:
        """Return the configured name, or one derived from the address."""
        return self.config.name or f"Device {self.device_id}"

    @property
    def online_id(self) -> str:
        """Return the id of the reachability indicator."""
        return f"{self.device_id}.online"

    @property
    def reboot_id(self) -> str:
        """Return the id of the reboot button."""
        return f"{self.device_id}.reboot"

    @property
    def writable_ids(self) -> frozenset[str]:
        """Return the ids of all properties accepting writes."""
        return frozenset(self._writable) | {self.reboot_id}

    async def async_start(self) -> None:
        """Subscribe to the link and open the connection.

        Setup runs once the connection is established; use
        :meth:`async_wait_ready` to wait for it.
        """
        if not self._unsubscribe:
            self._unsubscribe = [
                self.link.on(LinkEvent.CONNECTED, self._on_connected),
                self.link.on(LinkEvent.RECONNECTED, self._on_reconnected),
                self.link.on(LinkEvent.CLOSED, self._on_closed),
                self.link.on(LinkEvent.ERROR, self._on_error),
                self.link.on(LinkEvent.DATA, self._on_data),
            ]
        self._setup_result = asyncio.get_running_loop().create_future()
        self.stage = SetupStage.CONNECTING
        _LOGGER.info("Starting session for %s (%s)", self.name, self.config.host)
        try:
            await self.link.connect()
        except ConnectionAlreadyActive:
            _LOGGER.warning("Link to %s already connected", self.config.host)

    async def async_wait_ready(self, timeout: float | None = None) -> None:
        """Wait until the first setup finished.

        Raises:
            SetupError: If a setup stage failed.
            asyncio.TimeoutError: If setup did not finish within ``timeout``.

        """
        if self._setup_result is None:
            err_msg = "Session not started"
            raise PySiegeniaException(err_msg)
        await asyncio.wait_for(asyncio.shield(self._setup_result), timeout)

    async def async_stop(self) -> None:
        """Disconnect the device and detach from the link."""
        for remove in self._unsubscribe:
            remove()
        self._unsubscribe = []
        if self._setup_task is not None and not self._setup_task.done():
            self._setup_task.cancel()
        for task in list(self._tasks):
            task.cancel()
        if self._setup_result is not None and not self._setup_result.done():
            self._setup_result.cancel()
        await self.link.disconnect()
        _LOGGER.info("Session for %s stopped", self.config.host)

    # --- Setup sequence ---

    async def async_setup(self) -> None:
        """Run the setup sequence, stopping at the first failing stage."""
        steps: tuple[tuple[SetupStage, Callable[[], Awaitable[None]]], ...] = (
            (SetupStage.FETCHING_INFO, self._fetch_info),
            (SetupStage.LOGGING_IN, self._login),
            (SetupStage.FETCHING_STATE, self._fetch_state),
            (SetupStage.FETCHING_PARAMS, self._fetch_params),
            (SetupStage.FETCHING_DETAILS, self._fetch_details),
        )
        for stage, step in steps:
            self.stage = stage
            _LOGGER.debug("Setup of %s: %s", self.config.host, stage.value)
            try:
                await step()
            except SetupError:
                self.stage = SetupStage.FAILED
                raise
            except PySiegeniaException as err:
                self.stage = SetupStage.FAILED
                err_msg = f"{stage.value} failed for device {self.config.host}: {err}"
                raise SetupError(stage, err_msg) from err
            except Exception as err:
                _LOGGER.exception(
                    "Unexpected error during %s of %s", stage.value, self.config.host
                )
                self.stage = SetupStage.FAILED
                err_msg = f"{stage.value} failed for device {self.config.host}: {err!r}"
                raise SetupError(stage, err_msg) from err
        self.stage = SetupStage.READY
        _LOGGER.info(
            "Device %s (%s) ready",
            self.config.host,
            DEVICE_TYPES.get(self.device_type),
        )

    async def _fetch_info(self) -> None:
        response = await self.link.get_device_info()
        response.raise_for_status()
        data = response.data if isinstance(response.data, dict) else {}
        device_type = normalize_device_type(data.get("type"))
        if (
            not isinstance(device_type, int)
            or isinstance(device_type, bool)
            or device_type not in DEVICE_TYPES
        ):
            err_msg = f"Unknown device type for device {self.config.host}: {device_type}"
            raise UnknownDeviceType(SetupStage.FETCHING_INFO, err_msg)
        self.device_type = device_type
        self._publish(CHANNEL_INFO, CMD_GET_DEVICE, data)

    async def _login(self) -> None:
        await self.auth.async_login(self.link)

    async def _fetch_state(self) -> None:
        response = await self.link.get_device_state()
        response.raise_for_status()
        self._publish(CHANNEL_PARAMS, CMD_GET_DEVICE_STATE, response.data)

    async def _fetch_params(self) -> None:
        response = await self.link.get_device_params()
        response.raise_for_status()
        self._publish(CHANNEL_PARAMS, CMD_GET_DEVICE_PARAMS, response.data)
        specials = get_special_device_objects(self.device_type) or {}
        for key, definition in specials.items():
            self._set_object(f"{self.device_id}.{CHANNEL_PARAMS}.{key}", definition)

    async def _fetch_details(self) -> None:
        response = await self.link.get_device_details()
        response.raise_for_status()
        self._publish(CHANNEL_DETAILS, CMD_GET_DEVICE_DETAILS, response.data)
        self.store.set_object(
            self.reboot_id,
            PropertyDefinition(
                key="reboot",
                type="boolean",
                role="button",
                read=False,
                write=True,
                value=False,
            ),
        )

    def _publish(self, channel: str, command: str, data: Any) -> None:
        objects = map_to_objects(command, self.device_type, data)
        _LOGGER.debug(
            "Objects for %s/%s/%s: %s", self.config.host, command, channel, list(objects)
        )
        for key, definition in objects.items():
            self._set_object(f"{self.device_id}.{channel}.{key}", definition)

    def _set_object(self, object_id: str, definition: PropertyDefinition) -> None:
        self.store.set_object(object_id, definition)
        if definition.write:
            self._writable[object_id] = definition

    async def _run_setup(self) -> None:
        try:
            await self.async_setup()
        except SetupError as err:
            _LOGGER.error("Setup of %s failed: %s", self.config.host, err)
            self._finish_setup(err)
        else:
            self._finish_setup(None)

    def _finish_setup(self, err: SetupError | None) -> None:
        result = self._setup_result
        if result is None or result.done():
            return
        if err is None:
            result.set_result(None)
        else:
            result.set_exception(err)

    def _start_setup(self) -> None:
        if self._setup_task is not None and not self._setup_task.done():
            self._setup_task.cancel()
        self._setup_task = asyncio.get_running_loop().create_task(self._run_setup())

    # --- Link events ---

    def _on_connected(self) -> None:
        self.store.set_object(
            self.online_id,
            PropertyDefinition(
                key="online",
                type="boolean",
                role="indicator.reachable",
                read=True,
                write=False,
                value=True,
            ),
        )
        self._start_setup()

    def _on_reconnected(self) -> None:
        _LOGGER.info("Connection to device %s: RECONNECTED", self.config.host)
        self.store.set_value(self.online_id, True)
        if self.stage is SetupStage.READY:
            task = asyncio.get_running_loop().create_task(self._relogin())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            self._start_setup()

    async def _relogin(self) -> None:
        try:
            await self.auth.async_login(self.link)
        except PySiegeniaException as err:
            _LOGGER.error("Login after reconnect to %s failed: %s", self.config.host, err)

    def _on_closed(self, code: int, reason: str) -> None:
        _LOGGER.info(
            "Connection to device %s: CLOSED %s / %s", self.config.host, code, reason
        )
        self.store.set_value(self.online_id, False)

    def _on_error(self, error: Exception) -> None:
        _LOGGER.error("Device %s: ERROR %s", self.config.host, error)

    def _on_data(self, status: str | None, data: Any, command: str | None) -> None:
        _LOGGER.debug(
            "DATA for %s: %s / %s / %s", self.config.host, command, status, data
        )
        if not data:
            return
        command = PUSH_COMMAND_ALIASES.get(command, command)
        states = map_to_states(command, self.device_type, data)
        for key, value in states.items():
            self.store.set_value(f"{self.device_id}.{CHANNEL_PARAMS}.{key}", value)

    # --- Writes ---

    async def async_write(self, object_id: str, value: Any) -> DeviceResponse | None:
        """Send a new value of a writable property to the device.

        Returns:
            DeviceResponse | None: The device response, or None when the
            value could not be encoded and nothing was sent.

        Raises:
            MappingError: If the property does not exist or is read-only.

        """
        if object_id == self.reboot_id:
            response = await self.link.reboot_device()
        else:
            definition = self._writable.get(object_id)
            if definition is None:
                err_msg = f"Property {object_id} is not writable"
                raise MappingError(err_msg)
            payload = map_value_for_write(definition.key, value, definition.rule)
            if not payload:
                _LOGGER.warning(
                    "Value %r for %s could not be encoded, not sent", value, object_id
                )
                return None
            _LOGGER.debug("Write to device %s: %s", self.config.host, payload)
            response = await self.link.set_device_params(payload)

        if not response.ok:
            _LOGGER.error(
                "Write of %s to device %s failed: %s",
                object_id,
                self.config.host,
                response.status,
            )
        return response
