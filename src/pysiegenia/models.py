"""Data models for pysiegenia."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Optional

from .const import (
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_PORT,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SCHEME,
    DEFAULT_USER,
    STATUS_OK,
    SUPPORTED_SCHEMES,
)
from .exceptions import ApiError, ConfigError


class Encoding(Enum):
    """How a property value is nested on the wire."""

    PLAIN = "plain"
    COLOR_HEX = "color_hex"
    DATE_TIME = "date_time"
    TIME_HHMM = "time_hhmm"
    TIME_HHMMSS = "time_hhmmss"


class LinkState(Enum):
    """Connection state of a DeviceLink."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"
    ERROR = "error"


class LinkEvent(Enum):
    """Events emitted by a DeviceLink."""

    CONNECTED = "connected"
    RECONNECTED = "reconnected"
    CLOSED = "closed"
    ERROR = "error"
    DATA = "data"


class SetupStage(Enum):
    """Stages of the device setup sequence."""

    IDLE = "idle"
    CONNECTING = "connecting"
    FETCHING_INFO = "fetching_info"
    LOGGING_IN = "logging_in"
    FETCHING_STATE = "fetching_state"
    FETCHING_PARAMS = "fetching_params"
    FETCHING_DETAILS = "fetching_details"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class FieldRule:
    """Mapping rule for one wire field.

    Every attribute is optional; ``None`` means "not specified by this
    layer" so that layers can be merged with :meth:`merged`.
    """

    id: Optional[str] = None
    read: Optional[bool] = None
    write: Optional[bool] = None
    type: Optional[str] = None
    role: Optional[str] = None
    unit: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None
    default: Any = None
    states: Optional[Mapping[int, str]] = None
    encoding: Optional[Encoding] = None
    handle_as_string: Optional[bool] = None
    real_id: Optional[str] = None
    max_hour: Optional[int] = None
    ignore: Optional[bool] = None

    def merged(self, other: FieldRule | None) -> FieldRule:
        """Return a copy overridden by every attribute ``other`` specifies."""
        if other is None:
            return self
        overrides = {
            f.name: getattr(other, f.name)
            for f in fields(other)
            if getattr(other, f.name) is not None
        }
        return replace(self, **overrides) if overrides else self


EMPTY_RULE = FieldRule()


@dataclass
class PropertyDefinition:
    """A flat, typed property derived from a wire field."""

    key: str
    type: Optional[str] = None
    role: Optional[str] = None
    read: Optional[bool] = None
    write: Optional[bool] = None
    unit: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None
    default: Any = None
    states: Optional[Mapping[int, str]] = None
    value: Any = None
    rule: FieldRule = EMPTY_RULE

    @property
    def native(self) -> dict[str, Any]:
        """Return the write-back metadata as a plain dictionary."""
        native: dict[str, Any] = {}
        if self.rule.real_id:
            native["real_id"] = self.rule.real_id
        if self.rule.states:
            native["states"] = dict(self.rule.states)
        if self.rule.handle_as_string:
            native["handle_as_string"] = True
        if self.rule.encoding and self.rule.encoding is not Encoding.PLAIN:
            native["encoding"] = self.rule.encoding.value
        if self.rule.max_hour is not None:
            native["max_hour"] = self.rule.max_hour
        return native


@dataclass(frozen=True)
class DeviceResponse:
    """A response (or push) received from the device."""

    status: Optional[str]
    data: Any = None
    command: Optional[str] = None

    @property
    def ok(self) -> bool:
        """Return True when the device reported success."""
        return self.status == STATUS_OK

    def raise_for_status(self) -> None:
        """Raise ApiError when the status is not "ok"."""
        if not self.ok:
            raise ApiError(self.status, self.command)


@dataclass
class DeviceConfig:
    """Configuration of one device connection."""

    host: str
    port: int = DEFAULT_PORT
    scheme: str = DEFAULT_SCHEME
    user: str = DEFAULT_USER
    password: str = field(default="", repr=False)
    name: Optional[str] = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL

    def __post_init__(self) -> None:
        """Normalize the address and validate the connection settings."""
        self.host = (self.host or "").strip()
        if not self.host:
            err_msg = "Device address not set"
            raise ConfigError(err_msg)
        if self.scheme not in SUPPORTED_SCHEMES:
            err_msg = f"Unsupported scheme '{self.scheme}' for {self.host}"
            raise ConfigError(err_msg)

    @property
    def device_id(self) -> str:
        """Return the object id prefix derived from the address."""
        return self.host.replace(".", "_")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DeviceConfig:
        """Build a config from a host adapter configuration entry.

        Accepts the adapter's keys (``ip``, ``wsProtocol``, ``isAdmin``) as
        well as the attribute names of this class.
        """
        host = data.get("host", data.get("ip"))
        try:
            port = int(data.get("port") or DEFAULT_PORT)
        except (TypeError, ValueError) as err:
            err_msg = f"Invalid port for {host}: {data.get('port')}"
            raise ConfigError(err_msg) from err
        return cls(
            host=host or "",
            port=port,
            scheme=data.get("scheme") or data.get("wsProtocol") or DEFAULT_SCHEME,
            user=data.get("user") or data.get("isAdmin") or DEFAULT_USER,
            password=data.get("password") or "",
            name=data.get("name") or None,
            request_timeout=float(
                data.get("request_timeout", DEFAULT_REQUEST_TIMEOUT)
            ),
            heartbeat_interval=float(
                data.get("heartbeat_interval", DEFAULT_HEARTBEAT_INTERVAL)
            ),
        )
