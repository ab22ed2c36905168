"""Python library for Siegenia window and ventilation controllers."""

from .auth import DeviceAuth
from .const import DEVICE_TYPES
from .exceptions import (
    ApiError,
    ConfigError,
    ConnectionAlreadyActive,
    ConnectionNotInitialized,
    MappingError,
    ProtocolError,
    PySiegeniaException,
    RequestTimeout,
    SetupError,
    TransportError,
    UnknownDeviceType,
)
from .mapper import (
    flatten,
    get_special_device_objects,
    map_to_objects,
    map_to_states,
    map_value_for_read,
    map_value_for_write,
    resolve_rule,
)
from .models import (
    DeviceConfig,
    DeviceResponse,
    Encoding,
    FieldRule,
    LinkEvent,
    LinkState,
    PropertyDefinition,
    SetupStage,
)
from .session import DeviceSession
from .store import MemoryPropertyStore, PropertyStore
from .websocket import DeviceLink, compute_reconnect_delay

__version__ = "0.1.0"

__all__ = [
    "DEVICE_TYPES",
    "ApiError",
    "ConfigError",
    "ConnectionAlreadyActive",
    "ConnectionNotInitialized",
    "DeviceAuth",
    "DeviceConfig",
    "DeviceLink",
    "DeviceResponse",
    "DeviceSession",
    "Encoding",
    "FieldRule",
    "LinkEvent",
    "LinkState",
    "MappingError",
    "MemoryPropertyStore",
    "PropertyDefinition",
    "PropertyStore",
    "ProtocolError",
    "PySiegeniaException",
    "RequestTimeout",
    "SetupError",
    "SetupStage",
    "TransportError",
    "UnknownDeviceType",
    "compute_reconnect_delay",
    "flatten",
    "get_special_device_objects",
    "map_to_objects",
    "map_to_states",
    "map_value_for_read",
    "map_value_for_write",
    "resolve_rule",
    "__version__",
]
