"""Constants for pysiegenia."""

from types import MappingProxyType

# Connection defaults
DEFAULT_PORT = 443
DEFAULT_SCHEME = "wss"
WEBSOCKET_PATH = "/WebSocket"
SUPPORTED_SCHEMES = ("ws", "wss")

# Default user of the device web interface ("admin" or "user")
DEFAULT_USER = "admin"

# Timings (seconds)
DEFAULT_REQUEST_TIMEOUT = 20.0
DEFAULT_HEARTBEAT_INTERVAL = 10.0
INITIAL_HEARTBEAT_DELAY = 1.0
OPEN_TIMEOUT = 20
CLOSE_TIMEOUT = 10

# Reconnect backoff: errors * step + base, capped at max
RECONNECT_BASE_DELAY = 5.0
RECONNECT_STEP_DELAY = 5.0
RECONNECT_MAX_DELAY = 60.0

# First request id sent is REQUEST_ID_START + 1
REQUEST_ID_START = 1

# Close code used when the transport went away without a close frame
ABNORMAL_CLOSURE = 1006

STATUS_OK = "ok"

# Command vocabulary
CMD_LOGIN = "login"
CMD_LOGOUT = "logout"
CMD_KEEP_ALIVE = "keepAlive"
CMD_GET_DEVICE = "getDevice"
CMD_GET_DEVICE_STATE = "getDeviceState"
CMD_GET_DEVICE_PARAMS = "getDeviceParams"
CMD_SET_DEVICE_PARAMS = "setDeviceParams"
CMD_GET_DEVICE_DETAILS = "getDeviceDetails"
CMD_RESET_DEVICE = "resetDevice"
CMD_REBOOT_DEVICE = "rebootDevice"
CMD_RENEW_CERT = "renewCert"

# Unsolicited pushes use their own command names, described by these rules
PUSH_COMMAND_ALIASES = MappingProxyType(
    {
        "deviceParams": CMD_GET_DEVICE_PARAMS,
        "deviceState": CMD_GET_DEVICE_STATE,
    }
)

# Keys redacted from debug logs of outgoing requests
SENSITIVE_KEYS = frozenset({"password", "token"})

# Object channels used by the session
CHANNEL_INFO = "info"
CHANNEL_PARAMS = "params"
CHANNEL_DETAILS = "details"

# Device families by type code
DEVICE_TYPES = MappingProxyType(
    {
        1: "AEROPAC",
        2: "AEROMAT VT",
        3: "DRIVE axxent Family",
        4: "SENSOAIR",
        5: "AEROVITAL",
        6: "MHS Family",
        7: "ACS",
        8: "AEROTUBE",
        9: "GENIUS B",  # obsolete, now controlled by the Universal Module
        10: "Universal Module",
        11: "enOcean Converter Module",
        12: "VT Upgrade",
        13: "DRIVE CL",
        14: "AEROPLUS",
    }
)
