"""Custom exceptions for pysiegenia."""

from __future__ import annotations

from typing import Any


class PySiegeniaException(Exception):
    """Base class for pysiegenia exceptions."""


class ConfigError(PySiegeniaException):
    """Raised when a device configuration entry is invalid."""


class ConnectionAlreadyActive(PySiegeniaException):
    """Raised when connect() is called while a transport is open or opening."""


class ConnectionNotInitialized(PySiegeniaException):
    """Raised when a request is sent without an open transport."""


class TransportError(PySiegeniaException):
    """Raised or emitted when the WebSocket transport fails."""

    def __init__(
        self, message: str, code: int | None = None, reason: str | None = None
    ) -> None:
        """Initialize the transport error."""
        self.code = code
        self.reason = reason
        super().__init__(message)


class ProtocolError(PySiegeniaException):
    """Emitted when an inbound message is not valid JSON."""

    def __init__(self, message: str, raw: Any = None) -> None:
        """Initialize the protocol error."""
        self.raw = raw
        super().__init__(message)


class RequestTimeout(PySiegeniaException):
    """Raised when no response arrives within the request timeout."""

    def __init__(self, request_id: int, command: str | None) -> None:
        """Initialize the timeout error."""
        self.request_id = request_id
        self.command = command
        super().__init__(f"Timeout waiting for response to {command} (id {request_id})")


class ApiError(PySiegeniaException):
    """Raised when the device answers with a status other than "ok"."""

    def __init__(self, status: str | None, command: str | None = None) -> None:
        """Initialize the API error."""
        self.status = status
        self.command = command
        super().__init__(f"API Error for {command}: {status}")


class MappingError(PySiegeniaException):
    """Raised by strict write mapping when a value cannot be encoded."""


class SetupError(PySiegeniaException):
    """Raised when a stage of the device setup sequence fails."""

    def __init__(self, stage: Any, message: str) -> None:
        """Initialize the setup error."""
        self.stage = stage
        super().__init__(message)


class UnknownDeviceType(SetupError):
    """Raised when the device reports a type code missing from the catalog."""
