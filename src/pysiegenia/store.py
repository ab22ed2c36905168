"""Property storage interface used by DeviceSession."""

from __future__ import annotations

from typing import Any, Protocol

from .models import PropertyDefinition


class PropertyStore(Protocol):
    """Receives the properties and values published by a DeviceSession."""

    def set_object(self, object_id: str, definition: PropertyDefinition) -> None:
        """Create or update a property and its initial value."""

    def set_value(self, object_id: str, value: Any) -> None:
        """Update the value of a property."""


class MemoryPropertyStore:
    """Keeps properties and values in dictionaries."""

    def __init__(self) -> None:
        self.objects: dict[str, PropertyDefinition] = {}
        self.values: dict[str, Any] = {}

    def set_object(self, object_id: str, definition: PropertyDefinition) -> None:
        self.objects[object_id] = definition
        if definition.value is not None or object_id not in self.values:
            self.values[object_id] = definition.value

    def set_value(self, object_id: str, value: Any) -> None:
        self.values[object_id] = value

    def get_value(self, object_id: str, default: Any = None) -> Any:
        return self.values.get(object_id, default)
