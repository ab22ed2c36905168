"""Translation between the nested wire format and flat properties.

Everything here is a pure function over the static tables in
:mod:`pysiegenia.field_rules`; no state is kept between calls.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta
import logging
from typing import Any

from .exceptions import MappingError
from .field_rules import FIELD_RULES, SPECIAL_PROPERTIES
from .models import EMPTY_RULE, Encoding, FieldRule, PropertyDefinition

_LOGGER = logging.getLogger(__name__)

_DATE_TIME_KEYS = frozenset({"year", "month", "day", "hour", "minute"})
_TIME_KEYS = frozenset({"hour", "minute"})
_TIME_KEYS_SECONDS = frozenset({"hour", "minute", "second"})


def _00(value: Any) -> str:
    return str(value).zfill(2)


def _date_time_to_timestamp(data: Mapping[str, Any]) -> int | None:
    """Return the epoch milliseconds of a date-time object, or None.

    Devices with an unset clock report all zeros, which has no
    representation here; such values become None.
    """
    # NOTE: the month is shifted by one before it is used as a zero-based
    # month index, so a wire month of 1 lands in March. Kept as the
    # devices were integrated, pending confirmation against captures.
    try:
        month_index = int(data["month"]) + 1
        year = int(data["year"]) + month_index // 12
        start = datetime(year, month_index % 12 + 1, 1)
        moment = start + timedelta(
            days=int(data["day"]) - 1,
            hours=int(data["hour"]),
            minutes=int(data["minute"]),
        )
        return int(moment.timestamp() * 1000)
    except (TypeError, ValueError, OverflowError, OSError) as err:
        _LOGGER.debug("Unrepresentable date-time %s: %s", dict(data), err)
        return None


def flatten(data: Any, prefix: str = "") -> dict[str, Any]:
    """Flatten a nested wire object into dotted paths.

    Objects carrying year/month/day/hour/minute become an epoch timestamp
    in milliseconds (None when the date cannot be represented), objects
    carrying only hour/minute[/second] become an "HH:MM:SS" string. Lists
    are leaves.
    """
    fields: dict[str, Any] = {}
    _flatten_into(data, prefix, fields)
    return fields


def _flatten_into(data: Any, prefix: str, fields: dict[str, Any]) -> None:
    if not isinstance(data, Mapping):
        return
    keys = set(data)
    if _DATE_TIME_KEYS <= keys:
        fields[prefix] = _date_time_to_timestamp(data)
        return
    if _TIME_KEYS <= keys and keys <= _TIME_KEYS_SECONDS:
        second = data.get("second", 0)
        fields[prefix] = f"{_00(data['hour'])}:{_00(data['minute'])}:{_00(second)}"
        return

    for key, value in data.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            _flatten_into(value, path, fields)
        else:
            fields[path] = value


def normalize_device_type(device_type: Any) -> Any:
    """Return a numeric-string device type as an int, anything else as is."""
    if isinstance(device_type, str) and device_type.isdigit():
        return int(device_type)
    return device_type


def resolve_rule(command: str, device_type: Any, field_name: str) -> FieldRule:
    """Resolve the effective rule for a field.

    The command default is overridden by the rule for the field name, which
    is overridden by the rule for the field name on this device type.
    """
    rules = FIELD_RULES.get(command)
    if rules is None:
        return EMPTY_RULE
    rule = rules.default
    rule = rule.merged(rules.by_name.get(field_name))
    type_rules = rules.by_type.get(normalize_device_type(device_type))
    if type_rules:
        rule = rule.merged(type_rules.get(field_name))
    return rule


def _infer_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return "object"


def _infer_role(value_type: str | None, read: bool | None, write: bool | None) -> str:
    if value_type == "boolean":
        if read and not write:
            return "sensor"
        if write and not read:
            return "button"
        if read and write:
            return "switch"
    elif value_type == "number":
        if read and not write:
            return "value"
        if write:
            return "level"
    elif value_type == "string":
        return "text"
    return "state"


def _lookup_key(states: Mapping[int, str], label: Any) -> Any:
    for key, state in states.items():
        if state == label:
            return key
    return label


def _lookup_label(states: Mapping[int, str], key: Any) -> Any:
    if isinstance(key, bool):
        return key
    if key in states:
        return states[key]
    if isinstance(key, str) and key.isdigit() and int(key) in states:
        return states[int(key)]
    return key


def map_value_for_read(value: Any, rule: FieldRule | None) -> Any:
    """Transcode a flattened wire value into its property value."""
    if rule is None:
        return value
    if rule.encoding is Encoding.COLOR_HEX:
        if isinstance(value, str) and not value.startswith("#"):
            value = f"#{value}"
    elif rule.handle_as_string and rule.states:
        value = _lookup_key(rule.states, value)
    # date/time structures were already converted by flatten()
    return value


def _definition(key: str, rule: FieldRule, value: Any) -> PropertyDefinition:
    value_type = rule.type or _infer_type(value)
    return PropertyDefinition(
        key=key,
        type=value_type,
        role=rule.role or _infer_role(value_type, rule.read, rule.write),
        read=rule.read,
        write=rule.write,
        unit=rule.unit,
        min=rule.min,
        max=rule.max,
        default=rule.default,
        states=rule.states,
        value=value,
        rule=rule,
    )


def _resolve_fields(command: str, device_type: Any, data: Any):
    for wire_key, raw_value in flatten(data).items():
        rule = resolve_rule(command, device_type, wire_key)
        if rule.ignore:
            continue
        key = wire_key
        if rule.id:
            key = rule.id
            if not rule.real_id:
                rule = rule.merged(FieldRule(real_id=wire_key))
        yield key, rule, map_value_for_read(raw_value, rule)


def map_to_objects(
    command: str, device_type: Any, data: Any
) -> dict[str, PropertyDefinition]:
    """Build property definitions for every field of a response."""
    objects = {}
    for key, rule, value in _resolve_fields(command, device_type, data):
        objects[key] = _definition(key, rule, value)
        if not rule.role:
            _LOGGER.debug("Inferred role %s for %s", objects[key].role, key)
    return objects


def map_to_states(command: str, device_type: Any, data: Any) -> dict[str, Any]:
    """Map a response or push to property values keyed by property name."""
    return {
        key: value for key, _, value in _resolve_fields(command, device_type, data)
    }


def _parse_time(value: Any, with_seconds: bool) -> dict[str, int] | None:
    parts = str(value).split(":")
    if len(parts) < 2 or len(parts) > 3:
        return None
    try:
        result = {"hour": int(parts[0]), "minute": int(parts[1])}
        if with_seconds and len(parts) == 3:
            result["second"] = int(parts[2])
    except ValueError:
        return None
    return result


def _split_timestamp(value: Any) -> dict[str, int] | None:
    try:
        moment = datetime.fromtimestamp(float(value) / 1000)
    except (TypeError, ValueError, OverflowError, OSError):
        return None
    return {
        "year": moment.year,
        "month": moment.month,
        "day": moment.day,
        "hour": moment.hour,
        "minute": moment.minute,
    }


def map_value_for_write(
    name: str, value: Any, rule: FieldRule | None = None, *, strict: bool = False
) -> dict[str, Any]:
    """Encode a property value into a nested setDeviceParams body.

    Returns an empty dictionary when a time value cannot be parsed, unless
    ``strict`` is set, in which case MappingError is raised.
    """
    rule = rule or EMPTY_RULE
    if rule.encoding is Encoding.COLOR_HEX:
        if isinstance(value, str) and value.startswith("#"):
            value = value[1:]
    elif rule.handle_as_string and rule.states:
        value = _lookup_label(rule.states, value)
    elif rule.encoding in (Encoding.DATE_TIME, Encoding.TIME_HHMM, Encoding.TIME_HHMMSS):
        if rule.encoding is Encoding.DATE_TIME:
            parsed = _split_timestamp(value)
        else:
            parsed = _parse_time(value, rule.encoding is Encoding.TIME_HHMMSS)
        if parsed is None:
            if strict:
                err_msg = f"Invalid time value for {name}: {value!r}"
                raise MappingError(err_msg)
            _LOGGER.debug("Ignoring invalid time value for %s: %r", name, value)
            return {}
        value = parsed

    path = rule.real_id or name
    result: Any = value
    for part in reversed(path.split(".")):
        result = {part: result}
    return result


def get_special_device_objects(
    device_type: Any,
) -> dict[str, PropertyDefinition] | None:
    """Return the statically declared controls of a device type, if any."""
    rules = SPECIAL_PROPERTIES.get(normalize_device_type(device_type))
    if rules is None:
        return None
    return {key: _definition(key, rule, None) for key, rule in rules.items()}
