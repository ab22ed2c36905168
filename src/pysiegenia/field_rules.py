"""Field mapping tables for all known device families.

Rules are organised per command in three layers: a default rule applied to
every field, rules keyed by field name that apply to every device type, and
rules keyed by device type and field name. The tables are built once at
import time and are read-only afterwards.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from .const import (
    CMD_GET_DEVICE,
    CMD_GET_DEVICE_PARAMS,
    CMD_GET_DEVICE_STATE,
    DEVICE_TYPES,
)
from .models import EMPTY_RULE, Encoding, FieldRule


def _freeze(mapping: dict) -> Mapping:
    return MappingProxyType(
        {
            key: _freeze(value) if isinstance(value, dict) else value
            for key, value in mapping.items()
        }
    )


@dataclass(frozen=True)
class CommandRules:
    """The three rule layers of one command."""

    default: FieldRule = EMPTY_RULE
    by_name: Mapping[str, FieldRule] = field(
        default_factory=lambda: MappingProxyType({})
    )
    by_type: Mapping[int, Mapping[str, FieldRule]] = field(
        default_factory=lambda: MappingProxyType({})
    )


# Enumerations shared by several families
FAN_MODES = _freeze({1: "IN", 2: "OUT", 3: "IN_OUT", 4: "IN_OUT_WRG"})
FAN_MODES_AUTO = _freeze({1: "IN", 2: "OUT", 3: "IN_OUT", 4: "IN_OUT_WRG", 5: "AUTO"})
AEROTUBE_FAN_MODES = _freeze({1: "IN", 2: "OUT", 3: "IN_OUT", 4: "AUTO"})
DRIVE_OPEN_CLOSE = _freeze({1: "OPEN", 2: "CLOSE", 3: "OPEN_TO_TURN"})
MHS_OPEN_CLOSE = _freeze(
    {1: "OPEN", 2: "GAP_VENT", 3: "STOP_OVER", 4: "CLOSE", 5: "CLOSE_WO_LOCK"}
)
DRIVE_CL_POSITIONS = _freeze(
    {
        1: "LOCKED_WING_CLOSED",
        2: "TURN_POS_OPENED",
        3: "TURN_POS_CLOSED",
        4: "GAP_VENT",
        5: "TILT_POS",
        6: "CLOSED_NOT_LOCKED",
    }
)
DRIVE_CL_STATES = _freeze(
    {
        **DRIVE_CL_POSITIONS,
        7: "UNKNOWN",
        8: "POSITIONING",
        9: "ERROR_TILT_SENSOR",
        10: "ERROR_MOTOR",
        11: "ERROR_WINDOW_OPEN",
        12: "WINDOW_OPEN_TILT_BLOCKED",
        13: "WINDOW_OPEN_TURN_BLOCKED",
        14: "ERROR_CALIBRATION",
    }
)

# Building blocks reused across the tables
_READ_ONLY = FieldRule(write=False)
_IGNORE = FieldRule(ignore=True)
_FAN_POWER = FieldRule(type="number", role="level.valve", unit="%", min=0, max=100)
_PERCENT_LEVEL = FieldRule(type="number", role="level", unit="%", min=0, max=100)
_MAX_FAN_POWER = FieldRule(type="number", role="value", unit="m3/h", write=False)
_CO2 = FieldRule(type="number", role="value.co2", unit="PPM", write=False)
_VOC = FieldRule(type="number", role="value", write=False)
_TEMPERATURE = FieldRule(
    type="number", role="value.temperature", unit="°C", write=False
)
_HUMIDITY = FieldRule(type="number", role="value.humidity", unit="%", write=False)
_REMAINING_TIME = FieldRule(type="value", write=False)
_LIST_TIMERS = FieldRule(type="object", write=False)


def _duration(max_hour: int | None = None, **kwargs) -> FieldRule:
    return FieldRule(
        type=kwargs.pop("type", "value"),
        encoding=Encoding.TIME_HHMM,
        max_hour=max_hour,
        **kwargs,
    )


def _string_enum(states: Mapping[int, str], **kwargs) -> FieldRule:
    return FieldRule(
        type=kwargs.pop("type", "number"),
        states=states,
        handle_as_string=True,
        **kwargs,
    )


_DEVICE_ACTIVE = FieldRule(
    id="active",
    type="boolean",
    read=True,
    write=True,
    default=False,
    real_id="devicestate.deviceactive",
)

# Ventilation units share most of their parameter set
_VENTILATION_COMMON = {
    "fanpower": _FAN_POWER,
    "maxfanpower": _MAX_FAN_POWER,
    "automode_maxairflow": _FAN_POWER,
    "automode_co2sensity": _PERCENT_LEVEL,
    "clock": _IGNORE,
    "timer.activetimer": _READ_ONLY,
    "timer.remainingtime": _READ_ONLY,
    "timer.poweron_time": _READ_ONLY,
    "list_timers": _LIST_TIMERS,
}

_PARAMS_BY_TYPE = {
    1: {  # AEROPAC
        "fanlevel": FieldRule(type="number", min=0, max=7),
        "timer.duration": _duration(max_hour=18),
        "timer.remainingtime": _REMAINING_TIME,
        "timer.poweron_time": _duration(),
        "clock": _IGNORE,
    },
    2: {  # AEROMAT VT
        "fanpower": _FAN_POWER,
        "maxfanpower": FieldRule(type="number", role="level", unit="m3/h", min=0),
        "airquality.co2content": _CO2,
        "airquality.voc": _VOC,
    },
    3: {  # DRIVE axxent DK/MH
        "state": _READ_ONLY,
        "timer.duration": _duration(),
        "timer.remainingtime": _REMAINING_TIME,
    },
    4: {  # SENSOAIR
        "externaldevices": FieldRule(type="object", write=False),
    },
    5: {  # AEROVITAL ambience
        **_VENTILATION_COMMON,
        "fanmode": _string_enum(FAN_MODES),
        "lighting.front": FieldRule(
            type="string", role="level.color.rgb", encoding=Encoding.COLOR_HEX
        ),
        "lighting.back": FieldRule(
            type="string", role="level.color.rgb", encoding=Encoding.COLOR_HEX
        ),
        "lighting.history": FieldRule(type="array", write=False),
    },
    6: {  # MHS Family
        "states.0": FieldRule(id="sash-0.state", write=False, type="string"),
        "states.1": FieldRule(id="sash-1.state", write=False, type="string"),
        "max_stopover": FieldRule(unit="dm", write=False),
        "stopover": FieldRule(unit="dm"),
        "timer.duration": _duration(max_hour=4),
        "timer.remainingtime": _REMAINING_TIME,
    },
    8: {  # AEROTUBE
        **_VENTILATION_COMMON,
        "fanmode": _string_enum(AEROTUBE_FAN_MODES),
        "fanmirror": FieldRule(
            type="number",
            states=_freeze(
                {0: "Slave mode", 1: "Slave must mirror", 2: "Slave must copy"}
            ),
        ),
        "slave_fanpower": _FAN_POWER,
        "slave_fandirection": FieldRule(
            type="number",
            states=_freeze({1: "Slave supply air", 2: "Slave exhaust air"}),
        ),
        "bathcontrolfanpower": _FAN_POWER,
        "bathcontrolmodeactive": _string_enum(
            _freeze({1: "IN", 2: "OUT", 3: "IGNORE"})
        ),
        "bathcontrolmodepassive": _string_enum(AEROTUBE_FAN_MODES),
        "ecomode_maxairflow": _FAN_POWER,
        "externaldevices": FieldRule(type="object", write=False),
    },
    10: {  # Universal Module
        "fanmode": FieldRule(
            type="number", states=_freeze({1: "OPEN", 2: "CLOSED"}), write=False
        ),
    },
    11: {  # enOcean Converter Module
        "windowsensors": FieldRule(type="array", role="list", write=False),
        "alarmtype": _string_enum(
            _freeze({1: "SILENT", 2: "ACOUSTIC", 3: "OPTICAL", 4: "BOTH"}),
            role="value",
        ),
        "alarmsens": _string_enum(
            _freeze({1: "LOW", 2: "MEDIUM", 3: "HIGH"}), role="value"
        ),
        "alarm.active": FieldRule(
            type="boolean", role="indicator.alarm", write=False
        ),
        "alarm.sensorid": FieldRule(type="number", role="value", write=False),
        "statistics.opencount": FieldRule(type="number", role="value", write=False),
        "statistics.calibration": FieldRule(
            type="number", role="value", write=False
        ),
        "statistics.teach": FieldRule(type="number", role="value", write=False),
        "statistics.tilt": FieldRule(type="number", role="value", write=False),
        "statistics.turn": FieldRule(type="number", role="value", write=False),
    },
    12: {  # VT Upgrade
        "fanpower": _FAN_POWER,
        "maxfanpower": _MAX_FAN_POWER,
        "automode": FieldRule(type="boolean", role="switch.mode.auto"),
        "airbase.temperature.indoor": _TEMPERATURE,
        "airbase.humidity.indoor": _HUMIDITY,
        "airquality.voc": FieldRule(
            type="number", role="value", unit="VOC", write=False
        ),
        "clock": _IGNORE,
        "timer.activetimer": FieldRule(type="number", role="value", write=False),
        "timer.remainingtime": FieldRule(type="string", role="value", write=False),
        "timer.poweron_time": FieldRule(type="string", role="value", write=False),
        "list_timers": FieldRule(type="object", role="list", write=False),
    },
    13: {  # DRIVE CL
        "state": FieldRule(
            type="string", role="text", write=False, states=DRIVE_CL_STATES
        ),
        "silentmode": FieldRule(type="boolean", role="switch.mode.silent"),
        "autolock": FieldRule(type="boolean", role="switch.lock"),
        "holidaymode": FieldRule(type="boolean", role="switch.mode"),
        "tiltfunction": FieldRule(type="number", role="level", min=1, max=6),
        "timer.duration": _duration(max_hour=4, type="string", role="value"),
        "timer.remainingtime": FieldRule(type="string", role="value", write=False),
    },
    14: {  # AEROPLUS
        **_VENTILATION_COMMON,
        "fanmode": _string_enum(FAN_MODES_AUTO),
        "airquality.co2content": _CO2,
        "airquality.voc": _VOC,
    },
}

FIELD_RULES: Mapping[str, CommandRules] = MappingProxyType(
    {
        CMD_GET_DEVICE: CommandRules(
            default=FieldRule(read=True, write=False),
            by_name=_freeze({"type": FieldRule(type="number", states=DEVICE_TYPES)}),
        ),
        CMD_GET_DEVICE_STATE: CommandRules(
            by_name=_freeze({"deviceactive": _DEVICE_ACTIVE}),
        ),
        CMD_GET_DEVICE_PARAMS: CommandRules(
            default=FieldRule(read=True, write=True),
            by_name=_freeze(
                {
                    "devicestate.deviceactive": _DEVICE_ACTIVE,
                    "warnings": FieldRule(type="array", write=False),
                    "airbase.temperature.indoor": _TEMPERATURE,
                    "airbase.temperature.outdoor": _TEMPERATURE,
                    "airbase.humidity.indoor": _HUMIDITY,
                    "airbase.humidity.outdoor": _HUMIDITY,
                    "airquality": FieldRule(type="number", role="value", write=False),
                }
            ),
            by_type=_freeze(_PARAMS_BY_TYPE),
        ),
    }
)


def _timer_controls(fan_modes: Mapping[int, str] | None) -> dict[str, FieldRule]:
    controls = {
        "timer.fanpower": FieldRule(
            read=False,
            write=True,
            type="number",
            role="level",
            unit="%",
            min=0,
            max=100,
        ),
    }
    if fan_modes is not None:
        controls["timer.fanmode"] = _string_enum(
            fan_modes, read=False, write=True, role="level"
        )
    return controls


def _sash_controls(sash: int) -> dict[str, FieldRule]:
    return {
        f"sash-{sash}.openclose": _string_enum(
            MHS_OPEN_CLOSE,
            read=False,
            write=True,
            role="level",
            real_id=f"openclose.{sash}",
        ),
        f"sash-{sash}.stop": FieldRule(
            read=False,
            write=True,
            type="boolean",
            role="button.stop",
            real_id=f"stop.{sash}",
        ),
    }


_STOP = FieldRule(read=False, write=True, type="boolean", role="button.stop")

# Controls that exist on the device without being reported by any response
SPECIAL_PROPERTIES: Mapping[int, Mapping[str, FieldRule]] = _freeze(
    {
        3: {  # DRIVE axxent Family
            "openclose": _string_enum(
                DRIVE_OPEN_CLOSE, read=False, write=True, role="level"
            ),
            "stop": _STOP,
        },
        5: _timer_controls(FAN_MODES_AUTO),  # AEROVITAL ambience
        6: {**_sash_controls(0), **_sash_controls(1)},  # MHS Family
        8: {  # AEROTUBE
            **_timer_controls(FAN_MODES_AUTO),
            "timer.duration": _duration(max_hour=18, role="state"),
        },
        12: {  # VT Upgrade
            **_timer_controls(None),
            "timer.duration": _duration(
                max_hour=24, read=False, write=True, type="string", role="value"
            ),
        },
        13: {  # DRIVE CL
            "openclose": _string_enum(
                DRIVE_CL_POSITIONS, read=False, write=True, role="level"
            ),
            "stop": _STOP,
        },
    }
)
