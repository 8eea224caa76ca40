"""Translation of gateway sensor state into measurements and labels.

Each known sensor type tag has one :class:`SensorRule` in ``SENSOR_RULES``.
A rule names the state fields that become numeric measurements and the ones
that become string labels, so every sensor of a given type always yields the
same measurement and label names.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Mapping, NamedTuple, Tuple, Union

from models.sensors import SensorSnapshot, SensorState

MeasurementSet = Dict[str, float]
LabelSet = Dict[str, str]

NAME_LABEL = "Name"
TYPE_LABEL = "Type"


def encode_bool(value: bool) -> float:
    """Encode a binary condition as a gauge value."""
    return 1.0 if value else 0.0


def _number(value: Any) -> float:
    return float(value)


def _text(value: Any) -> str:
    return str(value)


def _timestamp(value: datetime) -> str:
    return value.isoformat()


def _bracketed(values: Iterable[Any]) -> str:
    return "[" + " ".join(str(value) for value in values) + "]"


class SensorMetrics(NamedTuple):
    measurements: MeasurementSet
    labels: LabelSet


@dataclass(frozen=True)
class FieldRule:
    """Copies one state attribute into a measurement or a label."""

    output: str
    attribute: str
    convert: Callable[[Any], Union[float, str]]
    is_label: bool = False

    def read(self, state: SensorState) -> Union[float, str]:
        return self.convert(getattr(state, self.attribute))


def measure(output: str) -> FieldRule:
    return FieldRule(output, output.lower(), _number)


def flag(output: str) -> FieldRule:
    return FieldRule(output, output.lower(), encode_bool)


def label(output: str) -> FieldRule:
    return FieldRule(output, output.lower(), _text, is_label=True)


def timestamp(output: str) -> FieldRule:
    return FieldRule(output, output.lower(), _timestamp, is_label=True)


def listing(output: str) -> FieldRule:
    return FieldRule(output, output.lower(), _bracketed, is_label=True)


@dataclass(frozen=True)
class SensorRule:
    fields: Tuple[FieldRule, ...]

    @property
    def measurement_names(self) -> frozenset[str]:
        return frozenset(rule.output for rule in self.fields if not rule.is_label)

    @property
    def label_names(self) -> frozenset[str]:
        return frozenset(rule.output for rule in self.fields if rule.is_label)

    def apply(self, state: SensorState) -> SensorMetrics:
        measurements: MeasurementSet = {}
        labels: LabelSet = {}
        for rule in self.fields:
            value = rule.read(state)
            if rule.is_label:
                labels[rule.output] = value  # type: ignore[assignment]
            else:
                measurements[rule.output] = value  # type: ignore[assignment]
        return SensorMetrics(measurements, labels)


def _rule(*fields: FieldRule) -> SensorRule:
    return SensorRule(fields=fields)


LAST_UPDATED = timestamp("Lastupdated")

SENSOR_RULES: Mapping[str, SensorRule] = {
    "ZHAAirQuality": _rule(label("Airquality"), measure("Airqualityppb")),
    "ZHAAlarm": _rule(flag("Alarm"), LAST_UPDATED, flag("Lowbattery"), flag("Tampered")),
    "ZHACarbonMonoxide": _rule(
        flag("Carbonmonoxide"), LAST_UPDATED, flag("Lowbattery"), flag("Tampered")
    ),
    "ZHAConsumption": _rule(measure("Consumption"), LAST_UPDATED, measure("Power")),
    "ZHAFire": _rule(flag("Fire"), LAST_UPDATED, flag("Lowbattery"), flag("Tampered")),
    "ZHAHumidity": _rule(measure("Humidity"), LAST_UPDATED),
    "ZHALightLevel": _rule(
        measure("Lux"),
        LAST_UPDATED,
        measure("Lightlevel"),
        flag("Dark"),
        flag("Daylight"),
    ),
    "ZHAOpenClose": _rule(LAST_UPDATED, flag("Lowbattery"), flag("Open"), flag("Tampered")),
    "ZHAPower": _rule(measure("Current"), LAST_UPDATED, measure("Power"), measure("Voltage")),
    "ZHAPresence": _rule(
        LAST_UPDATED, flag("Lowbattery"), flag("Presence"), flag("Tampered")
    ),
    "ZHAPressure": _rule(measure("Pressure"), LAST_UPDATED),
    "ZHASwitch": _rule(
        measure("Buttonevent"),
        LAST_UPDATED,
        measure("Gesture"),
        measure("Eventduration"),
        measure("X"),
        measure("Y"),
        measure("Angle"),
    ),
    "ZHATemperature": _rule(measure("Temperature"), LAST_UPDATED),
    "ZHAThermostat": _rule(
        flag("On"),
        label("Errorcode"),
        label("Fanmode"),
        measure("Floortemperature"),
        flag("Heating"),
        LAST_UPDATED,
        flag("Mountingmodeactive"),
        measure("Temperature"),
        measure("Valve"),
        label("Windowopen"),
    ),
    "ZHATime": _rule(
        timestamp("Lastset"), LAST_UPDATED, timestamp("Localtime"), timestamp("Utc")
    ),
    "ZHAVibration": _rule(
        flag("Vibration"),
        LAST_UPDATED,
        listing("Orientation"),
        measure("Tiltangle"),
        measure("Vibrationstrength"),
    ),
    "ZHAWater": _rule(flag("Water"), LAST_UPDATED, flag("Lowbattery"), flag("Tampered")),
}


class SensorFieldMapper:
    """Pure per-sensor transform; unknown type tags map to nothing."""

    def __init__(self, rules: Mapping[str, SensorRule] = SENSOR_RULES) -> None:
        self._rules = rules

    def is_known(self, sensor_type: str) -> bool:
        return sensor_type in self._rules

    def map(self, snapshot: SensorSnapshot) -> SensorMetrics:
        rule = self._rules.get(snapshot.type)
        if rule is None:
            return SensorMetrics({}, {})
        measurements, labels = rule.apply(snapshot.state)
        labels[NAME_LABEL] = snapshot.name
        labels[TYPE_LABEL] = snapshot.type
        return SensorMetrics(measurements, labels)


_DEFAULT_MAPPER = SensorFieldMapper()


def map_sensor(snapshot: SensorSnapshot) -> SensorMetrics:
    return _DEFAULT_MAPPER.map(snapshot)
