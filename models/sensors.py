"""Gateway sensor payload models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Tuple

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

ZERO_TIMESTAMP = datetime(1, 1, 1)

_UNSET_TIMESTAMPS = {"", "none"}


class _GatewayModel(BaseModel):
    """Closed field set: absent or null fields fall back to their zero value."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class SensorState(_GatewayModel):
    """Every state field any known sensor type reports."""

    airquality: str = ""
    airqualityppb: float = 0
    alarm: bool = False
    angle: float = 0
    buttonevent: float = 0
    carbonmonoxide: bool = False
    consumption: float = 0
    current: float = 0
    dark: bool = False
    daylight: bool = False
    errorcode: str = ""
    eventduration: float = 0
    fanmode: str = ""
    fire: bool = False
    floortemperature: float = 0
    gesture: float = 0
    heating: bool = False
    humidity: float = 0
    lastset: datetime = ZERO_TIMESTAMP
    lastupdated: datetime = ZERO_TIMESTAMP
    lightlevel: float = 0
    localtime: datetime = ZERO_TIMESTAMP
    lowbattery: bool = False
    lux: float = 0
    mountingmodeactive: bool = False
    on: bool = False
    open: bool = False
    orientation: Tuple[int, ...] = ()
    power: float = 0
    presence: bool = False
    pressure: float = 0
    tampered: bool = False
    temperature: float = 0
    tiltangle: float = 0
    utc: datetime = ZERO_TIMESTAMP
    valve: float = 0
    vibration: bool = False
    vibrationstrength: float = 0
    voltage: float = 0
    water: bool = False
    windowopen: str = ""
    x: float = 0
    y: float = 0

    @field_validator("lastset", "lastupdated", "localtime", "utc", mode="before")
    @classmethod
    def _unset_timestamp(cls, value: Any) -> Any:
        # The gateway reports never-updated timestamps as the string "none".
        if isinstance(value, str) and value.strip().lower() in _UNSET_TIMESTAMPS:
            return ZERO_TIMESTAMP
        return value


class SensorConfig(_GatewayModel):
    battery: float = 0
    configured: bool = False
    enrolled: int = 0
    offset: float = 0
    on: bool = False
    reachable: bool = False
    sunriseoffset: int = 0
    sunsetoffset: int = 0
    temperature: float = 0


class SensorSnapshot(_GatewayModel):
    """One sensor as returned by a single poll of the gateway."""

    name: str = ""
    type: str = ""
    etag: str = ""
    manufacturername: str = ""
    modelid: str = ""
    swversion: str = ""
    uniqueid: str = ""
    state: SensorState = Field(default_factory=SensorState)
    config: SensorConfig = Field(default_factory=SensorConfig)


_SENSOR_MAP = TypeAdapter(Dict[str, SensorSnapshot])


def parse_sensors(payload: Any) -> Dict[str, SensorSnapshot]:
    """Validate the gateway's ``/sensors`` object keyed by sensor id.

    Raises ``pydantic.ValidationError`` when the payload is not an object of
    sensor objects.
    """
    return _SENSOR_MAP.validate_python(payload)


class DiscoveryCandidate(BaseModel):
    """One gateway announced by the discovery endpoint."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    internalipaddress: str
    internalport: int = 80
    name: str = ""


_CANDIDATES = TypeAdapter(List[DiscoveryCandidate])


def parse_discovery(payload: Any) -> List[DiscoveryCandidate]:
    return _CANDIDATES.validate_python(payload)
