"""Publishes mapped sensor metrics as Prometheus gauges."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Iterable, Optional, Tuple

from prometheus_client import CollectorRegistry, Gauge, generate_latest

from services.errors import LabelSchemaError
from services.mapper import SensorMetrics

logger = logging.getLogger(__name__)

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_]")


def metric_subsystem(sensor_id: str) -> str:
    """Sensor ids become the gauge subsystem, so they must be name-safe."""
    return _INVALID_NAME_CHARS.sub("_", sensor_id)


@dataclass
class _GaugeEntry:
    gauge: Gauge
    label_names: Tuple[str, ...]
    label_values: Optional[Tuple[str, ...]] = None


class MetricPublisher:
    """Owns the registry and every per-sensor gauge registered in it.

    Gauges are created on the first observation of a (sensor, measurement)
    pair and are never unregistered. Each gauge keeps a single series: when
    the label values change, the previous series is removed.
    """

    def __init__(self, registry: CollectorRegistry, namespace: str = "conbee") -> None:
        self.registry = registry
        self.namespace = namespace
        self._gauges: Dict[Tuple[str, str], _GaugeEntry] = {}
        self._lock = Lock()

    def _entry(self, sensor_id: str, measurement: str, names: Tuple[str, ...]) -> _GaugeEntry:
        key = (sensor_id, measurement)
        entry = self._gauges.get(key)
        if entry is None:
            gauge = Gauge(
                measurement,
                f"{measurement} reported by gateway sensor {sensor_id}",
                labelnames=names,
                namespace=self.namespace,
                subsystem=metric_subsystem(sensor_id),
                registry=self.registry,
            )
            entry = self._gauges[key] = _GaugeEntry(gauge, names)
            logger.debug(
                "Registered gauge",
                extra={"sensor_id": sensor_id, "measurement": measurement},
            )
            return entry

        if entry.label_names != names:
            raise LabelSchemaError(
                f"Gauge {measurement!r} for sensor {sensor_id!r} was registered with "
                f"labels {list(entry.label_names)}, not {list(names)}."
            )
        return entry

    def gauge(self, sensor_id: str, measurement: str, label_names: Iterable[str]) -> Gauge:
        with self._lock:
            return self._entry(sensor_id, measurement, tuple(sorted(label_names))).gauge

    def publish(self, sensor_id: str, metrics: SensorMetrics) -> int:
        """Set one gauge per measurement and return how many were set."""
        measurements, labels = metrics
        names = tuple(sorted(labels))
        values = tuple(labels[name] for name in names)
        with self._lock:
            for measurement, value in measurements.items():
                entry = self._entry(sensor_id, measurement, names)
                if entry.label_values is not None and entry.label_values != values:
                    entry.gauge.remove(*entry.label_values)
                entry.gauge.labels(*values).set(value)
                entry.label_values = values
        return len(measurements)

    def gauge_count(self) -> int:
        with self._lock:
            return len(self._gauges)

    def render(self) -> bytes:
        return generate_latest(self.registry)
