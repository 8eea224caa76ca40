"""Fetch, map and publish cycle driven on a fixed interval."""

from __future__ import annotations

import logging
import signal
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from threading import Event, Lock, Thread
from typing import Callable, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, PlatformCollector, ProcessCollector

from services.errors import ConfigurationError, GatewayError, LabelSchemaError
from services.gateway import GatewayClient, resolve_gateway_uri
from services.mapper import SensorFieldMapper
from services.publisher import MetricPublisher
from settings import Settings, get_settings

logger = logging.getLogger(__name__)


def terminate_process(exc: BaseException) -> None:
    """Ask the process to shut down as if it had received SIGTERM."""
    signal.raise_signal(signal.SIGTERM)


@dataclass
class CycleResult:
    """Outcome of a single poll cycle."""

    cycle: int
    ok: bool
    sensor_count: int = 0
    gauge_count: int = 0
    skipped_count: int = 0
    duration_ms: int = 0
    error: Optional[str] = None
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PollDriver:
    """Runs the fetch -> map -> publish pipeline on a repeating interval.

    ``start`` runs one cycle synchronously and then repeats it from a daemon
    thread every ``interval`` seconds. A failed fetch is logged and leaves every
    gauge at its previous value. A gauge label schema violation in the
    background loop is fatal: it is logged and handed to ``on_fatal``, which
    terminates the process by default.
    """

    def __init__(
        self,
        client: GatewayClient,
        publisher: MetricPublisher,
        mapper: Optional[SensorFieldMapper] = None,
        interval: float = 2.0,
        on_fatal: Callable[[BaseException], None] = terminate_process,
    ) -> None:
        self.client = client
        self.publisher = publisher
        self.mapper = mapper or SensorFieldMapper()
        self.interval = interval
        self.last_result: Optional[CycleResult] = None
        self.fatal_error: Optional[str] = None
        self.on_fatal = on_fatal

        registry = publisher.registry
        namespace = publisher.namespace
        self.processed_ops = Counter(
            "processed_ops",
            "Completed fetch-map-publish cycles.",
            namespace=namespace,
            registry=registry,
        )
        self.poll_errors = Counter(
            "poll_errors",
            "Poll cycles that failed to fetch sensors from the gateway.",
            namespace=namespace,
            registry=registry,
        )
        self.last_success = Gauge(
            "last_poll_timestamp_seconds",
            "Unix time of the last completed poll cycle.",
            namespace=namespace,
            registry=registry,
        )

        self._cycles = 0
        self._cycle_lock = Lock()
        self._stop_event = Event()
        self._thread: Optional[Thread] = None
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def has_failed(self) -> bool:
        """True once polling died after a successful start."""
        return self.fatal_error is not None or (self._started and not self.is_running)

    def run_cycle(self) -> CycleResult:
        with self._cycle_lock:
            self._cycles += 1
            cycle = self._cycles
            start_time = time.perf_counter()
            try:
                result = self._poll(cycle, start_time)
            except GatewayError as exc:
                self.poll_errors.inc()
                result = CycleResult(
                    cycle=cycle,
                    ok=False,
                    duration_ms=_elapsed_ms(start_time),
                    error=str(exc),
                )
                logger.error(
                    "Could not get sensors from gateway, keeping previous values",
                    extra={
                        "cycle": cycle,
                        "gateway": self.client.base_url,
                        "reason": str(exc),
                    },
                )
            self.last_result = result
            return result

    def _poll(self, cycle: int, start_time: float) -> CycleResult:
        sensors = self.client.fetch_sensors()

        gauge_count = 0
        skipped_count = 0
        for sensor_id, snapshot in sensors.items():
            if not self.mapper.is_known(snapshot.type):
                skipped_count += 1
                logger.debug(
                    "Skipping sensor of unknown type",
                    extra={
                        "sensor_id": sensor_id,
                        "sensor_name": snapshot.name,
                        "sensor_type": snapshot.type,
                    },
                )
                continue

            metrics = self.mapper.map(snapshot)
            for measurement, value in metrics.measurements.items():
                logger.debug(
                    "Sensor %s measured %s %.2f",
                    snapshot.name,
                    measurement,
                    value,
                    extra={"sensor_id": sensor_id, "measurement": measurement},
                )
            gauge_count += self.publisher.publish(sensor_id, metrics)

        self.processed_ops.inc()
        self.last_success.set_to_current_time()
        result = CycleResult(
            cycle=cycle,
            ok=True,
            sensor_count=len(sensors),
            gauge_count=gauge_count,
            skipped_count=skipped_count,
            duration_ms=_elapsed_ms(start_time),
        )
        logger.info(
            "Poll cycle complete",
            extra={
                "cycle": cycle,
                "sensor_count": result.sensor_count,
                "gauge_count": gauge_count,
                "duration_ms": result.duration_ms,
            },
        )
        return result

    def start(self) -> None:
        """Run one cycle now and keep polling in the background."""
        if self.is_running:
            return
        self._stop_event.clear()
        self.run_cycle()
        self._thread = Thread(target=self._run_loop, name="gateway-poller", daemon=True)
        self._thread.start()
        self._started = True

    def stop(self, timeout: Optional[float] = None) -> None:
        self._started = False
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)
        self._thread = None

    def shutdown(self) -> None:
        """Stop polling and release the gateway connection."""
        self.stop(timeout=self.interval + self.client.timeout)
        self.client.close()

    def _run_loop(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.run_cycle()
            except LabelSchemaError as exc:
                self.fatal_error = str(exc)
                logger.critical(
                    "Gauge label schema changed, stopping the exporter",
                    exc_info=True,
                    extra={"reason": str(exc)},
                )
                self.on_fatal(exc)
                return


def _elapsed_ms(start_time: float) -> int:
    return int((time.perf_counter() - start_time) * 1000)


def build_poller(settings: Settings, gateway_uri: Optional[str] = None) -> PollDriver:
    """Wire a poller from settings, discovering the gateway when needed.

    Raises :class:`ConfigurationError` when the API key is missing and
    :class:`DiscoveryError` when no gateway can be found.
    """
    if not settings.api_key:
        raise ConfigurationError("The required environment variable 'CONBEE_API_KEY' is not set!")

    uri = gateway_uri or resolve_gateway_uri(settings)
    client = GatewayClient(uri, settings.api_key, timeout=settings.gateway_timeout)
    registry = CollectorRegistry()
    ProcessCollector(registry=registry)
    PlatformCollector(registry=registry)
    publisher = MetricPublisher(registry, namespace=settings.namespace)
    return PollDriver(
        client=client,
        publisher=publisher,
        mapper=SensorFieldMapper(),
        interval=settings.poll_interval,
    )


@lru_cache
def build_default_poller() -> PollDriver:
    """Factory that wires the poller from environment settings."""
    return build_poller(get_settings())
