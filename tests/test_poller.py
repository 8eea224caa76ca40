from __future__ import annotations

import logging
import signal
import threading
from typing import Dict, List, Optional

import pytest
from prometheus_client import CollectorRegistry

from models.sensors import SensorSnapshot, parse_sensors
from services.errors import ConfigurationError, GatewayError, LabelSchemaError
from services.mapper import SensorFieldMapper, SensorMetrics
from services.poller import PollDriver, build_poller, terminate_process
from services.publisher import MetricPublisher
from settings import Settings


class StubGatewayClient:
    base_url = "http://gateway.test"
    timeout = 1.0

    def __init__(self, responses: List[object]) -> None:
        self._responses = list(responses)
        self.calls = 0
        self.closed = False
        self.polled = threading.Event()

    def fetch_sensors(self) -> Dict[str, SensorSnapshot]:
        self.calls += 1
        if self.calls >= 2:
            self.polled.set()
        response = self._responses[min(self.calls, len(self._responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return response  # type: ignore[return-value]

    def close(self) -> None:
        self.closed = True


def _sensors(
    temperature: int = 2150,
    sensor_type: str = "ZHATemperature",
    lastupdated: str = "2023-01-01T00:00:00",
) -> Dict[str, SensorSnapshot]:
    return parse_sensors(
        {
            "1": {
                "name": "Bedroom",
                "type": sensor_type,
                "state": {"temperature": temperature, "lastupdated": lastupdated},
            },
            "7": {"name": "Rule engine", "type": "CLIPGenericFlag", "state": {"flag": True}},
        }
    )


LABELS = {"Lastupdated": "2023-01-01T00:00:00", "Name": "Bedroom", "Type": "ZHATemperature"}


def _poller(client: StubGatewayClient, interval: float = 60.0) -> PollDriver:
    publisher = MetricPublisher(CollectorRegistry(), namespace="conbee")
    return PollDriver(client=client, publisher=publisher, interval=interval)  # type: ignore[arg-type]


def _sample(poller: PollDriver, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
    return poller.publisher.registry.get_sample_value(name, labels or {})


def test_run_cycle_publishes_known_sensors() -> None:
    poller = _poller(StubGatewayClient([_sensors()]))

    result = poller.run_cycle()

    assert result.ok is True
    assert result.sensor_count == 2
    assert result.gauge_count == 1
    assert result.skipped_count == 1
    assert _sample(poller, "conbee_1_Temperature", LABELS) == 2150.0
    assert _sample(poller, "conbee_processed_ops_total") == 1.0
    assert _sample(poller, "conbee_last_poll_timestamp_seconds") > 0
    assert poller.last_result is result


def test_failed_cycle_keeps_previous_values(caplog) -> None:
    client = StubGatewayClient([_sensors(), GatewayError("Gateway at http://gateway.test answered with status 503.")])
    poller = _poller(client)
    poller.run_cycle()

    with caplog.at_level(logging.ERROR):
        result = poller.run_cycle()

    assert result.ok is False
    assert result.cycle == 2
    assert "503" in (result.error or "")
    assert _sample(poller, "conbee_1_Temperature", LABELS) == 2150.0
    assert _sample(poller, "conbee_processed_ops_total") == 1.0
    assert _sample(poller, "conbee_poll_errors_total") == 1.0

    records = [record for record in caplog.records if record.name == "services.poller"]
    assert any(getattr(record, "cycle", None) == 2 for record in records)


def test_consecutive_cycles_update_gauges() -> None:
    poller = _poller(StubGatewayClient([_sensors(2150), _sensors(1990)]))

    poller.run_cycle()
    poller.run_cycle()

    assert _sample(poller, "conbee_1_Temperature", LABELS) == 1990.0
    assert _sample(poller, "conbee_processed_ops_total") == 2.0


def test_start_runs_immediately_then_repeats() -> None:
    client = StubGatewayClient([_sensors()])
    poller = _poller(client, interval=0.01)

    poller.start()
    try:
        assert client.calls >= 1
        assert poller.is_running is True
        assert client.polled.wait(timeout=5)
    finally:
        poller.shutdown()

    assert poller.is_running is False
    assert client.closed is True
    assert _sample(poller, "conbee_processed_ops_total") >= 2.0


def test_start_survives_initial_gateway_failure() -> None:
    client = StubGatewayClient([GatewayError("down"), _sensors()])
    poller = _poller(client, interval=0.01)

    poller.start()
    try:
        assert client.polled.wait(timeout=5)
    finally:
        poller.shutdown()

    assert _sample(poller, "conbee_poll_errors_total") == 1.0

class ShiftingLabelMapper(SensorFieldMapper):
    """Adds a label key from the second mapping on, breaking the gauge schema."""

    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    def map(self, snapshot: SensorSnapshot) -> SensorMetrics:
        self.calls += 1
        metrics = super().map(snapshot)
        if self.calls == 1:
            return metrics
        return SensorMetrics(metrics.measurements, {**metrics.labels, "Room": "attic"})


def test_new_lastupdated_replaces_series_across_cycles() -> None:
    client = StubGatewayClient(
        [
            _sensors(2001, lastupdated="2023-01-01T00:00:01"),
            _sensors(2002, lastupdated="2023-01-01T00:00:02"),
            _sensors(2003, lastupdated="2023-01-01T00:00:03"),
        ]
    )
    poller = _poller(client)

    for _ in range(3):
        poller.run_cycle()

    samples = [
        sample
        for metric in poller.publisher.registry.collect()
        for sample in metric.samples
        if sample.name == "conbee_1_Temperature"
    ]
    assert len(samples) == 1
    assert samples[0].labels["Lastupdated"] == "2023-01-01T00:00:03"
    assert samples[0].value == 2003.0


def test_label_schema_change_in_background_loop_is_fatal(caplog) -> None:
    failures: List[BaseException] = []
    stopped = threading.Event()

    def on_fatal(exc: BaseException) -> None:
        failures.append(exc)
        stopped.set()

    client = StubGatewayClient([_sensors()])
    publisher = MetricPublisher(CollectorRegistry(), namespace="conbee")
    poller = PollDriver(
        client=client,  # type: ignore[arg-type]
        publisher=publisher,
        mapper=ShiftingLabelMapper(),
        interval=0.01,
        on_fatal=on_fatal,
    )

    with caplog.at_level(logging.CRITICAL, logger="services.poller"):
        poller.start()
        try:
            assert stopped.wait(timeout=5)
            assert poller._thread is not None
            poller._thread.join(timeout=5)

            assert poller.is_running is False
            assert poller.has_failed is True
        finally:
            poller.shutdown()

    assert len(failures) == 1
    assert isinstance(failures[0], LabelSchemaError)
    assert "Room" in (poller.fatal_error or "")
    assert poller.has_failed is True
    assert any(record.levelno == logging.CRITICAL for record in caplog.records)


def test_terminate_process_sends_sigterm(monkeypatch) -> None:
    raised: List[int] = []
    monkeypatch.setattr(signal, "raise_signal", raised.append)

    terminate_process(LabelSchemaError("labels changed"))

    assert raised == [signal.SIGTERM]


def test_fresh_poller_has_not_failed() -> None:
    poller = _poller(StubGatewayClient([_sensors()]))

    assert poller.has_failed is False
    assert poller.fatal_error is None



def test_build_poller_requires_api_key() -> None:
    settings = Settings(
        api_key=None,
        gateway_uri="192.168.1.20",
        discovery_url="https://discovery.test/discover",
        poll_interval=2.0,
        gateway_timeout=10.0,
        namespace="conbee",
        host="127.0.0.1",
        port=2112,
        log_level="INFO",
    )

    with pytest.raises(ConfigurationError, match="CONBEE_API_KEY"):
        build_poller(settings)


def test_build_poller_wires_configured_gateway() -> None:
    settings = Settings(
        api_key="ABCDEF1234",
        gateway_uri="192.168.1.20:80",
        discovery_url="https://discovery.test/discover",
        poll_interval=5.0,
        gateway_timeout=3.0,
        namespace="deconz",
        host="127.0.0.1",
        port=2112,
        log_level="INFO",
    )

    poller = build_poller(settings)
    try:
        assert poller.client.base_url == "http://192.168.1.20:80"
        assert poller.client.timeout == 3.0
        assert poller.interval == 5.0
        assert poller.publisher.namespace == "deconz"
        assert "deconz_processed_ops_total" in poller.publisher.render().decode("utf-8")
    finally:
        poller.client.close()
