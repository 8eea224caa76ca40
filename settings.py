from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_API_KEY_ENV = "CONBEE_API_KEY"
_GATEWAY_URI_ENV = "CONBEE_URI"
_DISCOVERY_URL_ENV = "CONBEE_DISCOVERY_URL"
_POLL_INTERVAL_ENV = "POLL_INTERVAL_SECONDS"
_GATEWAY_TIMEOUT_ENV = "GATEWAY_TIMEOUT_SECONDS"
_NAMESPACE_ENV = "METRICS_NAMESPACE"
_HOST_ENV = "EXPORTER_HOST"
_PORT_ENV = "EXPORTER_PORT"
_LOG_LEVEL_ENV = "LOG_LEVEL"

DEFAULT_DISCOVERY_URL = "https://phoscon.de/discover"


@dataclass(frozen=True)
class Settings:
    api_key: Optional[str]
    gateway_uri: Optional[str]
    discovery_url: str
    poll_interval: float
    gateway_timeout: float
    namespace: str
    host: str
    port: int
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_port(default: int) -> int:
    value = os.getenv(_PORT_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if 0 < parsed < 65536 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        api_key=_read_optional_env(_API_KEY_ENV, None),
        gateway_uri=_read_optional_env(_GATEWAY_URI_ENV, None),
        discovery_url=_read_str_env(_DISCOVERY_URL_ENV, DEFAULT_DISCOVERY_URL),
        poll_interval=_read_positive_float(_POLL_INTERVAL_ENV, 2.0),
        gateway_timeout=_read_positive_float(_GATEWAY_TIMEOUT_ENV, 10.0),
        namespace=_read_str_env(_NAMESPACE_ENV, "conbee"),
        host=_read_str_env(_HOST_ENV, "0.0.0.0"),
        port=_read_port(2112),
        log_level=_read_log_level("INFO"),
    )
