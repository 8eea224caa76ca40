from __future__ import annotations

from dataclasses import replace
from typing import Optional

from settings import Settings, get_settings


def load_settings(
    conbee_uri: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    poll_interval: Optional[float] = None,
    log_level: Optional[str] = None,
) -> Settings:
    """Environment settings with command-line flags taking precedence."""
    settings = get_settings()
    overrides: dict[str, object] = {}
    if conbee_uri and conbee_uri.strip():
        overrides["gateway_uri"] = conbee_uri.strip()
    if host:
        overrides["host"] = host
    if port is not None:
        overrides["port"] = port
    if poll_interval is not None and poll_interval > 0:
        overrides["poll_interval"] = poll_interval
    if log_level:
        overrides["log_level"] = log_level.strip().upper()
    return replace(settings, **overrides)
