"""HTTP access to the gateway's REST API and its discovery service."""

from __future__ import annotations

import logging
from typing import Dict, Optional

import httpx
from pydantic import ValidationError

from models.sensors import DiscoveryCandidate, SensorSnapshot, parse_discovery, parse_sensors
from services.errors import DiscoveryError, GatewayError
from settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


def normalize_gateway_uri(uri: str) -> str:
    """Accept bare ``host:port`` addresses as well as full URLs."""
    candidate = uri.strip().rstrip("/")
    if "://" not in candidate:
        candidate = f"http://{candidate}"
    return candidate


def candidate_uri(candidate: DiscoveryCandidate) -> str:
    return normalize_gateway_uri(f"{candidate.internalipaddress}:{candidate.internalport}")


def discover_gateway(client: httpx.Client, discovery_url: str) -> DiscoveryCandidate:
    """Return the first gateway announced by the discovery endpoint."""
    try:
        response = client.get(discovery_url)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        raise DiscoveryError(f"Gateway discovery via {discovery_url} failed: {exc}") from exc

    try:
        candidates = parse_discovery(response.json())
    except (ValueError, ValidationError) as exc:
        logger.warning(
            "Ignoring malformed discovery response",
            extra={"gateway": discovery_url, "reason": exc.__class__.__name__},
        )
        candidates = []

    if not candidates:
        raise DiscoveryError(
            "No gateways found, specify the address with --conbee-uri or CONBEE_URI."
        )
    return candidates[0]


def resolve_gateway_uri(settings: Settings, client: Optional[httpx.Client] = None) -> str:
    """Use the configured gateway address, falling back to discovery."""
    if settings.gateway_uri:
        return normalize_gateway_uri(settings.gateway_uri)

    if client is None:
        with httpx.Client(timeout=settings.gateway_timeout) as owned:
            candidate = discover_gateway(owned, settings.discovery_url)
    else:
        candidate = discover_gateway(client, settings.discovery_url)

    uri = candidate_uri(candidate)
    logger.info(
        "Using gateway %r at %s:%d for this run",
        candidate.name,
        candidate.internalipaddress,
        candidate.internalport,
        extra={"gateway": uri},
    )
    return uri


class GatewayClient:
    """Minimal client for the gateway's sensors resource."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = normalize_gateway_uri(base_url)
        self.timeout = timeout
        self._api_key = api_key
        self._client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def fetch_sensors(self) -> Dict[str, SensorSnapshot]:
        """Fetch every sensor keyed by its gateway id.

        Raises :class:`GatewayError` for network failures, timeouts, error
        statuses and payloads that do not decode into sensors.
        """
        # Error messages carry the base URL only; the path embeds the API key.
        try:
            response = self._client.get(f"/api/{self._api_key}/sensors")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise GatewayError(
                f"Gateway at {self.base_url} answered with status {exc.response.status_code}."
            ) from exc
        except httpx.HTTPError as exc:
            raise GatewayError(
                f"Could not get sensors from gateway at {self.base_url}: {exc.__class__.__name__}"
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise GatewayError(f"Gateway at {self.base_url} returned a non-JSON body.") from exc

        try:
            return parse_sensors(payload)
        except ValidationError as exc:
            raise GatewayError(
                f"Gateway at {self.base_url} returned an unexpected sensors payload: "
                f"{exc.error_count()} validation errors."
            ) from exc
