"""Exception types raised by the exporter services."""

from __future__ import annotations


class ExporterError(Exception):
    """Base class for recoverable or startup-fatal exporter failures."""


class ConfigurationError(ExporterError):
    """Required configuration is missing or unusable."""


class DiscoveryError(ExporterError):
    """No gateway could be located through the discovery endpoint."""


class GatewayError(ExporterError):
    """A request to the gateway failed or returned an unusable payload."""


class LabelSchemaError(RuntimeError):
    """A gauge was requested again with a different label key set.

    The per-type rule table guarantees fixed label keys, so this signals a
    broken rule rather than bad gateway data and is never handled.
    """
