from __future__ import annotations


class GatewayError(Exception):
    """Base class for errors raised by the docset gateway."""


class ConfigurationError(GatewayError):
    """Required configuration is missing or invalid."""


class NotFoundError(GatewayError):
    """The requested object or index document does not exist."""


class BackendError(GatewayError):
    """The blob store failed for a reason other than a missing object."""
