"""HTTP gateway publishing a generated document set from a blob store."""

from .app import create_app
from .errors import BackendError, ConfigurationError, GatewayError, NotFoundError
from .gateway import DocsetGateway, GatewaySettings
from .storage import ObjectStore, StorageSettings

__all__ = [
    "BackendError",
    "ConfigurationError",
    "DocsetGateway",
    "GatewayError",
    "GatewaySettings",
    "NotFoundError",
    "ObjectStore",
    "StorageSettings",
    "create_app",
]
