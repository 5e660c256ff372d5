from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING, Any

from anyio import CancelScope, from_thread, to_thread
from litestar.enums import MediaType
from litestar.response import Redirect, Response, Stream
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import BackendError, ConfigurationError, NotFoundError
from .index import resolve_index
from .mime import mime_for
from .paths import (
    is_index_request,
    normalize_mount_path,
    to_public_path,
    to_storage_key,
)
from .storage import ObjectStore, StorageSettings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from litestar import Request

    from .storage import StoredObject
else:  # pragma: no cover
    AsyncIterator = Any

LOG = logging.getLogger("docset_gateway.gateway")

CHUNK_SIZE = 1024 * 64
DEFAULT_CONTENT_TYPE = "application/octet-stream"


async def _run_sync(func: Callable[..., Any], /, *args: Any) -> Any:
    # Cancelling the request releases the awaiting task at once; work in the
    # thread stops at its next from_thread.check_cancelled().
    return await to_thread.run_sync(func, *args, abandon_on_cancel=True)


class GatewaySettings(BaseSettings):
    """Configuration for the published document set."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore", frozen=True
    )

    bucket: str = Field(validation_alias="DOCSET_GATEWAY_BUCKET")
    namespace_prefix: str = Field(validation_alias="DOCSET_GATEWAY_NAMESPACE")
    mount_path: str = Field(validation_alias="DOCSET_GATEWAY_MOUNT_PATH")
    redirect_root: bool = Field(
        default=False,
        validation_alias="DOCSET_GATEWAY_REDIRECT_ROOT",
    )
    log_level: str = Field(
        default="INFO",
        validation_alias="DOCSET_GATEWAY_LOG_LEVEL",
    )
    host: str = Field(default="0.0.0.0", validation_alias="DOCSET_GATEWAY_HOST")
    port: int = Field(default=8080, validation_alias="DOCSET_GATEWAY_PORT")

    @field_validator("bucket")
    @classmethod
    def _require_bucket(cls, value: str) -> str:
        value = value.strip()
        if not value:
            msg = "bucket must not be empty"
            raise ValueError(msg)
        return value

    @field_validator("namespace_prefix")
    @classmethod
    def _normalize_namespace(cls, value: str) -> str:
        value = value.strip().strip("/")
        if not value:
            msg = "namespace prefix must not be empty"
            raise ValueError(msg)
        return value

    @field_validator("mount_path")
    @classmethod
    def _normalize_mount_path(cls, value: str) -> str:
        normalized = normalize_mount_path(value)
        if normalized == "/":
            msg = "mount path must name a path segment"
            raise ValueError(msg)
        return normalized

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in logging.getLevelNamesMapping():
            msg = f"unknown log level {value!r}"
            raise ValueError(msg)
        return level


def load_settings_from_env() -> GatewaySettings:
    """Load gateway settings from environment variables.

    Returns:
        GatewaySettings populated from environment variables.

    Raises:
        ConfigurationError: a required variable is missing or invalid.
    """
    try:
        return GatewaySettings()
    except ValidationError as error:
        fields = ", ".join(
            str(detail["loc"][0]) for detail in error.errors() if detail["loc"]
        )
        msg = f"invalid gateway configuration ({fields}): {error}"
        raise ConfigurationError(msg) from error


def load_storage_settings_from_env() -> StorageSettings:
    """Load blob store connection settings from environment variables.

    Returns:
        StorageSettings instance populated from environment variables.
    """
    try:
        return StorageSettings()
    except ValidationError as error:
        msg = f"invalid storage configuration: {error}"
        raise ConfigurationError(msg) from error


class DocsetGateway:
    def __init__(self, settings: GatewaySettings, store: ObjectStore):
        self.settings = settings
        self._store = store

    @classmethod
    def from_env(cls) -> DocsetGateway:
        """Create a DocsetGateway from environment variables.

        Returns:
            DocsetGateway configured from environment variables.

        Raises:
            ConfigurationError: the environment lacks required settings.
        """
        settings = load_settings_from_env()
        store = ObjectStore.from_settings(
            settings.bucket, load_storage_settings_from_env()
        )
        return cls(settings, store)

    @property
    def mount_path(self) -> str:
        return self.settings.mount_path

    @property
    def namespace_prefix(self) -> str:
        return self.settings.namespace_prefix

    async def startup(self) -> None:
        LOG.info(
            "docset gateway ready (bucket=%s, namespace=%s, mount=%s)",
            self._store.bucket,
            self.namespace_prefix,
            self.mount_path,
        )

    async def shutdown(self) -> None:
        await _run_sync(self._store.close)

    async def handle(self, request: Request, path: str) -> Response:
        LOG.debug("handle method=%s path=%s", request.method, path)
        if not self._is_mounted(path):
            if path == "/" and self.settings.redirect_root:
                return Redirect(path=self.mount_path, status_code=303)
            return self._plain_response("not found", 404)

        if request.method != "GET":
            return Response(
                content="method not allowed",
                status_code=405,
                media_type=MediaType.TEXT,
                headers={"Allow": "GET"},
            )

        if path == self.mount_path or is_index_request(path):
            return await self._redirect_to_index(path)
        return await self._serve_asset(path)

    def _is_mounted(self, path: str) -> bool:
        return path == self.mount_path or path.startswith(f"{self.mount_path}/")

    async def _redirect_to_index(self, path: str) -> Response:
        prefix = f"{self.namespace_prefix}/"
        try:
            key = await _run_sync(
                lambda: resolve_index(
                    self._store.iter_keys(prefix, from_thread.check_cancelled)
                )
            )
        except NotFoundError as error:
            LOG.info("no index document under %s (path=%s)", prefix, path)
            return self._plain_response(str(error), 404)
        except BackendError:
            return self._plain_response("internal server error", 500)

        location = to_public_path(key, self.mount_path, self.namespace_prefix)
        LOG.debug("redirect path=%s index=%s location=%s", path, key, location)
        return Redirect(path=location, status_code=303)

    async def _serve_asset(self, path: str) -> Response:
        key = to_storage_key(path, self.mount_path, self.namespace_prefix)
        try:
            stored = await _run_sync(partial(self._store.fetch, key))
        except NotFoundError:
            LOG.info("object not found key=%s (path=%s)", key, path)
            return self._plain_response(f"{path} not found", 404)
        except BackendError:
            return self._plain_response("internal server error", 500)

        LOG.debug("GET hit key=%s size=%s", key, stored.attributes.size)
        return self._to_streaming_response(stored, path)

    def _to_streaming_response(self, stored: StoredObject, path: str) -> Stream:
        body = stored.body

        async def iterator() -> AsyncIterator[bytes]:
            try:
                while True:
                    chunk = await _run_sync(body.read, CHUNK_SIZE)
                    if not chunk:
                        break
                    yield chunk
            finally:
                # Runs on client disconnect too, inside a cancelled scope.
                with CancelScope(shield=True):
                    await _run_sync(body.close)

        return Stream(
            content=iterator,
            status_code=200,
            media_type=self.content_type_for(stored, path),
            headers=self._object_headers(stored),
        )

    @staticmethod
    def content_type_for(stored: StoredObject, path: str) -> str:
        return (
            stored.attributes.content_type
            or mime_for(path)
            or DEFAULT_CONTENT_TYPE
        )

    @staticmethod
    def _object_headers(stored: StoredObject) -> dict[str, str]:
        headers: dict[str, str] = {}
        attributes = stored.attributes
        if attributes.size is not None:
            headers["Content-Length"] = str(attributes.size)
        if attributes.content_encoding:
            headers["Content-Encoding"] = attributes.content_encoding
        return headers

    @staticmethod
    def _plain_response(message: str, status_code: int) -> Response:
        return Response(
            content=message, status_code=status_code, media_type=MediaType.TEXT
        )
