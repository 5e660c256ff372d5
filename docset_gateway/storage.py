from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Protocol

from boto3.session import Session
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import BackendError, NotFoundError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

LOG = logging.getLogger("docset_gateway.storage")

NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})

# S3 reports this when an object was stored without a content type.
UNSET_CONTENT_TYPE = "binary/octet-stream"


class StorageSettings(BaseSettings):
    """Connection settings for the S3-compatible blob store."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore"
    )

    endpoint: str | None = Field(
        default=None,
        validation_alias="DOCSET_GATEWAY_S3_ENDPOINT",
    )
    access_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "DOCSET_GATEWAY_S3_ACCESS_KEY_ID",
            "AWS_ACCESS_KEY_ID",
        ),
    )
    secret_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "DOCSET_GATEWAY_S3_SECRET_ACCESS_KEY",
            "AWS_SECRET_ACCESS_KEY",
        ),
    )
    session_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "DOCSET_GATEWAY_S3_SESSION_TOKEN",
            "AWS_SESSION_TOKEN",
        ),
    )
    region: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "DOCSET_GATEWAY_S3_REGION",
            "AWS_REGION",
        ),
    )
    addressing_style: Literal["auto", "virtual", "path"] = Field(
        default="virtual",
        validation_alias="DOCSET_GATEWAY_S3_ADDRESSING_STYLE",
    )


class ObjectBody(Protocol):
    def read(self, amt: int | None = None) -> bytes: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class ObjectAttributes:
    content_type: str | None
    size: int | None
    content_encoding: str | None


@dataclass(frozen=True)
class StoredObject:
    key: str
    attributes: ObjectAttributes
    body: ObjectBody


def is_not_found(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in NOT_FOUND_CODES


class ObjectStore:
    """Read-only access to one bucket of the blob store.

    All methods block; callers on the event loop run them in a worker thread.
    """

    def __init__(self, bucket: str, client: Any):
        self.bucket = bucket
        self._client = client

    @classmethod
    def from_settings(cls, bucket: str, settings: StorageSettings) -> ObjectStore:
        """Create an ObjectStore backed by a boto3 S3 client.

        Returns:
            ObjectStore reading from ``bucket``.
        """
        session = Session(
            aws_access_key_id=settings.access_key,
            aws_secret_access_key=settings.secret_key,
            aws_session_token=settings.session_token,
            region_name=settings.region,
        )
        client = session.client(
            "s3",
            endpoint_url=settings.endpoint,
            config=BotoConfig(
                signature_version="s3v4",
                retries={"max_attempts": 1, "mode": "standard"},
                s3={"addressing_style": settings.addressing_style},
            ),
        )
        return cls(bucket, client)

    def iter_keys(
        self,
        prefix: str,
        check_cancelled: Callable[[], None] | None = None,
    ) -> Iterator[str]:
        """Yield the keys under ``prefix`` in ascending order.

        Pages are requested lazily as the iterator advances. ``check_cancelled``
        runs after each page arrives and before each key is handed out, so a
        cancelled caller stops the listing before the next page is requested.

        Raises:
            BackendError: listing failed, before or during iteration.
        """
        paginator = self._client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                if check_cancelled is not None:
                    check_cancelled()
                for entry in page.get("Contents", []):
                    if check_cancelled is not None:
                        check_cancelled()
                    yield entry["Key"]
        except (ClientError, BotoCoreError) as error:
            LOG.warning(
                "listing failed for s3://%s/%s: %s", self.bucket, prefix, error
            )
            msg = f"failed to list objects under {prefix!r}"
            raise BackendError(msg) from error

    def fetch(self, key: str) -> StoredObject:
        """Open the object stored at ``key``.

        The caller owns the returned body and must close it.

        Raises:
            NotFoundError: no object exists at ``key``.
            BackendError: the read failed for any other reason.
        """
        try:
            result = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as error:
            if is_not_found(error):
                LOG.debug("miss for s3://%s/%s", self.bucket, key)
                msg = f"object {key!r} not found"
                raise NotFoundError(msg) from error
            LOG.warning("read failed for s3://%s/%s: %s", self.bucket, key, error)
            msg = f"failed to read object {key!r}"
            raise BackendError(msg) from error
        except BotoCoreError as error:
            LOG.warning("read failed for s3://%s/%s: %s", self.bucket, key, error)
            msg = f"failed to read object {key!r}"
            raise BackendError(msg) from error

        return StoredObject(
            key=key,
            attributes=self._attributes(result),
            body=result["Body"],
        )

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def _attributes(result: dict[str, Any]) -> ObjectAttributes:
        content_type = result.get("ContentType") or None
        if content_type == UNSET_CONTENT_TYPE:
            content_type = None
        size = result.get("ContentLength")
        return ObjectAttributes(
            content_type=content_type,
            size=int(size) if size is not None else None,
            content_encoding=result.get("ContentEncoding") or None,
        )
