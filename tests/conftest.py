from __future__ import annotations

import io
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError
from docset_gateway.gateway import DocsetGateway, load_settings_from_env
from docset_gateway.storage import ObjectStore

if TYPE_CHECKING:
    from collections.abc import Generator, Iterator

    from botocore.client import BaseClient
    from pytest_databases._service import DockerService

TEST_BUCKET = "docset-bucket"
TEST_NAMESPACE = "abc123"
TEST_MOUNT_PATH = "/docs"


def _client_error(code: str, status: int, operation: str) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": f"{code} error"},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


def _listing_pages(*keys: str, page_size: int = 2) -> list[dict]:
    pages = []
    for start in range(0, len(keys), page_size):
        chunk = keys[start : start + page_size]
        pages.append({"Contents": [{"Key": key} for key in chunk]})
    return pages or [{"KeyCount": 0}]


def _failing_listing(*keys: str, error: ClientError) -> Iterator[dict]:
    yield {"Contents": [{"Key": key} for key in keys]}
    raise error


def _object(
    body: bytes,
    content_type: str | None = None,
    content_encoding: str | None = None,
) -> dict:
    result = {"Body": io.BytesIO(body), "ContentLength": len(body)}
    if content_type is not None:
        result["ContentType"] = content_type
    if content_encoding is not None:
        result["ContentEncoding"] = content_encoding
    return result


@pytest.fixture
def s3_stubs():
    return {
        "client_error": _client_error,
        "listing": _listing_pages,
        "failing_listing": _failing_listing,
        "object": _object,
    }


@pytest.fixture
def gateway_env(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set the required gateway environment variables."""
    env_vars = {
        "DOCSET_GATEWAY_BUCKET": TEST_BUCKET,
        "DOCSET_GATEWAY_NAMESPACE": TEST_NAMESPACE,
        "DOCSET_GATEWAY_MOUNT_PATH": TEST_MOUNT_PATH,
    }
    for key in (
        "DOCSET_GATEWAY_REDIRECT_ROOT",
        "DOCSET_GATEWAY_LOG_LEVEL",
        "DOCSET_GATEWAY_HOST",
        "DOCSET_GATEWAY_PORT",
    ):
        monkeypatch.delenv(key, raising=False)
    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)
    return env_vars


@pytest.fixture
def s3_client() -> MagicMock:
    """A stand-in for a boto3 S3 client with an empty bucket."""
    client = MagicMock()
    client.get_paginator.return_value.paginate.return_value = _listing_pages()
    client.get_object.side_effect = _client_error("NoSuchKey", 404, "GetObject")
    return client


@pytest.fixture
def gateway(gateway_env, s3_client: MagicMock) -> DocsetGateway:
    settings = load_settings_from_env()
    return DocsetGateway(settings, ObjectStore(settings.bucket, s3_client))


@dataclass
class MinioService:
    endpoint: str
    access_key: str
    secret_key: str
    secure: bool


@pytest.fixture(scope="session")
def minio_access_key() -> str:
    return os.getenv("MINIO_ACCESS_KEY", "minio")


@pytest.fixture(scope="session")
def minio_secret_key() -> str:
    return os.getenv("MINIO_SECRET_KEY", "minio123")


@pytest.fixture(scope="session")
def minio_secure() -> bool:
    return os.getenv("MINIO_SECURE", "false").lower() in {
        "true",
        "1",
        "yes",
        "y",
        "t",
        "on",
    }


@pytest.fixture(scope="session")
def minio_service_name() -> str:
    return "minio-docset-gateway"


@pytest.fixture(scope="session")
def minio_service(
    docker_service: DockerService,
    minio_access_key: str,
    minio_secret_key: str,
    minio_secure: bool,
    minio_service_name: str,
) -> Generator[MinioService]:
    from urllib.error import URLError
    from urllib.request import Request, urlopen

    from pytest_databases.types import ServiceContainer

    def check(_service: ServiceContainer) -> bool:
        scheme = "https" if minio_secure else "http"
        url = f"{scheme}://{_service.host}:{_service.port}/minio/health/ready"
        if not url.startswith(("http:", "https:")):
            msg = "URL must start with 'http:' or 'https:'"
            raise ValueError(msg)
        try:
            with urlopen(url=Request(url, method="GET"), timeout=10) as response:
                return response.status == 200
        except (URLError, ConnectionError):
            return False

    env = {
        "MINIO_ROOT_USER": minio_access_key,
        "MINIO_ROOT_PASSWORD": minio_secret_key,
    }

    with docker_service.run(
        image="quay.io/minio/minio",
        name=minio_service_name,
        command="server /data",
        container_port=9000,
        timeout=20,
        pause=0.5,
        env=env,
        check=check,
    ) as service:
        yield MinioService(
            endpoint=f"{service.host}:{service.port}",
            access_key=minio_access_key,
            secret_key=minio_secret_key,
            secure=minio_secure,
        )


def _minio_endpoint(minio_service: MinioService) -> str:
    scheme = "https" if minio_service.secure else "http"
    return f"{scheme}://{minio_service.endpoint}"


@pytest.fixture
def minio_s3_client(minio_service: MinioService) -> BaseClient:
    """Create a boto3 S3 client for seeding the MinIO service."""
    import boto3
    from botocore.config import Config

    return boto3.client(
        "s3",
        endpoint_url=_minio_endpoint(minio_service),
        aws_access_key_id=minio_service.access_key,
        aws_secret_access_key=minio_service.secret_key,
        region_name="us-east-1",
        config=Config(s3={"addressing_style": "path"}),
    )


@pytest.fixture
def minio_env(
    minio_service: MinioService,
    gateway_env: dict[str, str],
    monkeypatch: pytest.MonkeyPatch,
) -> dict[str, str]:
    """Point the gateway's storage settings at the MinIO service."""
    env_vars = {
        "DOCSET_GATEWAY_S3_ENDPOINT": _minio_endpoint(minio_service),
        "DOCSET_GATEWAY_S3_ACCESS_KEY_ID": minio_service.access_key,
        "DOCSET_GATEWAY_S3_SECRET_ACCESS_KEY": minio_service.secret_key,
        "DOCSET_GATEWAY_S3_REGION": "us-east-1",
        "DOCSET_GATEWAY_S3_ADDRESSING_STYLE": "path",
    }
    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)
    return {**gateway_env, **env_vars}
