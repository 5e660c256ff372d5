"""ASGI application for the docset gateway.

Serve it with ``docset-gateway`` (see :func:`main`) or any ASGI server that
accepts a factory, e.g. ``uvicorn --factory docset_gateway.app:create_app``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import anyio
from litestar import Litestar, Request, get
from litestar.config.cors import CORSConfig
from litestar.handlers import asgi
from litestar.logging.config import LoggingConfig
from litestar.plugins.prometheus import PrometheusConfig, PrometheusController

from .gateway import DocsetGateway, load_settings_from_env

if TYPE_CHECKING:
    from anyio import CancelScope
    from litestar.response import Response
    from litestar.types import Receive, Scope, Send

LOG = logging.getLogger("docset_gateway.app")

prometheus_config = PrometheusConfig(app_name="docset_gateway", prefix="docset_gateway")


async def _cancel_on_disconnect(
    receive: Receive, scope: CancelScope, path: str
) -> None:
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            LOG.debug("client disconnected path=%s", path)
            scope.cancel()
            return


def _request_path(scope: Scope) -> str:
    path = scope.get("path", "/")
    if not path.startswith("/"):
        path = f"/{path}"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"
    return path


def create_app(gateway: DocsetGateway | None = None) -> Litestar:
    """Create the docset gateway ASGI application.

    Without an explicit ``gateway`` the configuration is read from the
    environment and a missing value raises ``ConfigurationError``.
    """
    if gateway is None:
        gateway = DocsetGateway.from_env()

    @get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @asgi(path="/", is_mount=True, copy_scope=True)
    async def gateway_handler(scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope=scope, receive=receive)
        path = _request_path(scope)

        # A disconnect while the backend is being queried cancels the work.
        response: Response | None = None
        async with anyio.create_task_group() as task_group:
            task_group.start_soon(
                _cancel_on_disconnect, receive, task_group.cancel_scope, path
            )
            response = await gateway.handle(request, path)
            task_group.cancel_scope.cancel()

        if response is None:
            return
        asgi_response = response.to_asgi_response(None, request)
        await asgi_response(scope, receive, send)

    async def startup(app: Litestar) -> None:
        await gateway.startup()

    async def shutdown(app: Litestar) -> None:
        await gateway.shutdown()

    cors_config = CORSConfig(
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    logging_config = LoggingConfig(
        configure_root_logger=False,
        loggers={
            "docset_gateway": {
                "level": gateway.settings.log_level,
                "handlers": ["queue_listener"],
            },
        },
    )

    return Litestar(
        route_handlers=[health, gateway_handler, PrometheusController],
        on_startup=[startup],
        on_shutdown=[shutdown],
        cors_config=cors_config,
        logging_config=logging_config,
        middleware=[prometheus_config.middleware],
    )


def main() -> None:
    """Run the gateway with uvicorn on the configured host and port."""
    import uvicorn

    settings = load_settings_from_env()
    uvicorn.run(
        "docset_gateway.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
