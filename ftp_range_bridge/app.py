from __future__ import annotations

from typing import TYPE_CHECKING

from litestar import Litestar, Request, Response, get
from litestar.config.cors import CORSConfig
from litestar.plugins.prometheus import PrometheusConfig, PrometheusController

from .bridge import BridgeSettings, FtpRangeBridge

if TYPE_CHECKING:
    from .bridge import SessionFactory

prometheus_config = PrometheusConfig(
    app_name="ftp_range_bridge", prefix="ftp_range_bridge"
)


def create_app(
    settings: BridgeSettings | None = None,
    session_factory: SessionFactory | None = None,
) -> Litestar:
    """Create the FTP range bridge ASGI application."""
    bridge = FtpRangeBridge(
        settings=settings or BridgeSettings(),
        session_factory=session_factory,
    )

    @get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @get("/{filename:path}", include_in_schema=False)
    async def download(request: Request, filename: str) -> Response:
        return await bridge.handle(request, filename)

    cors_config = CORSConfig(
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
        expose_headers=[
            "Accept-Ranges",
            "Content-Disposition",
            "Content-Length",
            "Content-Range",
        ],
    )

    return Litestar(
        route_handlers=[health, download, PrometheusController],
        cors_config=cors_config,
        middleware=[prometheus_config.middleware],
    )


app = create_app()
