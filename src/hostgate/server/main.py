"""API server runner."""

from __future__ import annotations

import asyncio

import structlog
from aiohttp import web

from hostgate.core.config import HostgateConfig
from hostgate.lifecycle.factory import build_lifecycle
from hostgate.server.api import create_app

logger = structlog.get_logger()


async def run_server(config: HostgateConfig, stop: asyncio.Event | None = None) -> None:
    """Serve the API until stop is set (or forever)."""
    lifecycle = build_lifecycle(config)
    app = create_app(lifecycle, config)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, config.server.host, config.server.port)
    await site.start()
    logger.info(
        "API server started",
        host=config.server.host,
        port=config.server.port,
        platform_domain=config.platform.domain,
    )
    if not config.server.cron_secret:
        logger.warning("No cron secret configured; sweep endpoints will reject all calls")

    try:
        await (stop or asyncio.Event()).wait()
    finally:
        await runner.cleanup()
        logger.info("API server stopped")
