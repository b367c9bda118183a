"""Tiny HTTP endpoint so hosting platforms see the process as alive."""

from __future__ import annotations

import logging

from aiohttp import web

logger = logging.getLogger("ruibot.keepalive")

ALIVE_TEXT = "Rui is alive"


async def _handle_root(_request: web.Request) -> web.Response:
    return web.Response(text=ALIVE_TEXT)


def build_app() -> web.Application:
    app = web.Application()
    app.add_routes([web.get("/", _handle_root)])
    return app


async def start_keepalive(port: int, host: str = "0.0.0.0") -> web.AppRunner:
    runner = web.AppRunner(build_app())
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("Keep-alive server listening on %s:%s", host, port)
    return runner


__all__ = ["ALIVE_TEXT", "build_app", "start_keepalive"]
