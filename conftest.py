"""Shared fixtures: album pages served from a local aiohttp test server."""

import asyncio
import json
import logging
from html import escape

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

ALBUM_PATH = "/album/demo"
COVER_URL = "https://f4.bcbits.com/img/a0123456789_10.jpg"


def album_page(payload, cover: str | None = COVER_URL) -> str:
    """Render a minimal album page around a data-tralbum payload."""
    if not isinstance(payload, str):
        payload = json.dumps(payload)
    meta = f'<meta property="og:image" content="{cover}">' if cover else ""
    return (
        "<!DOCTYPE html><html><head>"
        f"{meta}"
        f'<script type="text/javascript" data-tralbum="{escape(payload, quote=True)}">'
        "</script></head><body></body></html>"
    )


def make_app(
    payload_factory,
    audio: dict[str, bytes],
    page_status: int = 200,
    page_suffix: bytes = b"",
):
    """Album page at ALBUM_PATH, audio files under /stream/<name>.

    ``payload_factory`` receives the server origin so track URLs can
    point back at the same server. ``page_suffix`` is appended to the
    page body as raw bytes.
    """

    async def page(request: web.Request) -> web.Response:
        if page_status != 200:
            return web.Response(status=page_status, text="unavailable")
        origin = str(request.url.origin())
        body = album_page(payload_factory(origin)).encode("utf-8") + page_suffix
        return web.Response(body=body, content_type="text/html")

    async def stream(request: web.Request) -> web.Response:
        name = request.match_info["name"]
        if name not in audio:
            raise web.HTTPNotFound()
        return web.Response(body=audio[name], content_type="audio/mpeg")

    async def truncated(request: web.Request) -> web.StreamResponse:
        """Announce the full length, send half of it, then drop the connection."""
        body = audio[request.match_info["name"]]
        response = web.StreamResponse(headers={"Content-Length": str(len(body))})
        await response.prepare(request)
        await response.write(body[: len(body) // 2])
        request.transport.close()
        return response

    app = web.Application()
    app.router.add_get(ALBUM_PATH, page)
    app.router.add_get("/stream/{name}", stream)
    app.router.add_get("/truncated/{name}", truncated)
    return app


def _serve(app: web.Application, scenario):
    """Run ``scenario(server)`` while ``app`` is being served."""

    async def runner():
        server = TestServer(app)
        await server.start_server()
        try:
            return await scenario(server)
        finally:
            await server.close()

    return asyncio.run(runner())


@pytest.fixture
def serve():
    return _serve


@pytest.fixture
def logger():
    return logging.getLogger("bandscrape")
