from __future__ import annotations

import logging

from aiohttp import web

from offline_resilience.core.errors import NetworkError
from offline_resilience.core.models import HttpRequest
from offline_resilience.engine.events import ConnectivityChangeEvent, FetchEvent
from offline_resilience.engine.service import OfflineEngine

logger = logging.getLogger(__name__)

CONTROL_PREFIX = "/__engine__"
ENGINE_KEY = web.AppKey("engine", OfflineEngine)
ORIGIN_KEY = web.AppKey("origin", str)


def _engine(request: web.Request) -> OfflineEngine:
    return request.app[ENGINE_KEY]


async def _status(request: web.Request) -> web.Response:
    return web.json_response(_engine(request).status().to_dict())


async def _online(request: web.Request) -> web.Response:
    engine = _engine(request)
    await engine.dispatch(ConnectivityChangeEvent(online=True))
    return web.json_response(engine.status().to_dict())


async def _offline(request: web.Request) -> web.Response:
    engine = _engine(request)
    await engine.dispatch(ConnectivityChangeEvent(online=False))
    return web.json_response(engine.status().to_dict())


async def _installed(request: web.Request) -> web.Response:
    engine = _engine(request)
    engine.mark_installed()
    return web.json_response(engine.status().to_dict())


async def _update(request: web.Request) -> web.Response:
    engine = _engine(request)
    activated = await engine.update_app()
    payload = engine.status().to_dict()
    payload["activated"] = activated
    return web.json_response(payload)


async def _replay(request: web.Request) -> web.Response:
    result = await _engine(request).replay()
    return web.json_response(
        {
            "replayed": result.replayed,
            "failed_id": result.failed_id,
            "remaining": result.remaining,
            "skipped": result.skipped,
        }
    )


async def _connect_client(request: web.Request) -> web.Response:
    engine = _engine(request)
    client_id = engine.lifecycle.connect_client()
    return web.json_response(
        {"client_id": client_id, "version": engine.lifecycle.client_version(client_id)},
        status=201,
    )


async def _disconnect_client(request: web.Request) -> web.Response:
    await _engine(request).lifecycle.disconnect_client(request.match_info["client_id"])
    return web.Response(status=204)


async def _proxy(request: web.Request) -> web.StreamResponse:
    engine = _engine(request)
    origin = request.app[ORIGIN_KEY].rstrip("/")
    intercepted = HttpRequest(
        method=request.method,
        url=f"{origin}{request.rel_url.path_qs}",
        headers=request.headers,
        body=await request.read(),
        destination=request.headers.get("Sec-Fetch-Dest", ""),
    )
    try:
        response = await engine.dispatch(FetchEvent(intercepted))
    except NetworkError as e:
        logger.info("No network and no cached copy. url=%s reason=%s", intercepted.url, e.reason)
        return web.Response(status=504, text="Offline and not available in cache.\n")
    if response is None:
        return web.Response(status=502, text="Request cannot be proxied.\n")
    return web.Response(status=response.status, headers=response.headers, body=response.body)


def create_app(engine: OfflineEngine, *, origin: str) -> web.Application:
    app = web.Application()
    app[ENGINE_KEY] = engine
    app[ORIGIN_KEY] = origin
    app.router.add_get(f"{CONTROL_PREFIX}/status", _status)
    app.router.add_post(f"{CONTROL_PREFIX}/online", _online)
    app.router.add_post(f"{CONTROL_PREFIX}/offline", _offline)
    app.router.add_post(f"{CONTROL_PREFIX}/installed", _installed)
    app.router.add_post(f"{CONTROL_PREFIX}/update", _update)
    app.router.add_post(f"{CONTROL_PREFIX}/replay", _replay)
    app.router.add_post(f"{CONTROL_PREFIX}/clients", _connect_client)
    app.router.add_delete(f"{CONTROL_PREFIX}/clients/{{client_id}}", _disconnect_client)
    app.router.add_route("*", "/{tail:.*}", _proxy)
    return app
