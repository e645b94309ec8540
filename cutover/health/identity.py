"""
Server identity endpoint.

Answers GET /api/server-identity with the instance tag from SERVER_ID so the
traffic split verifier can tell which instance served a request.
"""

import os
import platform
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional

from aiohttp import web

IDENTITY_PATH = "/api/server-identity"
UNKNOWN_ID = "unknown"


def identity_payload(environ: Optional[Mapping[str, str]] = None) -> dict:
    env = os.environ if environ is None else environ
    return {
        "id": env.get("SERVER_ID") or UNKNOWN_ID,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "python_version": platform.python_version(),
        "env": env.get("APP_ENV") or env.get("MODE"),
    }


def make_identity_handler(
    environ: Optional[Mapping[str, str]] = None,
) -> Callable[[web.Request], "web.Response"]:
    async def handle_identity(request: web.Request) -> web.Response:
        # Clients send a cache-busting query; never let a proxy cache this
        return web.json_response(
            identity_payload(environ),
            headers={"Cache-Control": "no-store"},
        )
    return handle_identity


def add_identity_route(app: web.Application, environ: Optional[Mapping[str, str]] = None,
                       path: str = IDENTITY_PATH) -> None:
    app.router.add_get(path, make_identity_handler(environ))


def make_identity_app(environ: Optional[Mapping[str, str]] = None, path: str = IDENTITY_PATH) -> web.Application:
    app = web.Application()
    add_identity_route(app, environ, path)
    return app
