from __future__ import annotations

from typing import Any, Mapping

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from .config_schema import AppConfig
from .errors import InvalidParameterError
from .service import CastFeedService


def create_app(
    config: AppConfig | None = None,
    *,
    service: CastFeedService | None = None,
    environ: Mapping[str, str] | None = None,
) -> FastAPI:
    """
    Build the HTTP surface.

    `/casts/today` and `/casts/user` always answer 200 with a renderable payload,
    except for a missing or malformed user id, which is a 400.
    """
    cfg = service.config if service is not None else (config or AppConfig())
    feed_service = service or CastFeedService.from_environment(cfg, environ=environ)

    app = FastAPI(title="cast-feed")
    app.state.service = feed_service

    @app.exception_handler(InvalidParameterError)
    async def _invalid_parameter(request: Request, exc: InvalidParameterError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"ok": True, "apiKeyPresent": feed_service.api_key_present}

    @app.get("/casts/today")
    async def casts_today() -> JSONResponse:
        result = await feed_service.get_today_top_casts()
        headers: dict[str, str] = {}
        if cfg.server.cache_control:
            headers["Cache-Control"] = cfg.server.cache_control
        return JSONResponse(content=result.to_payload(), headers=headers)

    @app.get("/casts/user")
    async def casts_user(
        id: str | None = Query(default=None),
        fid: str | None = Query(default=None),
    ) -> JSONResponse:
        raw = id if id is not None else fid
        result = await feed_service.get_author_top_casts(raw)
        return JSONResponse(content=result.to_payload())

    return app
