import logging
from collections import Counter
from contextlib import asynccontextmanager
from typing import Callable, Union

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from . import __version__
from .auth import Authenticator, extract_api_key
from .pool import CredentialPool
from .proxy import LyricsRequest, ProxyCore, UpstreamClient
from .ratelimit import FixedWindowRateLimiter
from .types import ProxyConfig
from .upstream import SpotifyLyricsClient

logger = logging.getLogger("lyrics_proxy")


def build_core(
    cfg: ProxyConfig,
    upstream: Union[UpstreamClient, None] = None,
    clock: Union[Callable[[], float], None] = None,
) -> ProxyCore:
    """Wire authenticator, rate limiter, credential pool and upstream client from config."""
    pool = CredentialPool(cfg.credential_configs(), backoff=cfg.backoff, clock=clock)
    limiter = FixedWindowRateLimiter(cfg.rate_limit_capacity, cfg.rate_limit_window, clock=clock)
    if upstream is None:
        upstream = SpotifyLyricsClient(classifier=cfg.status_map, timeout=cfg.upstream_timeout)
    return ProxyCore(
        Authenticator(cfg.api_keys),
        limiter,
        pool,
        upstream,
        timeout=cfg.upstream_timeout,
        max_retries=cfg.max_retries,
    )


def create_app(cfg: ProxyConfig, core: Union[ProxyCore, None] = None) -> FastAPI:
    core = core or build_core(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        aclose = getattr(core.upstream, "aclose", None)
        if aclose is not None:
            await aclose()

    app = FastAPI(title="lyrics-proxy", version=__version__, lifespan=lifespan)
    app.state.core = core

    @app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return f"lyrics-proxy v{__version__}"

    @app.get("/health")
    async def health():
        counts = Counter(c["health"] for c in core.pool.snapshot())
        return {
            "status": "ok" if counts.get("active") else "degraded",
            "credentials": {h: counts.get(h, 0) for h in ("active", "cooldown", "dead")},
        }

    @app.get("/lyrics/{track_id}")
    async def lyrics(track_id: str, request: Request):
        api_key = extract_api_key(request.headers, request.query_params, cfg.auth)
        params = dict(request.query_params)
        if cfg.auth.in_ == "query":
            params.pop(cfg.auth.query_param, None)
        params["track_id"] = track_id
        result = await core.handle(LyricsRequest(api_key=api_key, params=params))
        logger.debug(f"GET /lyrics/{track_id} -> {result.status_code} ({result.status.value})")
        return JSONResponse(status_code=result.status_code, content=result.body, headers=result.headers)

    return app
