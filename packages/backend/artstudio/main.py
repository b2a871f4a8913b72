from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .api import configurations_router, generate_router, mockups_router
from .api.rate_limit import ShopRateLimiter
from .config import get_settings
from .db.database import get_database
from .db.migrations import init_db
from .log import setup_logging

logger = logging.getLogger(__name__)


def _resolve_cors_options() -> tuple[list[str], bool]:
    settings = get_settings()
    allow_origins = settings.cors_allow_origins or ["*"]
    allow_credentials = settings.cors_allow_credentials

    if "*" in allow_origins and allow_credentials:
        logger.warning(
            "CORS_ALLOW_CREDENTIALS is true while CORS_ALLOW_ORIGINS contains '*'; forcing credentials=false"
        )
        allow_credentials = False

    return allow_origins, allow_credentials


@asynccontextmanager
async def _lifespan(_: FastAPI):
    init_db(get_database())
    yield


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(Path(settings.log_dir) if settings.log_dir else None, settings.log_level)

    app = FastAPI(title="AI Art Studio API", lifespan=_lifespan)

    allow_origins, allow_credentials = _resolve_cors_options()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.generation_limiter = ShopRateLimiter(settings.generation_rate_limit, settings.rate_limit_window_seconds)
    app.state.mockup_limiter = ShopRateLimiter(settings.mockup_rate_limit, settings.rate_limit_window_seconds)

    app.include_router(configurations_router)
    app.include_router(generate_router)
    app.include_router(mockups_router)

    objects_dir = Path(settings.storage_dir).expanduser()
    objects_dir.mkdir(parents=True, exist_ok=True)
    app.mount(settings.objects_url_prefix, StaticFiles(directory=objects_dir), name="objects")

    @app.get("/health")
    def health() -> dict:
        checks: dict[str, str] = {}
        overall = "ok"

        try:
            get_database().ping()
            checks["database"] = "ok"
        except Exception as exc:
            checks["database"] = f"error: {exc}"
            overall = "degraded"

        checks["image_generator"] = "ok" if get_settings().image_generator_url else "missing"
        return {"status": overall, "checks": checks}

    return app


__all__ = ["create_app"]
