from __future__ import annotations

import logging

import httpx
from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware

from ztadmin.config import AppSettings, get_settings
from ztadmin.controller.client import create_controller_client
from ztadmin.db.session import SessionLocal
from ztadmin.routes.admin import router as admin_router
from ztadmin.world.lifecycle import create_world_lifecycle_manager


def create_app(settings: AppSettings | None = None) -> FastAPI:
    app_settings = settings or get_settings()
    logging.getLogger("ztadmin").setLevel(app_settings.log_level)

    app = FastAPI(title="ZT Root Admin", version="0.1.0")
    app.state.settings = app_settings
    app.state.session_maker = SessionLocal
    app.state.controller_client_factory = create_controller_client
    app.state.world_lifecycle_manager = create_world_lifecycle_manager(app_settings)
    app.state.public_http_client_factory = httpx.AsyncClient

    app.add_middleware(
        SessionMiddleware,
        secret_key=app_settings.app_secret_key,
        session_cookie=app_settings.session_cookie_name,
        max_age=app_settings.session_cookie_max_age_seconds,
        same_site="lax",
        https_only=app_settings.session_cookie_secure,
    )

    app.include_router(admin_router)

    @app.get("/", tags=["system"], name="root")
    async def root() -> dict[str, str]:
        return {"service": "zt-root-admin", "status": "ok"}

    @app.get("/healthz", tags=["system"])
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
