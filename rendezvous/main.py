from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rendezvous import __version__
from rendezvous.routes.health import router as health_router
from rendezvous.routes.ws import router as ws_router
from rendezvous.service.hub import SignalingHub
from rendezvous.settings import AppSettings, settings


def create_app(app_settings: Optional[AppSettings] = None) -> FastAPI:
    cfg = app_settings if app_settings is not None else settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Process-wide signaling state, exposed via app.state for dependency access
        hub = SignalingHub(cfg)
        app.state.hub = hub
        await hub.supervisor.start()

        try:
            yield # App runs here
        finally:
            # Graceful shutdown
            await hub.shutdown()

    app = FastAPI(title="Rendezvous Signaling",
                  version=__version__,
                  lifespan=lifespan)

    if cfg.cors_origin_regex:
        app.add_middleware(
            CORSMiddleware,
            allow_origin_regex=cfg.cors_origin_regex,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(health_router)
    app.include_router(ws_router)
    return app


app = create_app()
