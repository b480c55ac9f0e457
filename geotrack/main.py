import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .core.config import Settings, settings
from .routers import permissions, tracking
from .services.providers import LocationProvider
from .services.tracker import build_tracker

log = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(cfg: Settings = settings, provider: Optional[LocationProvider] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(cfg.log_level)
        app.state.tracker = build_tracker(cfg, provider=provider)
        log.info("Using %s provider, forwarding to %s", app.state.tracker.provider.name, cfg.forward_endpoint or "nowhere")
        try:
            yield
        finally:
            await app.state.tracker.aclose()

    app = FastAPI(title=cfg.app_name, lifespan=lifespan)
    app.state.settings = cfg

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(tracking.router)
    app.include_router(permissions.router)

    @app.get("/")
    def root(request: Request):
        tracker = request.app.state.tracker
        return {
            "name": cfg.app_name,
            "env": cfg.app_env,
            "status": tracker.state.status.value,
            "display": tracker.state.display_text,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
