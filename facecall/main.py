# facecall/main.py

from __future__ import annotations

import os
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from facecall.core.config import settings
from facecall.core.logging import setup_logging, get_logger
from facecall.services.room_registry import RoomRegistry
from facecall.services.connection_manager import ConnectionManager
from facecall.services.relay import Relay
from facecall.api.routes import root, health, metrics
from facecall.api import websocket as websocket_module

# Configure logging first
setup_logging()
logger = get_logger(__name__)


def _mount_static(app: FastAPI, path: str, directory: str, name: str) -> None:
    if os.path.isdir(directory):
        app.mount(path, StaticFiles(directory=directory, html=True), name=name)
    else:
        logger.warning("Static directory %s not found, %s is not served", directory, path)


def create_app(registry: RoomRegistry | None = None) -> FastAPI:
    """
    Build the relay application.

    Each app owns its own registry, connection manager and relay, so several
    independent relays can live in one process (tests rely on this).
    """
    app = FastAPI(title="facecall - signaling relay")

    # Rooms are unauthenticated; the relay is reachable from any origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.room_registry = registry if registry is not None else RoomRegistry()
    app.state.connection_manager = ConnectionManager()
    app.state.relay = Relay(app.state.room_registry, app.state.connection_manager)
    app.state.started_at = datetime.now(timezone.utc)

    # REST routes
    app.include_router(root.router)
    app.include_router(health.router)
    app.include_router(metrics.router)

    # WebSocket routes
    app.include_router(websocket_module.router)

    # Face-expression model files must stay at a stable path for the client
    _mount_static(app, "/models", settings.MODELS_DIR, "models")
    _mount_static(app, "/static", settings.STATIC_DIR, "static")

    @app.on_event("startup")
    async def startup_event():
        logger.info("🚀 Relay starting on port %d", settings.PORT)

    return app


app = create_app()


def run() -> None:
    import uvicorn
    uvicorn.run("facecall.main:app", host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
