"""
FastAPI application factory for the live classifier.

Routes:
- /api/session/* -> start/stop/status of the detection session
- /api/results/latest, /api/ws -> aggregated results (poll or push)
- /api/snapshot.jpg, /api/stream.mjpg -> camera preview
- /api/health -> liveness
- /static/* -> optional static UI assets
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from runtime.controller import SessionController
from .routes import api
from .state import SharedState

logger = logging.getLogger(__name__)


def create_app(controller: SessionController, config: Optional[Dict[str, Any]] = None) -> FastAPI:
    """Create the FastAPI app around a SessionController."""
    shared = SharedState()
    shared.attach(controller)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Web server started")
        try:
            yield
        finally:
            # The camera must not outlive the server.
            await controller.shutdown()
            shared.detach()
            logger.info("Web server stopped")

    app = FastAPI(
        title="Live Classifier",
        version="0.1.0",
        description="Live camera image classifier",
        lifespan=lifespan,
    )
    app.state.controller = controller
    app.state.shared = shared
    app.state.config = config or {}

    # CORS for development (Vite dev server)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api.router, prefix="/api")

    static_path = Path("src/web/static")
    if static_path.exists():
        app.mount("/static", StaticFiles(directory=str(static_path)), name="static")

    return app
