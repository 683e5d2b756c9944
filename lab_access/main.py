"""
FastAPI application entrypoint for the lab access service.
"""

from __future__ import annotations

from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from fastapi.staticfiles import StaticFiles

from lab_access.api.routes import relay_bridge_page
from lab_access.api.routes import router as api_router
from lab_access.core.config import get_settings
from lab_access.core.logging import configure_logging
from lab_access.dependencies import (
    get_oauth_state_service,
    get_relay_page_renderer,
    get_token_cipher_service,
)

STATIC_DIR = Path(__file__).resolve().parent / "static"


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    # Key material problems must stop start-up, not the first login.
    get_token_cipher_service()
    get_oauth_state_service()

    app = FastAPI(
        title="Lab Access Control",
        version="0.1.0",
        description="Slack login, token custody and key lease for the lab attendance app.",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_relay_page_renderer().allowed_origins(),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    app.include_router(api_router, prefix="/api")
    app.add_api_route(
        settings.relay.relay_path,
        relay_bridge_page,
        methods=["GET"],
        response_class=HTMLResponse,
    )
    app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")
    return app


app = create_app()

__all__ = ["app", "create_app"]


if __name__ == "__main__":  # pragma: no cover - local development entry point
    import uvicorn

    uvicorn.run(
        "lab_access.main:app",
        host="127.0.0.1",
        port=8000,
        log_level=get_settings().log_level.lower(),
    )
