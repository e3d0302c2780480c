"""
FastAPI application for the controller's probe server.
"""

from fastapi import FastAPI

from .health import router as health_router


def create_app() -> FastAPI:
    """Create the probe application."""
    app = FastAPI(
        title="tablewright controller",
        version="0.1.0",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.include_router(health_router)
    return app
